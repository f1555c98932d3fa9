#!/usr/bin/env python3
"""
Correlator Configuration Module

Centralized configuration for the correlation core. Options are read from
the environment (optionally seeded from a .env file) and exposed as a single
immutable object that every stage receives by reference.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from common.env_loader import load_dotenv_file
from common.utils import parse_bool_env


# Environment variable names for each recognized option
ENV_EXTRACT_MESSAGES = "EXTRACT_MESSAGES"
ENV_MERGE_BACKUPS = "MERGE_BACKUPS"
ENV_NAME_AND_SIZE_FALLBACK = "LINK_MEDIA_BY_NAME_AND_APPROX_SIZE_FALLBACK"
ENV_CONNECTION_TIMEOUT = "DOWNLOAD_CONNECTION_TIMEOUT"
ENV_READ_TIMEOUT = "DOWNLOAD_READ_TIMEOUT"
ENV_DOWNLOAD_ENABLED = "DOWNLOAD_MEDIA_FILES"
ENV_POOL_SIZE = "DOWNLOAD_POOL_SIZE"
ENV_BATCH_SIZE = "MESSAGE_SEARCH_BATCH_SIZE"
ENV_TEMP_DIR = "TEMP_DIR"


@dataclass(frozen=True)
class CorrelatorConfig:
    """Options recognized by the correlation core.

    Attributes:
        extract_messages: Emit one report unit per message besides chat units
        merge_backups: Merge backup databases into their main database
        link_media_by_name_and_approx_size_fallback: Enable the zero-padding
            tolerant fallback tier of media resolution
        download_connection_timeout: Connect timeout for media downloads (ms)
        download_read_timeout: Read timeout for media downloads (ms)
        download_enabled: Allow retrieving missing media from the network
        download_pool_size: Worker threads used for downloads
        search_batch_size: Messages per media resolution batch
        temp_dir: Base directory for scoped temporary resources
    """

    extract_messages: bool = True
    merge_backups: bool = False
    link_media_by_name_and_approx_size_fallback: bool = True
    download_connection_timeout: int = 500
    download_read_timeout: int = 500
    download_enabled: bool = False
    download_pool_size: int = 20
    search_batch_size: int = 512
    temp_dir: Optional[str] = None

    @classmethod
    def from_env(
        cls, env_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
    ) -> "CorrelatorConfig":
        """Build a configuration from environment variables.

        Args:
            env_file: Optional .env file to load first (never overrides
                variables that are already set)
            environ: Mapping to read instead of os.environ (tests)

        Returns:
            CorrelatorConfig with defaults for every unset option

        Raises:
            ValueError: If an integer option is not a positive integer
        """
        if environ is None:
            load_dotenv_file(env_file)
            environ = os.environ

        defaults = cls()

        def _bool(name: str, default: bool) -> bool:
            value = environ.get(name)
            return default if value is None else parse_bool_env(value)

        def _int(name: str, default: int) -> int:
            value = environ.get(name)
            if value is None or not value.strip():
                return default
            try:
                parsed = int(value)
            except ValueError:
                raise ValueError(f"{name} must be an integer, got {value!r}") from None
            if parsed <= 0:
                raise ValueError(f"{name} must be positive, got {parsed}")
            return parsed

        return cls(
            extract_messages=_bool(ENV_EXTRACT_MESSAGES, defaults.extract_messages),
            merge_backups=_bool(ENV_MERGE_BACKUPS, defaults.merge_backups),
            link_media_by_name_and_approx_size_fallback=_bool(
                ENV_NAME_AND_SIZE_FALLBACK,
                defaults.link_media_by_name_and_approx_size_fallback,
            ),
            download_connection_timeout=_int(
                ENV_CONNECTION_TIMEOUT, defaults.download_connection_timeout
            ),
            download_read_timeout=_int(ENV_READ_TIMEOUT, defaults.download_read_timeout),
            download_enabled=_bool(ENV_DOWNLOAD_ENABLED, defaults.download_enabled),
            download_pool_size=_int(ENV_POOL_SIZE, defaults.download_pool_size),
            search_batch_size=_int(ENV_BATCH_SIZE, defaults.search_batch_size),
            temp_dir=environ.get(ENV_TEMP_DIR) or defaults.temp_dir,
        )

    @property
    def needs_registration(self) -> bool:
        """True when message databases must be registered before reporting."""
        return self.merge_backups or self.download_enabled
