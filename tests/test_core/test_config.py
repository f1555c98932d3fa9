"""
Tests for configuration loading.
"""

import pytest

from common.config import CorrelatorConfig


class TestDefaults:
    def test_defaults(self):
        config = CorrelatorConfig()

        assert config.extract_messages is True
        assert config.merge_backups is False
        assert config.link_media_by_name_and_approx_size_fallback is True
        assert config.download_connection_timeout == 500
        assert config.download_read_timeout == 500
        assert config.download_enabled is False
        assert config.download_pool_size == 20
        assert config.needs_registration is False

    def test_needs_registration(self):
        assert CorrelatorConfig(merge_backups=True).needs_registration
        assert CorrelatorConfig(download_enabled=True).needs_registration

    def test_immutable(self):
        config = CorrelatorConfig()
        with pytest.raises(AttributeError):
            config.merge_backups = True


class TestFromEnv:
    """Tests for environment parsing."""

    def test_reads_mapping(self):
        config = CorrelatorConfig.from_env(
            environ={
                "MERGE_BACKUPS": "true",
                "EXTRACT_MESSAGES": "0",
                "DOWNLOAD_MEDIA_FILES": "yes",
                "DOWNLOAD_POOL_SIZE": "8",
                "DOWNLOAD_READ_TIMEOUT": "2000",
                "MESSAGE_SEARCH_BATCH_SIZE": "64",
            }
        )

        assert config.merge_backups is True
        assert config.extract_messages is False
        assert config.download_enabled is True
        assert config.download_pool_size == 8
        assert config.download_read_timeout == 2000
        assert config.search_batch_size == 64

    def test_unset_keeps_defaults(self):
        assert CorrelatorConfig.from_env(environ={}) == CorrelatorConfig()

    @pytest.mark.parametrize("value", ["abc", "0", "-5"])
    def test_invalid_integer(self, value):
        with pytest.raises(ValueError, match="DOWNLOAD_POOL_SIZE"):
            CorrelatorConfig.from_env(environ={"DOWNLOAD_POOL_SIZE": value})

    def test_dotenv_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("MERGE_BACKUPS=true\nDOWNLOAD_CONNECTION_TIMEOUT=1500\n")

        config = CorrelatorConfig.from_env(env_file=str(env_file))

        assert config.merge_backups is True
        assert config.download_connection_timeout == 1500

    def test_exported_variables_win_over_dotenv(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("MERGE_BACKUPS=true\n")
        monkeypatch.setenv("MERGE_BACKUPS", "false")

        assert CorrelatorConfig.from_env(env_file=str(env_file)).merge_backups is False
