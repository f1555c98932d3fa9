"""
Pytest configuration and shared fixtures for the correlation core tests.

This module provides:
- Fake collaborators (search index, report sink, decoder, link extractor)
- A case run and a correlator wired to them
- A per-test evidence directory for the databases a test writes
"""

import os
import sys
from pathlib import Path

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from common.config import CorrelatorConfig  # noqa: E402
from correlator import CaseRun, WhatsAppCorrelator, default_registry  # noqa: E402
from tests.fixtures.fakes import (  # noqa: E402
    FakeSearchIndex,
    RecordingFallbackViewer,
    RecordingSink,
    SqliteDecoder,
    StubLinkExtractor,
)


# ============================================================================
# Session-scoped fixtures - created once per test session
# ============================================================================


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


# ============================================================================
# Function-scoped fixtures - created fresh for each test
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep correlator options exported by the developer shell out of tests.

    Variables loaded from .env files during a test are dropped at teardown.
    """
    names = (
        "EXTRACT_MESSAGES",
        "MERGE_BACKUPS",
        "LINK_MEDIA_BY_NAME_AND_APPROX_SIZE_FALLBACK",
        "DOWNLOAD_CONNECTION_TIMEOUT",
        "DOWNLOAD_READ_TIMEOUT",
        "DOWNLOAD_MEDIA_FILES",
        "DOWNLOAD_POOL_SIZE",
        "MESSAGE_SEARCH_BATCH_SIZE",
        "TEMP_DIR",
        "DISABLE_TEMP_CLEANUP",
        "DISABLE_PROGRESS",
    )
    for name in names:
        monkeypatch.delenv(name, raising=False)
    yield
    for name in names:
        os.environ.pop(name, None)


@pytest.fixture
def evidence_dir(tmp_path) -> Path:
    """Directory holding the materialized database files of a test."""
    directory = tmp_path / "evidence"
    directory.mkdir()
    return directory


@pytest.fixture
def index() -> FakeSearchIndex:
    return FakeSearchIndex()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def decoder() -> SqliteDecoder:
    return SqliteDecoder()


@pytest.fixture
def variants(decoder):
    """Variant registry with both platforms sharing the test decoder."""
    return default_registry(decoder, decoder)


@pytest.fixture
def viewer() -> RecordingFallbackViewer:
    return RecordingFallbackViewer()


@pytest.fixture
def link_extractor() -> StubLinkExtractor:
    return StubLinkExtractor()


@pytest.fixture
def merge_config(tmp_path) -> CorrelatorConfig:
    """Configuration with backup merging enabled."""
    return CorrelatorConfig(merge_backups=True, download_pool_size=4, temp_dir=str(tmp_path / "tmp"))


@pytest.fixture
def case(merge_config, index):
    """Case run closed at teardown."""
    with CaseRun(merge_config, index, case_name="test-case") as run:
        yield run


@pytest.fixture
def correlator(case, variants, sink, link_extractor, viewer) -> WhatsAppCorrelator:
    return WhatsAppCorrelator(
        case,
        variants,
        sink,
        link_extractor=link_extractor,
        fallback_viewer=viewer,
    )


# ============================================================================
# Test configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests running whole artifact sequences"
    )
