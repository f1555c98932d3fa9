"""
Tests for the shared helpers: audit trail, logging, scoped temp
directories and small formatting utilities.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor

import pytest

from common.failure_tracker import FailureTracker
from common.file_utils import get_mime_type
from common.logging_config import SUPPRESSED_LOGGERS, get_logger, setup_logging
from common.progress import PHASE_DOWNLOAD, batch_progress, batches, completion_progress, progress_disabled
from common.processing import temp_processing_directory
from common.utils import basename, format_mmss, international_phone, parent_path
from tests.fixtures.media_samples import MINIMAL_JPEG


class TestFailureTracker:
    """Tests for the case audit trail."""

    def test_summary(self):
        tracker = FailureTracker("case-1")
        tracker.add_decode_failure("/db/msgstore.db", "file is not a database", {"length": 10})
        tracker.add_download_failure("aGFzaA==", "/db/msgstore.db", "MAC mismatch")
        tracker.add_backup_merge("/db/msgstore.db", "/db/msgstore-2021-01-01.1.db", 3)
        tracker.add_backup_merge("/db/msgstore.db", "/db/msgstore-2021-02-01.1.db", 2)

        assert tracker.has_failures()
        assert tracker.get_summary() == {
            "decode_failures": 1,
            "download_failures": 1,
            "unresolved_media": 0,
            "backups_merged": 2,
            "messages_recovered": 5,
        }

    def test_save_report(self, tmp_path):
        tracker = FailureTracker("case-1")
        tracker.add_unresolved_media("/db/msgstore.db", "aGFzaA==", "IMG-1.jpg", 2)

        path = tracker.save_report(tmp_path)

        report = json.loads(path.read_text(encoding="utf-8"))
        assert path == tmp_path / "issues" / "correlation-report.json"
        assert report["case_name"] == "case-1"
        assert report["unresolved_media"][0]["messages"] == 2

    def test_empty(self):
        assert FailureTracker("case-1").has_failures() is False


class TestLogging:
    """Tests for logging setup."""

    def test_verbose_with_file(self, tmp_path):
        log_file = tmp_path / "logs" / "case.log"
        root = logging.getLogger()
        saved = list(root.handlers), root.level
        try:
            setup_logging(verbose=True, log_file=str(log_file))
            get_logger("correlator.test").info("Case processing started")
            for handler in root.handlers:
                handler.flush()

            assert "Case processing started" in log_file.read_text(encoding="utf-8")
            for name in SUPPRESSED_LOGGERS:
                assert logging.getLogger(name).level == logging.WARNING
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])


class TestTempProcessingDirectory:
    """Tests for scoped temporary directories."""

    def test_removed_on_exit(self, tmp_path):
        with temp_processing_directory(str(tmp_path), "download") as temp_dir:
            (temp_dir / "encrypted.bin").write_bytes(b"x")
            assert temp_dir.name.startswith("download_")

        assert not temp_dir.exists()

    def test_removed_on_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with temp_processing_directory(str(tmp_path), "db") as temp_dir:
                raise RuntimeError("boom")

        assert not temp_dir.exists()

    def test_cleanup_can_be_disabled(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DISABLE_TEMP_CLEANUP", "true")

        with temp_processing_directory(str(tmp_path), "db") as temp_dir:
            pass

        assert temp_dir.exists()


class TestUtils:
    """Tests for path and formatting helpers."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Media/WhatsApp Images/IMG-1.jpg", "IMG-1.jpg"),
            ("C:\\export\\IMG-1.jpg", "IMG-1.jpg"),
            ("IMG-1.jpg", "IMG-1.jpg"),
        ],
    )
    def test_basename(self, name, expected):
        assert basename(name) == expected

    def test_parent_path(self):
        assert parent_path("/data/databases/msgstore.db") == "/data/databases"
        assert parent_path(None) == ""

    def test_international_phone(self):
        assert international_phone("5561999") == "+5561999"
        assert international_phone("120363-16@g.us") is None

    def test_format_mmss(self):
        assert format_mmss(0) == "00:00"
        assert format_mmss(3599) == "59:59"

    def test_mime_from_content(self, tmp_path):
        path = tmp_path / "download.bin"
        path.write_bytes(MINIMAL_JPEG)
        assert get_mime_type(path) == "image/jpeg"


class TestProgress:
    """Tests for phase-labelled progress helpers."""

    def test_batches(self):
        assert list(batches([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
        assert list(batches([], 3)) == []

    def test_batch_progress_yields_every_batch(self, monkeypatch):
        monkeypatch.setenv("DISABLE_PROGRESS", "true")
        assert progress_disabled() is True
        assert list(batch_progress(list(range(7)), 3, "Resolve", "msgstore.db")) == [[0, 1, 2], [3, 4, 5], [6]]

    def test_completion_progress_tolerates_failed_units(self, monkeypatch):
        """Should yield failed futures too, leaving the error to the caller."""
        monkeypatch.setenv("DISABLE_PROGRESS", "1")

        def unit(n):
            if n == 2:
                raise RuntimeError("HTTP 500")
            return n

        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [executor.submit(unit, n) for n in range(4)]
            done = list(completion_progress(futures, PHASE_DOWNLOAD, "media"))

        assert len(done) == 4
        assert sum(1 for f in done if f.exception() is not None) == 1
