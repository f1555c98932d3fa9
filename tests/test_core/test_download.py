"""
Tests for missing-media downloads.

HTTP is mocked at correlator.download.requests.get; media is encrypted with
the fixtures helper so the whole fetch/decrypt/report path runs.
"""

import logging
from unittest.mock import MagicMock, patch

import pytest
import requests

from common.failure_tracker import FailureTracker
from correlator.download import DownloadCoordinator, DownloadedHashes, DownloadPool, fetch
from correlator.errors import DownloadFailure, LinkNotFound
from correlator.media_crypto import MediaLink
from correlator.models import Item
from tests.fixtures.fakes import RecordingSink, StubLinkExtractor
from tests.fixtures.media_samples import MEDIA_KEY, MINIMAL_JPEG, encrypt_media, sha256_hex


def _response(status=200, body=b""):
    response = MagicMock()
    response.status_code = status
    response.iter_content.return_value = [body]
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"HTTP {status}")
    return response


def _db(item_id=1, name="msgstore.db"):
    return Item(
        id=item_id,
        name=name,
        path=f"/data/data/com.whatsapp/databases/{name}",
        attributes={"global_id": f"gid-{item_id}"},
    )


@pytest.fixture
def pool():
    with DownloadPool(4) as p:
        yield p


@pytest.fixture
def tracker():
    return FailureTracker("case")


def _coordinator(pool, links, sink, tracker, hashes=None, tmp_path=None, fail=False):
    return DownloadCoordinator(
        pool,
        hashes if hashes is not None else DownloadedHashes(),
        StubLinkExtractor(links, fail=fail),
        sink,
        temp_dir=str(tmp_path) if tmp_path else None,
        tracker=tracker,
    )


class TestFetch:
    """Tests for the HTTP fetch helper."""

    def test_writes_body(self, tmp_path):
        dest = tmp_path / "out.bin"
        with patch("correlator.download.requests.get", return_value=_response(body=b"payload")) as get:
            fetch("https://mmg.example/m1", dest, 500, 1500)

        assert dest.read_bytes() == b"payload"
        get.assert_called_once_with("https://mmg.example/m1", timeout=(0.5, 1.5), stream=True)

    @pytest.mark.parametrize("status", [404, 410])
    def test_gone_is_link_not_found(self, tmp_path, status):
        with patch("correlator.download.requests.get", return_value=_response(status)):
            with pytest.raises(LinkNotFound):
                fetch("https://mmg.example/m1", tmp_path / "out.bin", 500, 500)

    def test_server_error(self, tmp_path):
        with patch("correlator.download.requests.get", return_value=_response(500)):
            with pytest.raises(DownloadFailure):
                fetch("https://mmg.example/m1", tmp_path / "out.bin", 500, 500)

    def test_timeout(self, tmp_path):
        with patch("correlator.download.requests.get", side_effect=requests.exceptions.Timeout()):
            with pytest.raises(DownloadFailure, match="timed out"):
                fetch("https://mmg.example/m1", tmp_path / "out.bin", 500, 500)


class TestDownloadCoordinator:
    """Tests for download units and dedup."""

    def test_downloads_decrypts_and_reports(self, pool, tracker, tmp_path):
        link = MediaLink("aGFzaDE=", "https://mmg.example/m1", MEDIA_KEY, "image", "IMG-1.jpg")
        sink = RecordingSink()
        coordinator = _coordinator(pool, [link], sink, tracker, tmp_path=tmp_path)

        with patch("correlator.download.requests.get", return_value=_response(body=encrypt_media(MINIMAL_JPEG))):
            downloaded = coordinator.download_for_artifact(_db(), tmp_path / "msgstore.db", {"aGFzaDE=": []})

        assert downloaded == 1
        unit = sink.units[0]
        assert unit.data == MINIMAL_JPEG
        assert unit.attributes["title"] == "Downloaded_item_1"
        assert unit.attributes["downloaded"] == "true"
        assert unit.attributes["sha-256"] == sha256_hex(MINIMAL_JPEG)
        assert unit.attributes["media_hash"] == "aGFzaDE="
        assert unit.attributes["parent_global_id"] == "gid-1"
        assert unit.attributes["original_name"] == "IMG-1.jpg"
        assert unit.attributes["content_type"].startswith("image/")

    def test_plain_link_without_key(self, pool, tracker, tmp_path):
        link = MediaLink("aGFzaDE=", "https://mmg.example/m1")
        sink = RecordingSink()
        coordinator = _coordinator(pool, [link], sink, tracker)

        with patch("correlator.download.requests.get", return_value=_response(body=b"plain")):
            coordinator.download_for_artifact(_db(), tmp_path / "msgstore.db", {"aGFzaDE=": []})

        assert sink.units[0].data == b"plain"

    def test_hash_fetched_once_per_case(self, pool, tracker, tmp_path):
        """Two databases referencing the same media trigger one fetch."""
        link = MediaLink("aGFzaDE=", "https://mmg.example/m1")
        hashes = DownloadedHashes()
        sink = RecordingSink()
        first = _coordinator(pool, [link], sink, tracker, hashes=hashes)
        second = _coordinator(pool, [link], sink, tracker, hashes=hashes)

        with patch("correlator.download.requests.get", return_value=_response(body=b"x")) as get:
            first.download_for_artifact(_db(1), tmp_path / "a.db", {"aGFzaDE=": []})
            second.download_for_artifact(_db(2, "msgstore-2021-01-01.1.db"), tmp_path / "b.db", {"aGFzaDE=": []})

        assert get.call_count == 1
        assert len(sink.units) == 1
        assert "aGFzaDE=" in hashes

    def test_expired_media_is_silent(self, pool, tracker, tmp_path, caplog):
        link = MediaLink("aGFzaDE=", "https://mmg.example/m1")
        sink = RecordingSink()
        coordinator = _coordinator(pool, [link], sink, tracker)

        with caplog.at_level(logging.WARNING):
            with patch("correlator.download.requests.get", return_value=_response(404)):
                downloaded = coordinator.download_for_artifact(_db(), tmp_path / "a.db", {"aGFzaDE=": []})

        assert downloaded == 0
        assert sink.units == []
        assert tracker.download_failures == []
        assert "Error trying to download" not in caplog.text

    def test_failed_unit_does_not_cancel_siblings(self, pool, tracker, tmp_path):
        good = MediaLink("Z29vZA==", "https://mmg.example/good")
        bad = MediaLink("YmFk", "https://mmg.example/bad", MEDIA_KEY, "image")
        sink = RecordingSink()
        coordinator = _coordinator(pool, [good, bad], sink, tracker)

        def fake_get(url, **kwargs):
            # the bad link serves garbage that fails the MAC check
            return _response(body=b"x" * 48 if url.endswith("bad") else b"fine")

        with patch("correlator.download.requests.get", side_effect=fake_get):
            downloaded = coordinator.download_for_artifact(
                _db(), tmp_path / "a.db", {"Z29vZA==": [], "YmFk": []}
            )

        assert downloaded == 1
        assert [u.data for u in sink.units] == [b"fine"]
        assert len(tracker.download_failures) == 1
        assert tracker.download_failures[0]["media_hash"] == "YmFk"

    def test_link_extraction_failure(self, pool, tracker, tmp_path, caplog):
        sink = RecordingSink()
        coordinator = _coordinator(pool, [], sink, tracker, fail=True)

        with caplog.at_level(logging.WARNING):
            futures = coordinator.download_missing(_db(), tmp_path / "a.db", ["aGFzaDE="])

        assert futures == []
        assert "Could not extract links" in caplog.text

    def test_units_numbered_per_artifact(self, pool, tracker, tmp_path):
        links = [MediaLink(f"h{i}", f"https://mmg.example/{i}") for i in range(3)]
        sink = RecordingSink()
        coordinator = _coordinator(pool, links, sink, tracker)

        with patch("correlator.download.requests.get", return_value=_response(body=b"x")):
            coordinator.download_for_artifact(_db(), tmp_path / "a.db", {f"h{i}": [] for i in range(3)})

        titles = sorted(u.attributes["title"] for u in sink.units)
        assert titles == ["Downloaded_item_1", "Downloaded_item_2", "Downloaded_item_3"]

    def test_without_link_extractor(self, pool, tracker, tmp_path):
        coordinator = DownloadCoordinator(pool, DownloadedHashes(), None, RecordingSink())
        assert coordinator.download_missing(_db(), tmp_path / "a.db", ["aGFzaDE="]) == []
