#!/usr/bin/env python3
"""
Download Coordinator

Retrieves media still missing from the case from the network, with a
bounded worker pool and a case-wide dedup set: a media hash is fetched at
most once per case run no matter how many messages or databases reference
it. A failed unit never cancels its siblings and is never retried.
"""

import hashlib
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import requests

from common.failure_tracker import FailureTracker
from common.file_utils import DEFAULT_MIME, get_mime_type
from common.processing import temp_processing_directory
from common.progress import PHASE_DOWNLOAD, completion_progress
from correlator.base import LinkExtractor, ReportSink
from correlator.errors import DownloadFailure, LinkExtractionError, LinkNotFound
from correlator.media_crypto import MediaLink, decrypt_file
from correlator.models import Item, Message, ReportUnit

logger = logging.getLogger(__name__)

NOT_FOUND_STATUS = (404, 410)
CHUNK_SIZE = 8192


class DownloadedHashes:
    """Case-wide set of hashes already downloading or downloaded"""

    def __init__(self):
        self._hashes: Set[str] = set()
        self._lock = threading.Lock()

    def add_if_absent(self, media_hash: str) -> bool:
        """Atomically add a hash

        Returns:
            True if the hash was not present (the caller owns the download)
        """
        with self._lock:
            if media_hash in self._hashes:
                return False
            self._hashes.add(media_hash)
            return True

    def __contains__(self, media_hash: str) -> bool:
        with self._lock:
            return media_hash in self._hashes

    def __len__(self) -> int:
        with self._lock:
            return len(self._hashes)


class DownloadPool:
    """Fixed-size worker pool owned by one case run"""

    def __init__(self, pool_size: int = 20):
        self.pool_size = pool_size
        self._executor = ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="media-download")

    def submit(self, fn, *args, **kwargs) -> Future:
        return self._executor.submit(fn, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting units; in-flight units run to completion"""
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False


class DownloadCounter:
    """Numbering of the files downloaded for one artifact"""

    def __init__(self):
        self._value = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


def fetch(url: str, dest: Path, connect_timeout_ms: int, read_timeout_ms: int) -> Path:
    """Download url into dest

    Raises:
        LinkNotFound: If the remote media is gone (404/410)
        DownloadFailure: On any other HTTP or network error
    """
    try:
        response = requests.get(
            url,
            timeout=(connect_timeout_ms / 1000.0, read_timeout_ms / 1000.0),
            stream=True,
        )
        if response.status_code in NOT_FOUND_STATUS:
            raise LinkNotFound(f"HTTP {response.status_code} for {url}")
        response.raise_for_status()

        with open(dest, "wb") as f:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    f.write(chunk)
    except requests.exceptions.Timeout as e:
        raise DownloadFailure(f"Request timed out: {url}") from e
    except requests.exceptions.RequestException as e:
        raise DownloadFailure(f"Request failed for {url}: {e}") from e
    return dest


class DownloadCoordinator:
    """Submits one download unit per missing media link"""

    def __init__(
        self,
        pool: DownloadPool,
        downloaded_hashes: DownloadedHashes,
        link_extractor: Optional[LinkExtractor],
        sink: ReportSink,
        connect_timeout_ms: int = 500,
        read_timeout_ms: int = 500,
        temp_dir: Optional[str] = None,
        tracker: Optional[FailureTracker] = None,
    ):
        self.pool = pool
        self.downloaded_hashes = downloaded_hashes
        self.link_extractor = link_extractor
        self.sink = sink
        self.connect_timeout_ms = connect_timeout_ms
        self.read_timeout_ms = read_timeout_ms
        self.temp_dir = temp_dir
        self.tracker = tracker
        self._sink_lock = threading.Lock()

    def download_missing(
        self,
        db_item: Item,
        db_file: Path,
        missing_hashes: Iterable[str],
        counter: Optional[DownloadCounter] = None,
    ) -> List[Future]:
        """Submit the downloads of the media still missing from a database

        Args:
            db_item: The database item (parent of the downloaded files)
            db_file: Materialized database file handed to the link extractor
            missing_hashes: Declared hashes not found in the case
            counter: Numbering shared by every unit of the artifact

        Returns:
            Futures of the submitted units, each resolving to True when a
            file was downloaded and reported
        """
        hashes = [h for h in missing_hashes if h]
        if not hashes or self.link_extractor is None:
            return []

        try:
            links = self.link_extractor.extract_links(
                db_file, hashes, self.connect_timeout_ms, self.read_timeout_ms
            )
        except LinkExtractionError as e:
            logger.warning(f"Could not extract links from database {db_item.path}: {e}")
            return []

        counter = counter or DownloadCounter()
        futures = []
        for link in links:
            if link is None or not link.hash:
                continue
            if not self.downloaded_hashes.add_if_absent(link.hash):
                logger.debug(f"Media {link.hash} already downloaded, skipping")
                continue
            futures.append(self.pool.submit(self._download_unit, db_item, link, counter))
        return futures

    def wait(self, futures: List[Future]) -> int:
        """Block until every future completes, tolerating failures

        Returns:
            Number of units that downloaded a file
        """
        if not futures:
            return 0
        downloaded = 0
        for future in completion_progress(futures, PHASE_DOWNLOAD, "media"):
            try:
                if future.result():
                    downloaded += 1
            except Exception as e:
                logger.warning(f"Download unit failed: {e}")
        return downloaded

    def download_for_artifact(
        self, db_item: Item, db_file: Path, missing: Dict[str, List[Message]]
    ) -> int:
        """Download the missing media of one database and wait for completion

        Returns:
            Number of newly downloaded files
        """
        counter = DownloadCounter()
        futures = self.download_missing(db_item, db_file, list(missing.keys()), counter)
        downloaded = self.wait(futures)
        if downloaded > 0:
            logger.info(f"Downloaded {downloaded} files from {db_item.name}")
        return downloaded

    def _download_unit(self, db_item: Item, link: MediaLink, counter: DownloadCounter) -> bool:
        try:
            with temp_processing_directory(self.temp_dir, "download") as temp_dir:
                encrypted = temp_dir / "encrypted.bin"
                decrypted = temp_dir / "decrypted.bin"

                fetch(link.url, encrypted, self.connect_timeout_ms, self.read_timeout_ms)
                decrypt_file(encrypted, decrypted, link)

                data = decrypted.read_bytes()
                unit = ReportUnit(data)
                unit.attributes["downloaded"] = "true"
                unit.attributes["title"] = f"Downloaded_item_{counter.increment()}"
                unit.attributes["content_type"] = get_mime_type(decrypted) or DEFAULT_MIME
                unit.attributes["sha-256"] = hashlib.sha256(data).hexdigest()
                unit.attributes["media_hash"] = link.hash
                unit.attributes["parent_global_id"] = db_item.global_id
                if link.file_name:
                    unit.attributes["original_name"] = link.file_name

                with self._sink_lock:
                    self.sink.report(unit)
                return True

        except LinkNotFound:
            # expected: media expired on the server
            return False
        except Exception as e:
            logger.warning(f"Error trying to download medias referenced by {db_item.path}: {e}")
            if self.tracker is not None:
                self.tracker.add_download_failure(link.hash, db_item.path, str(e))
            return False
