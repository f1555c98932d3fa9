#!/usr/bin/env python3
"""
Failure Tracker Module

Tracks the audit trail of one case run, including:
- Decode failures (artifacts that could not be decoded)
- Download failures (remote media that could not be retrieved)
- Unresolved media (messages whose attachment was not found in the case)
- Backup merges (how many messages each backup contributed)

Generates a JSON report so examiners can see what was recovered and from where.
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class FailureTracker:
    """
    Thread-safe audit trail for one case run.

    Every stage of the core may record entries concurrently; all list
    mutations happen under a single lock.
    """

    def __init__(self, case_name: str):
        """
        Initialize failure tracker.

        Args:
            case_name: Name of the case being processed
        """
        self.case_name = case_name
        self.timestamp = datetime.now().isoformat()
        self._lock = threading.Lock()

        self.decode_failures: List[Dict[str, Any]] = []
        self.download_failures: List[Dict[str, Any]] = []
        self.unresolved_media: List[Dict[str, Any]] = []
        self.backup_merges: List[Dict[str, Any]] = []

    def add_decode_failure(
        self, artifact_path: str, reason: str, context: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Track an artifact that could not be decoded.

        Args:
            artifact_path: Evidence path of the artifact
            reason: Human-readable reason for the failure
            context: Additional context information (length, content type)
        """
        entry = {"artifact_path": artifact_path, "reason": reason, "context": context or {}}
        with self._lock:
            self.decode_failures.append(entry)
        logger.debug(f"Tracked decode failure: {artifact_path}")

    def add_download_failure(
        self, media_hash: str, source_path: str, error_details: str
    ) -> None:
        """
        Track a media file that failed to download or decrypt.

        Args:
            media_hash: Declared hash of the media
            source_path: Database that referenced the media
            error_details: Error message
        """
        entry = {
            "media_hash": media_hash,
            "source_path": source_path,
            "error_details": error_details,
        }
        with self._lock:
            self.download_failures.append(entry)
        logger.debug(f"Tracked download failure: {media_hash}")

    def add_unresolved_media(
        self, source_path: str, media_hash: Optional[str], media_name: Optional[str], count: int
    ) -> None:
        """
        Track declared media that was not found in the case.

        Args:
            source_path: Database that referenced the media
            media_hash: Declared hash, if any
            media_name: Declared file name, if any
            count: Number of messages referencing it
        """
        entry = {
            "source_path": source_path,
            "media_hash": media_hash,
            "media_name": media_name,
            "messages": count,
        }
        with self._lock:
            self.unresolved_media.append(entry)

    def add_backup_merge(self, main_path: str, backup_path: str, recovered: int) -> None:
        """
        Track a backup database merged into a main database.

        Args:
            main_path: Evidence path of the main database
            backup_path: Evidence path of the backup database
            recovered: Number of messages inserted into the main database
        """
        entry = {"main_path": main_path, "backup_path": backup_path, "recovered": recovered}
        with self._lock:
            self.backup_merges.append(entry)

    def has_failures(self) -> bool:
        """Check if any failures have been tracked."""
        with self._lock:
            return bool(self.decode_failures or self.download_failures)

    def get_summary(self) -> Dict[str, int]:
        """
        Get summary statistics of tracked entries.

        Returns:
            Dict with counts of each entry type
        """
        with self._lock:
            return {
                "decode_failures": len(self.decode_failures),
                "download_failures": len(self.download_failures),
                "unresolved_media": len(self.unresolved_media),
                "backups_merged": len(self.backup_merges),
                "messages_recovered": sum(m["recovered"] for m in self.backup_merges),
            }

    def generate_report(self) -> Dict[str, Any]:
        """
        Generate a comprehensive audit report.

        Returns:
            Dict containing all tracked information
        """
        summary = self.get_summary()
        with self._lock:
            return {
                "case_name": self.case_name,
                "timestamp": self.timestamp,
                "summary": summary,
                "backup_merges": list(self.backup_merges),
                "failed_decoding": list(self.decode_failures),
                "failed_downloads": list(self.download_failures),
                "unresolved_media": list(self.unresolved_media),
            }

    def save_report(self, output_dir: Path) -> Optional[Path]:
        """
        Save the audit report to a JSON file.

        Args:
            output_dir: Directory where issues/correlation-report.json is written

        Returns:
            Path of the written report, or None if writing failed
        """
        issues_dir = Path(output_dir) / "issues"
        issues_dir.mkdir(parents=True, exist_ok=True)
        report_path = issues_dir / "correlation-report.json"

        try:
            with open(report_path, "w", encoding="utf-8") as f:
                json.dump(self.generate_report(), f, indent=2, ensure_ascii=False)
            logger.info(f"Correlation report saved to: {report_path}")
            return report_path
        except OSError as e:
            logger.error(f"Failed to save correlation report to {report_path}: {e}")
            return None
