"""Append-only local log of finished sessions."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models.session import SessionRecord

logger = logging.getLogger(__name__)


class SessionLog:
    """Stores session records as JSON lines under the data directory."""

    def __init__(self, data_dir: str = "./data", filename: str = "sessions.jsonl"):
        """Initialize the session log.

        Args:
            data_dir: Base directory for storing all data
            filename: Name of the log file inside data_dir
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.data_dir / filename

        logger.info(f"SessionLog initialized at: {self.log_file}")

    def append(self, record: SessionRecord) -> None:
        """Append one record and flush it to disk."""
        line = json.dumps(record.to_dict(), separators=(",", ":"))
        try:
            with open(self.log_file, 'a', encoding='utf-8') as f:
                f.write(line + "\n")
                f.flush()
        except OSError as e:
            logger.error(f"Error appending session record: {e}")
            raise
        logger.debug(f"Appended session record: {line}")

    def read_all(self, user_id: Optional[str] = None) -> List[SessionRecord]:
        """Load records, newest first. Unreadable lines are skipped.

        Args:
            user_id: When given, only records tagged with this user are returned
        """
        if not self.log_file.exists():
            return []

        records = []
        with open(self.log_file, 'r', encoding='utf-8') as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = SessionRecord.from_dict(json.loads(line))
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"Skipping corrupt session record on line {line_number}: {e}")
                    continue
                if user_id is not None and record.user_id != user_id:
                    continue
                records.append(record)

        records.sort(key=lambda r: r.started_at_epoch_millis, reverse=True)
        return records

    def clear(self) -> int:
        """Remove every record. Returns how many were removed."""
        count = len(self.read_all())
        if self.log_file.exists():
            self.log_file.unlink()
        logger.info(f"Cleared {count} session records")
        return count

    def get_storage_stats(self) -> Dict[str, Any]:
        """Get storage usage statistics."""
        size = self.log_file.stat().st_size if self.log_file.exists() else 0
        return {
            "log_file": str(self.log_file),
            "total_size_bytes": size,
            "record_count": len(self.read_all()),
        }
