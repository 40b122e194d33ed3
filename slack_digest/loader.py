"""CSV export loader for Slack Digest.

Reads the tabular export written by the Slack extractor and turns each row
into a validated MessageRecord. This is the only place where loosely-typed
rows are interpreted; everything downstream works with MessageRecord.
"""

import csv
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from .errors import LoaderError, RecordValidationError
from .models import MessageRecord

logger = logging.getLogger(__name__)


REQUIRED_COLUMNS = ("Channel", "Message", "User", "Timestamp")

# URLs are written joined with "; " but older exports used commas or spaces
URL_SEPARATOR = re.compile(r"[;,\s]+")

TRUE_VALUES = {"yes", "true", "1", "y"}
FALSE_VALUES = {"no", "false", "0", "n", ""}


def parse_timestamp(value: str) -> datetime:
    """
    Parse an export timestamp.

    Accepts ISO 8601 (with or without a trailing ``Z``) and raw Slack
    ``ts`` values (epoch seconds with a fractional part). Naive values
    are taken to be UTC.

    Raises:
        ValueError: If the value is not a recognisable timestamp
    """
    value = (value or "").strip()
    if not value:
        raise ValueError("empty timestamp")

    if re.fullmatch(r"\d+(\.\d+)?", value):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)

    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_bool(value: Optional[str]) -> bool:
    """Parse the Yes/No flags used in the export."""
    lowered = (value or "").strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean flag: {value!r}")


def parse_urls(value: Optional[str]) -> tuple[str, ...]:
    """Split the URLs column into an ordered tuple, dropping blanks."""
    if not value:
        return ()
    return tuple(part for part in URL_SEPARATOR.split(value.strip()) if part)


class MessageLoader:
    """Loads MessageRecords from CSV exports."""

    def __init__(self, strict: bool = True):
        """
        Initialize loader.

        Args:
            strict: Raise on the first malformed row. When False, malformed
                rows are skipped and counted in ``stats``.
        """
        self.strict = strict
        self.stats = self._empty_stats()
        self.failed_rows: list[str] = []

    @staticmethod
    def _empty_stats() -> dict:
        return {
            "total_rows": 0,
            "loaded": 0,
            "skipped_invalid": 0,
        }

    def load_rows(self, rows: Iterable[dict], source: str = "<rows>") -> list[MessageRecord]:
        """
        Convert CSV rows (as produced by ``csv.DictReader``) into records.

        Args:
            rows: Row dictionaries keyed by column title
            source: Name used in error messages

        Returns:
            Records in export order

        Raises:
            LoaderError: If a row is malformed and ``strict`` is set
        """
        self.stats = self._empty_stats()
        self.failed_rows = []
        records = []

        # Row 1 is the header, so data starts at row 2
        for row_number, row in enumerate(rows, start=2):
            self.stats["total_rows"] += 1
            try:
                records.append(self._row_to_record(row))
                self.stats["loaded"] += 1
            except (ValueError, RecordValidationError) as e:
                if self.strict:
                    raise LoaderError(
                        f"Malformed row: {e}",
                        operation="load_rows",
                        source=source,
                        row=row_number,
                    ) from e
                self.stats["skipped_invalid"] += 1
                if len(self.failed_rows) < 10:
                    self.failed_rows.append(f"row {row_number}: {e}")
                logger.debug(f"Skipped row {row_number} in {source}: {e}")

        logger.info(
            f"Loaded {self.stats['loaded']} of {self.stats['total_rows']} rows from {source}"
            + (f" ({self.stats['skipped_invalid']} skipped)" if self.stats["skipped_invalid"] else "")
        )
        return records

    def _row_to_record(self, row: dict) -> MessageRecord:
        thread_parent = (row.get("Thread_Parent") or "").strip() or None
        is_thread_reply = parse_bool(row.get("Is_Thread_Reply"))
        if is_thread_reply and thread_parent is None:
            raise ValueError("thread reply without Thread_Parent")
        if thread_parent is not None and not is_thread_reply:
            raise ValueError("Thread_Parent set on a top-level message")

        reactions_raw = (row.get("Total_Reactions") or "").strip()
        try:
            reaction_count = int(reactions_raw) if reactions_raw else 0
        except ValueError:
            raise ValueError(f"Total_Reactions is not an integer: {reactions_raw!r}")

        return MessageRecord(
            channel=(row.get("Channel") or "").strip(),
            user=(row.get("User") or "").strip(),
            text=row.get("Message") or "",
            timestamp=parse_timestamp(row.get("Timestamp", "")),
            thread_parent=thread_parent,
            urls=parse_urls(row.get("URLs")),
            permalink=(row.get("Slack_URL") or "").strip() or None,
            is_thread_reply=is_thread_reply,
            message_type=(row.get("Message_Type") or "").strip() or "message",
            has_attachments=parse_bool(row.get("Has_Attachments")),
            has_files=parse_bool(row.get("Has_Files")),
            reaction_count=reaction_count,
        )

    def load_file(self, filepath: str) -> list[MessageRecord]:
        """
        Load records from a CSV export.

        Args:
            filepath: Path to the CSV file

        Returns:
            Records in export order

        Raises:
            LoaderError: If the file is missing, lacks required columns,
                or (in strict mode) contains a malformed row
        """
        path = Path(filepath)
        if not path.exists():
            raise LoaderError(f"Export file not found: {filepath}", operation="load_file")

        with open(path, "r", encoding="utf-8-sig", newline="") as f:
            reader = csv.DictReader(f)
            columns = reader.fieldnames or []
            missing = [c for c in REQUIRED_COLUMNS if c not in columns]
            if missing:
                raise LoaderError(
                    f"Export is missing required columns: {', '.join(missing)}",
                    operation="load_file",
                    source=str(path),
                )
            return self.load_rows(reader, source=str(path))

    def get_stats(self) -> dict:
        """Get statistics from the last load."""
        return self.stats.copy()


def find_latest_csv(exports_dir: str = "exports") -> Optional[Path]:
    """
    Find the most recently modified CSV file in a directory.

    Returns:
        Path to the newest ``*.csv`` file, or None if there is none
    """
    directory = Path(exports_dir)
    if not directory.is_dir():
        logger.warning(f"Exports directory not found: {directory}")
        return None

    csv_files = sorted(directory.glob("*.csv"), key=lambda p: p.stat().st_mtime, reverse=True)
    if not csv_files:
        logger.warning(f"No CSV files found in {directory}")
        return None

    logger.info(f"Found latest CSV file: {csv_files[0]}")
    return csv_files[0]
