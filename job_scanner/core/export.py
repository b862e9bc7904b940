"""CSV export of application records.

The file is UTF-8 with a byte-order mark so spreadsheet tools pick the right
encoding. Timestamps are stored as ISO strings and only converted to the
``MM-DD-YYYY HH:MM:SS`` display form here, in local time.
"""

from __future__ import annotations

import csv
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from job_scanner.core.errors import PersistenceError
from job_scanner.core.models import ApplicationRecord


logger = logging.getLogger(__name__)

EXPORT_FILENAME = "job_applications.csv"
HEADERS = ["email_date", "company", "position", "email_title", "processed_timestamp", "message_id"]
DISPLAY_FORMAT = "%m-%d-%Y %H:%M:%S"


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    if value.tzinfo is not None:
        value = value.astimezone()
    return value.strftime(DISPLAY_FORMAT)


def parse_display_timestamp(value: str) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, DISPLAY_FORMAT)


def record_to_row(record: ApplicationRecord) -> List[str]:
    return [
        format_timestamp(record.email_date),
        record.company or "",
        record.position or "",
        record.email_title or "",
        format_timestamp(record.processed_timestamp),
        record.message_id,
    ]


def write_csv(records: Iterable[ApplicationRecord], path: Path) -> Path:
    path = Path(path)
    rows = [record_to_row(record) for record in records]
    try:
        os.makedirs(path.parent, exist_ok=True)
        with open(path, "w", encoding="utf-8-sig", newline="") as handle:
            writer = csv.writer(handle, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
            writer.writerow(HEADERS)
            writer.writerows(rows)
    except OSError as exc:
        raise PersistenceError(f"Failed to export CSV to {path}: {exc}") from exc
    logger.info("Exported %d records to %s", len(rows), path)
    return path


def read_csv(path: Path) -> List[Dict[str, str]]:
    with open(path, "r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        return [dict(row) for row in reader]
