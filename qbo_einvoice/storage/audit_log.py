"""
Append-only CSV audit log of processed webhook entities.

One row per enriched entity, fixed columns, CRLF line endings. The header is
written only when the file does not exist yet; existing rows are never
rewritten.
"""

import csv
import threading
from pathlib import Path
from typing import Iterable

import structlog

from qbo_einvoice.models.notifications import EnrichedRecord

logger = structlog.get_logger(__name__)

AUDIT_FIELDS = [
    "realmId",
    "entityType",
    "id",
    "operation",
    "lastUpdated",
    "fetchStatus",
    "errorMessage",
    "fullDataJSON",
]


class AuditLogWriter:
    """
    Writes enriched notification batches to a CSV file.

    Attributes:
        path: Location of the CSV file
    """

    LINE_TERMINATOR = "\r\n"

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, records: Iterable[EnrichedRecord]) -> int:
        """
        Append one row per record, creating the file with a header if needed.

        An empty batch against an existing file is a no-op; against a missing
        file it leaves a header-only file behind. Blocking; async callers run
        it on a worker thread.

        Returns:
            Number of rows written
        """
        rows = [record.to_audit_row() for record in records]

        with self._lock:
            is_new = not self.path.exists()
            if is_new:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                logger.info("audit_log_created", path=str(self.path))
            elif not rows:
                return 0

            with self.path.open("a", newline="", encoding="utf-8") as fh:
                writer = csv.DictWriter(
                    fh, fieldnames=AUDIT_FIELDS, lineterminator=self.LINE_TERMINATOR
                )
                if is_new:
                    writer.writeheader()
                writer.writerows(rows)

        logger.info("audit_rows_appended", path=str(self.path), rows=len(rows))
        return len(rows)
