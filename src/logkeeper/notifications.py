"""
NotificationDeduper: record a notification occurrence and report how often the same
fingerprint has fired today.

record() runs one transaction: read the latest prior row for the fingerprint, insert
the new row, count today's rows (UTC calendar day, including the new one). Any
failure rolls the whole transaction back.

The read and the insert are not a compare-and-swap. Within one process the shared
connection lock serializes record() calls; across processes two callers may read
the same "previous" before either commits (SQLite deferred transactions). Callers
that alert exactly once per fingerprint must tolerate this.
"""

import logging
from typing import Optional

from logkeeper.database import Database
from logkeeper.schema import SchemaGate
from logkeeper.types import (
    CorrelationId,
    Fingerprint,
    NotificationRecord,
    NotificationResult,
    TableNames,
)

logger = logging.getLogger(__name__)


class NotificationDeduper:
    """Transactional notification recording for one store."""

    def __init__(self, db: Database, tables: TableNames, gate: SchemaGate) -> None:
        self._db = db
        self._table = tables.notifications
        self._gate = gate

    async def record(
        self,
        correlation_id: Optional[CorrelationId],
        hostname: str,
        fingerprint: Fingerprint,
    ) -> NotificationResult:
        """
        Insert a notification for *fingerprint* and return the previous occurrence
        (None for a new fingerprint) with today's count. Raises StorageError; nothing
        is written in that case.
        """
        await self._gate.wait_ready()
        async with self._db.transaction() as tx:
            row = await tx.fetchone(
                f"""
                SELECT * FROM {self._table}
                WHERE hashed_message = ?
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (fingerprint,),
            )
            previous = NotificationRecord.from_row(row) if row is not None else None

            await tx.execute(
                f"""
                INSERT INTO {self._table} (errsole_id, hostname, hashed_message)
                VALUES (?, ?, ?)
                """,
                (correlation_id, hostname, fingerprint),
            )

            count_row = await tx.fetchone(
                f"""
                SELECT COUNT(*) AS today_count FROM {self._table}
                WHERE hashed_message = ?
                AND created_at >= DATE('now')
                AND created_at < DATE('now', '+1 day')
                """,
                (fingerprint,),
            )
            today_count = count_row["today_count"] if count_row is not None else 0

        logger.debug(
            "notification %s recorded (today=%d, previous=%s)",
            fingerprint[:16],
            today_count,
            previous.id if previous else None,
        )
        return NotificationResult(previous=previous, today_count=today_count)

    async def count(self, fingerprint: Fingerprint) -> int:
        """Total stored rows for *fingerprint* (any day)."""
        row = await self._db.fetchone(
            f"SELECT COUNT(*) AS n FROM {self._table} WHERE hashed_message = ?",
            (fingerprint,),
        )
        return row["n"] if row is not None else 0
