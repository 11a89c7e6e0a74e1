"""
RetentionSweeper: background deletion of rows older than the configured TTL.

One sweeper per target (logs, notifications); the two never wait on each other.
A sweep deletes the oldest expired rows in chunks of chunk_size, ascending id, and
sleeps chunk_delay seconds between chunks so that sustained deletion leaves I/O
for writers and readers. It stops at the first short chunk (fewer than chunk_size
rows, including zero): the cutoff is fixed for the whole sweep, so a short chunk
means nothing older is left.

Each sweeper holds a try-lock: a sweep requested while one is running returns at
once without touching the database. Errors are logged and end the sweep; the next
scheduled sweep starts over from the then-current cutoff.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from logkeeper.config_store import RetentionConfigStore, read_logs_ttl
from logkeeper.database import Database
from logkeeper.schema import SchemaGate
from logkeeper.types import (
    DEFAULT_LOGS_TTL_MS,
    SWEEP_CHUNK_DELAY,
    SWEEP_CHUNK_SIZE,
    SweepTarget,
    TableNames,
    to_epoch_ms,
    to_sql_datetime,
    utcnow,
)

logger = logging.getLogger(__name__)


# pylint: disable=too-many-instance-attributes
class RetentionSweeper:
    """Chunked, paced, non-reentrant TTL sweep for one table."""

    def __init__(
        self,
        db: Database,
        tables: TableNames,
        target: SweepTarget,
        config: RetentionConfigStore,
        gate: SchemaGate,
        *,
        chunk_size: int = SWEEP_CHUNK_SIZE,
        chunk_delay: float = SWEEP_CHUNK_DELAY,
        default_ttl: int = DEFAULT_LOGS_TTL_MS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self.target = SweepTarget(target)
        self._table = (
            tables.logs if self.target == SweepTarget.LOGS else tables.notifications
        )
        self._config = config
        self._gate = gate
        self.chunk_size = max(1, chunk_size)
        self.chunk_delay = chunk_delay
        self.default_ttl = default_ttl
        self._clock = clock
        self._guard = asyncio.Lock()

    @classmethod
    def for_logs(cls, db, tables, config, gate, **kwargs) -> "RetentionSweeper":
        """Sweeper for the logs table (aged by timestamp)."""
        return cls(db, tables, SweepTarget.LOGS, config, gate, **kwargs)

    @classmethod
    def for_notifications(cls, db, tables, config, gate, **kwargs) -> "RetentionSweeper":
        """Sweeper for the notifications table (aged by created_at)."""
        return cls(db, tables, SweepTarget.NOTIFICATIONS, config, gate, **kwargs)

    @property
    def running(self) -> bool:
        """True while a sweep holds the guard."""
        return self._guard.locked()

    async def sweep(self) -> Optional[int]:
        """
        Delete expired rows. Returns the number deleted (also when the sweep
        stopped on an error), or None when skipped because a sweep was running.
        Never raises, except for cancellation.
        """
        if self._guard.locked():
            logger.debug("%s sweep already running, skipped", self.target)
            return None
        async with self._guard:
            deleted_total = 0
            chunks = 0
            try:
                await self._gate.wait_ready()
                ttl = await read_logs_ttl(self._config, self.default_ttl)
                cutoff = self._cutoff(self._clock() - timedelta(milliseconds=ttl))
                while True:
                    deleted = await self._delete_chunk(cutoff)
                    chunks += 1
                    deleted_total += deleted
                    if deleted < self.chunk_size:
                        break
                    await asyncio.sleep(self.chunk_delay)
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception(
                    "%s sweep failed after %d chunks (%d rows deleted)",
                    self.target,
                    chunks,
                    deleted_total,
                )
                return deleted_total
            logger.info(
                "%s sweep done: %d rows older than %s deleted in %d chunks",
                self.target,
                deleted_total,
                cutoff,
                chunks,
            )
            return deleted_total

    def _cutoff(self, oldest_kept: datetime) -> Union[int, str]:
        # Compare against each column in its own stored type.
        if self.target == SweepTarget.LOGS:
            return to_epoch_ms(oldest_kept)
        return to_sql_datetime(oldest_kept)

    async def _delete_chunk(self, cutoff: Union[int, str]) -> int:
        if self.target == SweepTarget.LOGS:
            return await self._db.execute(
                f"""
                DELETE FROM {self._table} WHERE id IN (
                    SELECT id FROM {self._table}
                    WHERE timestamp < ?
                    ORDER BY id
                    LIMIT ?
                )
                """,
                (cutoff, self.chunk_size),
            )
        rows = await self._db.fetchall(
            f"SELECT id FROM {self._table} WHERE created_at < ? ORDER BY id LIMIT ?",
            (cutoff, self.chunk_size),
        )
        ids = [row["id"] for row in rows]
        if not ids:
            return 0
        placeholders = ", ".join("?" * len(ids))
        await self._db.execute(
            f"DELETE FROM {self._table} WHERE id IN ({placeholders})", ids
        )
        logger.debug("%s sweep chunk: %d rows", self.target, len(ids))
        return len(ids)
