"""
LogBuffer: in-memory write buffer with batched flushes.

append() only extends a list; when the list reaches batch_size a flush is scheduled
on the running loop. At most one such flush is outstanding; a burst of appends
while it waits is picked up by it or by the one scheduled when it finishes.
A timer task also flushes every flush_interval seconds so that low-volume logs
still reach the store.

flush() swaps the pending list for a fresh one before any I/O (drain-and-swap): entries
appended while an insert is in flight land in the next batch, never in the one being
written and never twice.

Delivery is at-most-once. If the insert fails, flush() raises StorageError and the
drained batch is dropped, not re-queued; append() has already returned by then.
"""

import asyncio
import logging
from typing import Iterable, List, Optional, Set

from logkeeper.database import Database
from logkeeper.errors import StorageError
from logkeeper.schema import SchemaGate
from logkeeper.types import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_FLUSH_INTERVAL,
    LogEntry,
    TableNames,
)

logger = logging.getLogger(__name__)

# 8 bound values per row; 100 rows stays under SQLite's oldest variable limit (999).
ROWS_PER_STATEMENT = 100

_INSERT_COLUMNS = "(timestamp, hostname, pid, source, level, message, meta, errsole_id)"
_ROW_PLACEHOLDER = "(?, ?, ?, ?, ?, ?, ?, ?)"


# pylint: disable=too-many-instance-attributes
class LogBuffer:
    """
    Pending log entries for one store.

    - append(entries): never blocks, never raises.
    - flush(): waits for the schema gate, drains the buffer, inserts the batch.
    - start() / stop(): periodic flush timer.
    """

    def __init__(
        self,
        db: Database,
        tables: TableNames,
        gate: SchemaGate,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
    ) -> None:
        self._db = db
        self._table = tables.logs
        self._gate = gate
        self.batch_size = max(1, batch_size)
        self.flush_interval = flush_interval
        self._pending: List[LogEntry] = []
        # Only one flush drains at a time
        self._flush_lock = asyncio.Lock()
        # Flushes triggered by append(); strong refs until done
        self._triggered: Set[asyncio.Task] = set()
        self._timer: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def pending(self) -> int:
        """Number of entries waiting for the next flush."""
        return len(self._pending)

    # ------------------------------------------------------------------
    # Append / flush
    # ------------------------------------------------------------------

    def append(self, entries: Iterable[LogEntry]) -> None:
        """Queue entries in the given order; schedule a flush if the batch is full."""
        self._pending.extend(entries)
        if len(self._pending) >= self.batch_size and not self._triggered:
            self._schedule_flush()

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet: the timer picks the entries up once the store runs
            logger.debug("append outside event loop, flush deferred to timer")
            return
        task = loop.create_task(self.flush())
        self._triggered.add(task)
        task.add_done_callback(self._on_triggered_done)

    def _on_triggered_done(self, task: asyncio.Task) -> None:
        self._triggered.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("batch flush failed: %s", exc)
        # A full batch appended while this flush ran gets a flush of its own
        if len(self._pending) >= self.batch_size and not self._stopping.is_set():
            self._schedule_flush()

    async def flush(self) -> int:
        """
        Write everything pending as one batch. Returns the number of rows inserted
        (duplicates ignored by the store are not counted); 0 when nothing was pending.
        Raises StorageError; the drained batch is dropped in that case.
        """
        async with self._flush_lock:
            await self._gate.wait_ready()
            batch, self._pending = self._pending, []
            if not batch:
                return 0
            try:
                inserted = await self._insert(batch)
            except StorageError:
                logger.error("flush failed, dropped %d log entries", len(batch))
                raise
            logger.debug("flushed %d log entries (%d inserted)", len(batch), inserted)
            return inserted

    async def _insert(self, batch: List[LogEntry]) -> int:
        rows = [entry.to_row() for entry in batch]
        inserted = 0
        async with self._db.transaction() as tx:
            for start in range(0, len(rows), ROWS_PER_STATEMENT):
                chunk = rows[start : start + ROWS_PER_STATEMENT]
                placeholders = ", ".join([_ROW_PLACEHOLDER] * len(chunk))
                params = [value for row in chunk for value in row]
                inserted += await tx.execute(
                    f"INSERT OR IGNORE INTO {self._table} {_INSERT_COLUMNS} "
                    f"VALUES {placeholders}",
                    params,
                )
        return inserted

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic flush timer (idempotent)."""
        if self._timer is None:
            self._stopping.clear()
            self._timer = asyncio.create_task(self._run_timer())
            logger.info("flush timer started (every %.1fs)", self.flush_interval)

    async def _run_timer(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.flush_interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.flush()
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.warning("periodic flush failed: %s", e)

    async def stop(self) -> None:
        """
        Stop the timer without interrupting an in-flight flush, wait for triggered
        flushes, then flush whatever is still pending.
        """
        if self._timer is not None:
            self._stopping.set()
            await self._timer
            self._timer = None
            logger.info("flush timer stopped")
        while self._triggered:
            await asyncio.gather(*self._triggered, return_exceptions=True)
        if self._gate.is_ready():
            await self.flush()
