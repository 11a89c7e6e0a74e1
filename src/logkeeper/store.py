"""
LogStore: the object a logging front end talks to.

Wires one SQLite file to the write buffer, the two retention sweepers, the
notification deduper and the read-side queries, and runs the periodic flush and
sweep timers.

    async with LogStore("logs.db") as store:
        store.append_logs([LogEntry(...)])
        result = await store.record_notification(42, "web-1", fingerprint)
"""

import asyncio
import logging
from typing import Iterable, List, Optional, Tuple

from logkeeper.buffer import LogBuffer
from logkeeper.config_store import ConfigStore, ensure_logs_ttl
from logkeeper.database import Database
from logkeeper.notifications import NotificationDeduper
from logkeeper.queries import LogQueries
from logkeeper.retention import RetentionSweeper
from logkeeper.schema import SchemaGate, configure, create_tables
from logkeeper.types import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_FLUSH_INTERVAL,
    DEFAULT_LOGS_TTL_MS,
    SWEEP_CHUNK_DELAY,
    SWEEP_CHUNK_SIZE,
    SWEEP_INTERVAL,
    CorrelationId,
    Fingerprint,
    LogEntry,
    LogFilter,
    NotificationResult,
    TableNames,
    User,
)
from logkeeper.users import DEFAULT_SALT_ROUNDS, UserStore

logger = logging.getLogger(__name__)


# pylint: disable=too-many-instance-attributes,too-many-public-methods
class LogStore:
    """
    SQLite-backed log store.

    - start(): connect, set pragmas, create tables (opens the schema gate),
      seed logsTTL, start the flush and sweep timers.
    - append_logs() never blocks and never raises; flush_logs() and
      record_notification() raise StorageError; the sweeps never raise.
    - stop(): stop timers, let in-flight work finish, final flush, close.
    """

    def __init__(
        self,
        filename: str,
        *,
        table_prefix: str = "",
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        sweep_interval: float = SWEEP_INTERVAL,
        chunk_size: int = SWEEP_CHUNK_SIZE,
        chunk_delay: float = SWEEP_CHUNK_DELAY,
        logs_ttl_default: int = DEFAULT_LOGS_TTL_MS,
        salt_rounds: int = DEFAULT_SALT_ROUNDS,
    ) -> None:
        self.filename = filename
        self.tables = TableNames.from_prefix(table_prefix)
        self.sweep_interval = sweep_interval
        self.logs_ttl_default = logs_ttl_default
        self.db = Database(filename)
        self.gate = SchemaGate()
        self.config = ConfigStore(self.db, self.tables)
        self.buffer = LogBuffer(
            self.db,
            self.tables,
            self.gate,
            batch_size=batch_size,
            flush_interval=flush_interval,
        )
        sweep_options = {
            "chunk_size": chunk_size,
            "chunk_delay": chunk_delay,
            "default_ttl": logs_ttl_default,
        }
        self.logs_sweeper = RetentionSweeper.for_logs(
            self.db, self.tables, self.config, self.gate, **sweep_options
        )
        self.notifications_sweeper = RetentionSweeper.for_notifications(
            self.db, self.tables, self.config, self.gate, **sweep_options
        )
        self.notifications = NotificationDeduper(self.db, self.tables, self.gate)
        self.queries = LogQueries(self.db, self.tables)
        self.users = UserStore(self.db, self.tables, salt_rounds=salt_rounds)
        self._sweep_task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Connect and prepare the schema; opens the schema gate. No timers."""
        if not self.db.is_connected():
            await self.db.connect()
        await configure(self.db)
        await create_tables(self.db, self.tables, self.gate)
        await ensure_logs_ttl(self.config, self.logs_ttl_default)

    async def start(self) -> "LogStore":
        """initialize(), then start the flush timer and the sweep timer."""
        await self.initialize()
        self.buffer.start()
        if self._sweep_task is None:
            self._stopping.clear()
            self._sweep_task = asyncio.create_task(self._run_sweeps())
            logger.info("sweep timer started (every %.0fs)", self.sweep_interval)
        logger.info("log store ready (%s)", self.filename)
        return self

    async def _run_sweeps(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.sweep_interval)
                break
            except asyncio.TimeoutError:
                pass
            await asyncio.gather(
                self.sweep_expired_logs(), self.sweep_expired_notifications()
            )

    async def stop(self) -> None:
        """
        Stop timers, wait for in-flight sweeps and flushes, flush what is
        pending and close the database.
        """
        if self._sweep_task is not None:
            self._stopping.set()
            await self._sweep_task
            self._sweep_task = None
        await self.buffer.stop()
        await self.db.close()
        logger.info("log store stopped (%s)", self.filename)

    async def __aenter__(self) -> "LogStore":
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def append_logs(self, entries: Iterable[LogEntry]) -> None:
        """Buffer log entries; flushed in batches or by the timer."""
        self.buffer.append(entries)

    async def flush_logs(self) -> int:
        """Write pending entries now. Raises StorageError (batch dropped)."""
        return await self.buffer.flush()

    async def sweep_expired_logs(self) -> Optional[int]:
        """Delete expired log rows; None if a logs sweep was already running."""
        return await self.logs_sweeper.sweep()

    async def sweep_expired_notifications(self) -> Optional[int]:
        """Delete expired notification rows; None if already running."""
        return await self.notifications_sweeper.sweep()

    async def record_notification(
        self,
        correlation_id: Optional[CorrelationId],
        hostname: str,
        fingerprint: Fingerprint,
    ) -> NotificationResult:
        """Record a notification; returns the previous one and today's count."""
        return await self.notifications.record(correlation_id, hostname, fingerprint)

    async def count_notifications(self, fingerprint: Fingerprint) -> int:
        """Stored notifications for *fingerprint*, any day."""
        return await self.notifications.count(fingerprint)

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    async def get_config(self, key: str) -> Optional[str]:
        """Stored value for *key*, or None."""
        return await self.config.get(key)

    async def set_config(self, key: str, value: str) -> str:
        """Upsert *key*; returns the stored value."""
        await self.config.set(key, value)
        return str(value)

    async def delete_config(self, key: str) -> None:
        """Delete *key*; KeyError if missing."""
        await self.config.delete(key)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_logs(self, filters: Optional[LogFilter] = None) -> List[LogEntry]:
        """See LogQueries.get_logs."""
        return await self.queries.get_logs(filters)

    async def search_logs(
        self, search_terms: List[str], filters: Optional[LogFilter] = None
    ) -> Tuple[List[LogEntry], LogFilter]:
        """See LogQueries.search_logs."""
        return await self.queries.search_logs(search_terms, filters)

    async def get_meta(self, log_id: int) -> Tuple[int, Optional[str]]:
        """(id, meta) for one log entry."""
        return await self.queries.get_meta(log_id)

    async def get_hostnames(self) -> List[str]:
        """Distinct hostnames seen in the logs table."""
        return await self.queries.get_hostnames()

    async def delete_all_logs(self) -> None:
        """Empty the logs table (drop and re-create)."""
        await self.queries.delete_all_logs()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create_user(
        self, email: str, password: str, role: str, name: Optional[str] = None
    ) -> User:
        """Add a user; DuplicateUserError if the email is taken."""
        return await self.users.create_user(email, password, role, name)

    async def verify_user(self, email: str, password: str) -> User:
        """Check credentials; AuthenticationError on mismatch."""
        return await self.users.verify_user(email, password)

    async def get_user_count(self) -> int:
        return await self.users.get_user_count()

    async def get_all_users(self) -> List[User]:
        return await self.users.get_all_users()

    async def get_user_by_email(self, email: str) -> User:
        return await self.users.get_user_by_email(email)

    async def update_user_by_email(self, email: str, **updates: str) -> User:
        """Change name, email and/or role."""
        return await self.users.update_user_by_email(email, **updates)

    async def update_password(
        self, email: str, current_password: str, new_password: str
    ) -> User:
        return await self.users.update_password(email, current_password, new_password)

    async def delete_user(self, user_id: int) -> None:
        await self.users.delete_user(user_id)
