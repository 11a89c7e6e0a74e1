"""
Database: one shared aiosqlite connection with serialized access.

Every statement runs under a single asyncio.Lock, so foreground calls, the flush
timer and the sweep timer never interleave on the connection. transaction()
holds the lock for the whole unit of work:

    async with db.transaction() as tx:
        row = await tx.fetchone("SELECT ...", (...))
        await tx.execute("INSERT ...", (...))

Engine errors are re-raised as StorageError.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional, Sequence

import aiosqlite

from logkeeper.errors import StorageError

logger = logging.getLogger(__name__)

Params = Sequence[Any]


class Database:
    """
    Serialized access to one SQLite file.

    The connection runs in autocommit mode (isolation_level=None); multi-statement
    units of work use transaction(), which issues BEGIN / COMMIT / ROLLBACK itself.
    """

    def __init__(self, filename: str) -> None:
        self.filename = filename
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> "Database":
        """Open the connection. Rows come back as aiosqlite.Row (mapping access)."""
        try:
            self._conn = await aiosqlite.connect(self.filename, isolation_level=None)
        except aiosqlite.Error as e:
            raise StorageError(str(e)) from e
        self._conn.row_factory = aiosqlite.Row
        logger.info("database connected (%s)", self.filename)
        return self

    async def close(self) -> None:
        """Close the connection; waits for an in-flight statement to finish."""
        async with self._lock:
            if self._conn is not None:
                await self._conn.close()
                self._conn = None
        logger.info("database closed (%s)", self.filename)

    def is_connected(self) -> bool:
        """True while the connection is open."""
        return self._conn is not None

    async def __aenter__(self) -> "Database":
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Statements (each acquires the lock)
    # ------------------------------------------------------------------

    async def execute(self, sql: str, params: Params = ()) -> int:
        """Run one statement; return the number of rows it changed."""
        async with self._lock:
            return await self._execute(sql, params)

    async def fetchone(self, sql: str, params: Params = ()) -> Optional[aiosqlite.Row]:
        """Run a query and return its first row, or None."""
        async with self._lock:
            return await self._fetchone(sql, params)

    async def fetchall(self, sql: str, params: Params = ()) -> List[aiosqlite.Row]:
        """Run a query and return all rows."""
        async with self._lock:
            return await self._fetchall(sql, params)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Transaction"]:
        """
        Hold the connection for one transaction. Commits on clean exit; on any
        exception (including cancellation) rolls back and re-raises.
        """
        async with self._lock:
            await self._execute("BEGIN")
            try:
                yield Transaction(self)
                await self._execute("COMMIT")
            except BaseException:
                await self._rollback()
                raise

    # ------------------------------------------------------------------
    # Unlocked primitives (caller holds self._lock)
    # ------------------------------------------------------------------

    def _require(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected; call connect() first")
        return self._conn

    async def _execute(self, sql: str, params: Params = ()) -> int:
        conn = self._require()
        try:
            async with conn.execute(sql, params) as cursor:
                return cursor.rowcount
        except aiosqlite.Error as e:
            logger.debug("statement failed: %s (%s)", e, sql.split("\n", 1)[0][:80])
            raise StorageError(str(e)) from e

    async def _fetchone(self, sql: str, params: Params = ()) -> Optional[aiosqlite.Row]:
        conn = self._require()
        try:
            async with conn.execute(sql, params) as cursor:
                return await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.debug("query failed: %s (%s)", e, sql.split("\n", 1)[0][:80])
            raise StorageError(str(e)) from e

    async def _fetchall(self, sql: str, params: Params = ()) -> List[aiosqlite.Row]:
        conn = self._require()
        try:
            async with conn.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            logger.debug("query failed: %s (%s)", e, sql.split("\n", 1)[0][:80])
            raise StorageError(str(e)) from e

    async def _rollback(self) -> None:
        try:
            await self._execute("ROLLBACK")
        except StorageError as e:
            # SQLite may already have rolled back on its own (e.g. after SQLITE_FULL)
            logger.warning("rollback failed: %s", e)


class Transaction:
    """Statement access inside Database.transaction(); the lock is already held."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def execute(self, sql: str, params: Params = ()) -> int:
        """Run one statement inside the transaction."""
        return await self._db._execute(sql, params)  # pylint: disable=protected-access

    async def fetchone(self, sql: str, params: Params = ()) -> Optional[aiosqlite.Row]:
        """Query inside the transaction; first row or None."""
        return await self._db._fetchone(sql, params)  # pylint: disable=protected-access

    async def fetchall(self, sql: str, params: Params = ()) -> List[aiosqlite.Row]:
        """Query inside the transaction; all rows."""
        return await self._db._fetchall(sql, params)  # pylint: disable=protected-access
