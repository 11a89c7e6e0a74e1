"""
Schema setup and the readiness gate.

SchemaGate is a one-shot signal: create_tables() finishing is the only thing that
opens it, and data statements (flush, sweep, notification record) wait on it.

Column names follow the pre-existing row layout so older files stay readable:
errsole_id holds the correlation id, hashed_message holds the fingerprint, and
log timestamps are epoch milliseconds.
"""

import asyncio
import logging
from typing import List

from logkeeper.database import Database
from logkeeper.types import TableNames

logger = logging.getLogger(__name__)

DESIRED_CACHE_SIZE = 8 * 1024


class SchemaGate:
    """Readiness signal: tables and indexes exist, data statements may run."""

    def __init__(self) -> None:
        self._ready = asyncio.Event()

    def is_ready(self) -> bool:
        """True once mark_ready() has been called."""
        return self._ready.is_set()

    def mark_ready(self) -> None:
        """Open the gate. Stays open for the life of the process."""
        if not self._ready.is_set():
            self._ready.set()
            logger.debug("schema gate open")

    async def wait_ready(self) -> None:
        """Block until the gate is open. Not cancellable by the gate itself."""
        await self._ready.wait()


def logs_table_statements(tables: TableNames) -> List[str]:
    """DDL for the logs table and its indexes (also used to re-create it)."""
    t = tables.logs
    return [
        f"""
        CREATE TABLE IF NOT EXISTS {t} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            hostname TEXT,
            pid INTEGER,
            timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
            source TEXT,
            level TEXT DEFAULT 'info',
            message TEXT,
            meta TEXT,
            errsole_id BIGINT
        )
        """,
        f"CREATE INDEX IF NOT EXISTS idx_{t}_source_level_id ON {t} (source, level, id)",
        f"CREATE INDEX IF NOT EXISTS idx_{t}_source_level_timestamp_id "
        f"ON {t} (source, level, timestamp, id)",
        f"CREATE INDEX IF NOT EXISTS idx_{t}_timestamp_id ON {t} (timestamp, id)",
        f"CREATE INDEX IF NOT EXISTS idx_{t}_errsole_id ON {t} (errsole_id)",
    ]


def other_table_statements(tables: TableNames) -> List[str]:
    """DDL for the config, users and notifications tables."""
    n = tables.notifications
    return [
        f"""
        CREATE TABLE IF NOT EXISTS {tables.users} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT,
            email TEXT UNIQUE NOT NULL,
            hashed_password TEXT NOT NULL,
            role TEXT NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS {tables.config} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            key TEXT UNIQUE NOT NULL,
            value TEXT NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS {n} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            errsole_id BIGINT,
            hostname TEXT,
            hashed_message TEXT,
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
            updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
        )
        """,
        f"CREATE INDEX IF NOT EXISTS idx_{n}_hashed_message_created_at "
        f"ON {n} (hashed_message, created_at)",
        f"CREATE INDEX IF NOT EXISTS idx_{n}_created_at ON {n} (created_at)",
    ]


async def configure(db: Database) -> None:
    """Enable full auto-vacuum and raise the page cache (never lowers it)."""
    await db.execute("PRAGMA auto_vacuum = FULL")
    row = await db.fetchone("PRAGMA cache_size")
    current = row[0] if row is not None else 0
    if current < DESIRED_CACHE_SIZE:
        await db.execute(f"PRAGMA cache_size = {DESIRED_CACHE_SIZE}")
        logger.debug("cache_size raised from %d to %d", current, DESIRED_CACHE_SIZE)


async def create_tables(db: Database, tables: TableNames, gate: SchemaGate) -> None:
    """Create all tables and indexes if missing, then open *gate*."""
    for statement in logs_table_statements(tables) + other_table_statements(tables):
        await db.execute(statement)
    gate.mark_ready()
    logger.info("schema ready (%s, %s, %s)", tables.logs, tables.notifications, tables.config)
