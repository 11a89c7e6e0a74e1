"""Tests for logkeeper.schema, logkeeper.database and table naming."""

import asyncio

import pytest

from logkeeper.database import Database
from logkeeper.errors import StorageError
from logkeeper.schema import DESIRED_CACHE_SIZE, SchemaGate, configure, create_tables
from logkeeper.types import TableNames


# ---------------------------------------------------------------------------
# SchemaGate
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_gate_blocks_until_marked_ready():
    gate = SchemaGate()
    assert gate.is_ready() is False

    waiter = asyncio.create_task(gate.wait_ready())
    await asyncio.sleep(0.01)
    assert not waiter.done()

    gate.mark_ready()
    await asyncio.wait_for(waiter, timeout=1.0)
    assert gate.is_ready() is True

    # stays open
    gate.mark_ready()
    await asyncio.wait_for(gate.wait_ready(), timeout=1.0)


# ---------------------------------------------------------------------------
# Table names
# ---------------------------------------------------------------------------


def test_table_names_default_prefix():
    tables = TableNames.from_prefix("")
    assert tables.config == "errsole_config"
    assert tables.logs == "errsole_logs_v3"
    assert tables.notifications == "errsole_notifications_v2"
    assert tables.users == "errsole_users"


def test_table_names_custom_prefix_is_sanitized():
    tables = TableNames.from_prefix("My-App 2!")
    assert tables.logs == "errsole_myapp2_logs_v3"


# ---------------------------------------------------------------------------
# create_tables / configure
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_tables_opens_gate_and_is_idempotent(tmp_path):
    async with Database(str(tmp_path / "logs.db")) as db:
        tables = TableNames.from_prefix("")
        gate = SchemaGate()
        await create_tables(db, tables, gate)
        await create_tables(db, tables, gate)

        assert gate.is_ready()
        rows = await db.fetchall(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name LIKE 'errsole_%'"
        )
        assert {row["name"] for row in rows} == {
            tables.config,
            tables.logs,
            tables.notifications,
            tables.users,
        }
        indexes = await db.fetchall(
            "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = ?",
            (tables.logs,),
        )
        assert len([i for i in indexes if i["name"].startswith("idx_")]) == 4


@pytest.mark.asyncio
async def test_configure_raises_cache_size(tmp_path):
    async with Database(str(tmp_path / "logs.db")) as db:
        await configure(db)
        row = await db.fetchone("PRAGMA cache_size")
        assert row[0] >= DESIRED_CACHE_SIZE

        await db.execute("PRAGMA cache_size = 20000")
        await configure(db)
        row = await db.fetchone("PRAGMA cache_size")
        assert row[0] == 20000


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_engine_errors_become_storage_error(tmp_path):
    async with Database(str(tmp_path / "logs.db")) as db:
        with pytest.raises(StorageError):
            await db.execute("SELECT * FROM missing_table")


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(tmp_path):
    async with Database(str(tmp_path / "logs.db")) as db:
        await db.execute("CREATE TABLE t (x INTEGER)")

        with pytest.raises(ValueError):
            async with db.transaction() as tx:
                await tx.execute("INSERT INTO t (x) VALUES (1)")
                raise ValueError("boom")

        row = await db.fetchone("SELECT COUNT(*) AS n FROM t")
        assert row["n"] == 0

        async with db.transaction() as tx:
            await tx.execute("INSERT INTO t (x) VALUES (2)")
        row = await db.fetchone("SELECT COUNT(*) AS n FROM t")
        assert row["n"] == 1


@pytest.mark.asyncio
async def test_transaction_excludes_other_statements(tmp_path):
    """A statement issued during a transaction waits until it commits."""
    async with Database(str(tmp_path / "logs.db")) as db:
        await db.execute("CREATE TABLE t (x INTEGER)")
        order = []

        async def outside():
            await db.execute("INSERT INTO t (x) VALUES (99)")
            order.append("outside")

        async with db.transaction() as tx:
            task = asyncio.create_task(outside())
            await asyncio.sleep(0.02)
            await tx.execute("INSERT INTO t (x) VALUES (1)")
            order.append("tx")
        await task

        assert order == ["tx", "outside"]


@pytest.mark.asyncio
async def test_statement_before_connect_raises():
    db = Database(":memory:")
    with pytest.raises(RuntimeError):
        await db.execute("SELECT 1")
