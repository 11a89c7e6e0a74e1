"""Tests for logkeeper.queries (LogQueries)."""

from datetime import datetime, timedelta, timezone

import pytest

from logkeeper.buffer import LogBuffer
from logkeeper.database import Database
from logkeeper.queries import LogQueries
from logkeeper.schema import SchemaGate, create_tables
from logkeeper.types import LevelFilter, LogEntry, LogFilter, TableNames

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

T0 = datetime(2026, 5, 1, 0, 0, 0, tzinfo=timezone.utc)


async def _open(tmp_path, entries):
    """Store *entries* (ids 1..n in order) and return (db, queries)."""
    db = Database(str(tmp_path / "logs.db"))
    await db.connect()
    tables = TableNames.from_prefix("")
    gate = SchemaGate()
    await create_tables(db, tables, gate)
    buffer = LogBuffer(db, tables, gate, batch_size=10_000)
    buffer.append(entries)
    await buffer.flush()
    return db, LogQueries(db, tables)


def _entries(n=10):
    """Hourly entries; even ids on web-1, odd on web-2; every third is an error."""
    return [
        LogEntry(
            timestamp=T0 + timedelta(hours=i),
            hostname="web-1" if i % 2 else "web-2",
            pid=1000 + i,
            source="console",
            level="error" if i % 3 == 0 else "info",
            message=f"request {i} {'failed' if i % 3 == 0 else 'ok'}",
            meta=f'{{"i": {i}}}',
            correlation_id=500 + i,
        )
        for i in range(1, n + 1)
    ]


def _ids(items):
    return [item.id for item in items]


# ---------------------------------------------------------------------------
# get_logs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_logs_default_returns_newest_oldest_first(tmp_path):
    db, queries = await _open(tmp_path, _entries(10))

    items = await queries.get_logs(LogFilter(limit=3))

    assert _ids(items) == [8, 9, 10]
    assert items[0].timestamp == T0 + timedelta(hours=8)
    assert items[0].meta is None
    await db.close()


@pytest.mark.asyncio
async def test_get_logs_id_cursors(tmp_path):
    db, queries = await _open(tmp_path, _entries(10))

    assert _ids(await queries.get_logs(LogFilter(lt_id=5, limit=2))) == [3, 4]
    assert _ids(await queries.get_logs(LogFilter(gt_id=5, limit=2))) == [6, 7]
    await db.close()


@pytest.mark.asyncio
async def test_get_logs_timestamp_bounds(tmp_path):
    db, queries = await _open(tmp_path, _entries(10))

    before = await queries.get_logs(
        LogFilter(lte_timestamp=T0 + timedelta(hours=4), limit=2)
    )
    after = await queries.get_logs(
        LogFilter(gte_timestamp=T0 + timedelta(hours=4), limit=2)
    )

    assert _ids(before) == [3, 4]
    assert _ids(after) == [4, 5]
    await db.close()


@pytest.mark.asyncio
async def test_get_logs_hostnames_levels_and_correlation(tmp_path):
    db, queries = await _open(tmp_path, _entries(10))

    web1 = await queries.get_logs(LogFilter(hostnames=["web-1"]))
    assert _ids(web1) == [1, 3, 5, 7, 9]

    errors = await queries.get_logs(
        LogFilter(level_json=[LevelFilter(source="console", level="error")])
    )
    assert _ids(errors) == [3, 6, 9]

    # level_json and correlation_id are OR-ed
    either = await queries.get_logs(
        LogFilter(
            level_json=[LevelFilter(source="console", level="error")],
            correlation_id=501,
        )
    )
    assert _ids(either) == [1, 3, 6, 9]

    combined = await queries.get_logs(
        LogFilter(
            hostnames=["web-1"],
            level_json=[LevelFilter(source="console", level="error")],
        )
    )
    assert _ids(combined) == [3, 9]
    await db.close()


# ---------------------------------------------------------------------------
# search_logs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_search_logs_matches_all_terms(tmp_path):
    db, queries = await _open(tmp_path, _entries(10))

    items, applied = await queries.search_logs(["failed"])
    assert _ids(items) == [3, 6, 9]
    assert applied.limit == 100

    items, _ = await queries.search_logs(["request 1", "ok"])
    assert _ids(items) == [1, 10]
    await db.close()


@pytest.mark.asyncio
async def test_search_logs_derives_missing_time_bound(tmp_path):
    """A lone gte_timestamp gets lte = gte + 24h and the applied filter says so."""
    db, queries = await _open(tmp_path, _entries(30))
    start = T0 + timedelta(hours=2)

    items, applied = await queries.search_logs(
        ["request"], LogFilter(gte_timestamp=start, limit=100)
    )

    assert applied.lte_timestamp == start + timedelta(hours=24)
    assert _ids(items) == list(range(2, 27))
    await db.close()


@pytest.mark.asyncio
async def test_search_logs_lone_upper_bound(tmp_path):
    db, queries = await _open(tmp_path, _entries(30))
    end = T0 + timedelta(hours=28)

    items, applied = await queries.search_logs(
        ["request"], LogFilter(lte_timestamp=end, limit=3)
    )

    assert applied.gte_timestamp == end - timedelta(hours=24)
    assert _ids(items) == [26, 27, 28]
    await db.close()


@pytest.mark.asyncio
async def test_search_logs_does_not_mutate_caller_filter(tmp_path):
    db, queries = await _open(tmp_path, _entries(3))
    caller = LogFilter(gte_timestamp=T0)

    await queries.search_logs(["request"], caller)

    assert caller.lte_timestamp is None
    await db.close()


# ---------------------------------------------------------------------------
# meta / hostnames / delete
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_meta(tmp_path):
    db, queries = await _open(tmp_path, _entries(3))

    assert await queries.get_meta(2) == (2, '{"i": 2}')
    with pytest.raises(KeyError):
        await queries.get_meta(99)
    await db.close()


@pytest.mark.asyncio
async def test_get_hostnames_sorted_distinct(tmp_path):
    db, queries = await _open(tmp_path, _entries(4))
    assert await queries.get_hostnames() == ["web-1", "web-2"]
    await db.close()


@pytest.mark.asyncio
async def test_delete_all_logs_recreates_table(tmp_path):
    db, queries = await _open(tmp_path, _entries(5))

    await queries.delete_all_logs()

    assert await queries.get_logs() == []
    indexes = await db.fetchall(
        "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'errsole_logs_v3'"
    )
    assert len(indexes) == 4
    await db.close()
