"""
LogQueries: read side of the logs table with a fixed filter set.

Results are always returned oldest first. Descending scans (lt_id, lte_timestamp,
or no cursor at all) fetch the newest `limit` rows and reverse them.
"""

import logging
from dataclasses import replace
from datetime import timedelta
from typing import List, Optional, Tuple

from logkeeper.database import Database
from logkeeper.schema import logs_table_statements
from logkeeper.types import (
    DEFAULT_LOGS_LIMIT,
    LogEntry,
    LogFilter,
    TableNames,
    to_epoch_ms,
)

logger = logging.getLogger(__name__)

_SELECT_COLUMNS = "id, hostname, pid, source, timestamp, level, message, errsole_id"

# When search_logs gets only one time bound, the other is this far away.
SEARCH_WINDOW = timedelta(hours=24)


def _match_clauses(filters: LogFilter, where: List[str], values: list) -> None:
    """hostnames, then the OR-ed (source, level) / correlation_id group."""
    if filters.hostnames:
        where.append(f"hostname IN ({', '.join('?' * len(filters.hostnames))})")
        values.extend(filters.hostnames)
    or_conditions = []
    if filters.level_json:
        level_conditions = ["(source = ? AND level = ?)"] * len(filters.level_json)
        or_conditions.append(f"({' OR '.join(level_conditions)})")
        for lf in filters.level_json:
            values.extend((lf.source, lf.level))
    if filters.correlation_id:
        or_conditions.append("errsole_id = ?")
        values.append(filters.correlation_id)
    if or_conditions:
        where.append(f"({' OR '.join(or_conditions)})")


class LogQueries:
    """Filtered log reads plus the maintenance operations on the logs table."""

    def __init__(self, db: Database, tables: TableNames) -> None:
        self._db = db
        self._tables = tables
        self._table = tables.logs

    async def _select(
        self, where: List[str], values: list, order_by: str, reverse: bool, limit: int
    ) -> List[LogEntry]:
        where_clause = f"WHERE {' AND '.join(where)}" if where else ""
        rows = await self._db.fetchall(
            f"SELECT {_SELECT_COLUMNS} FROM {self._table} {where_clause} "
            f"ORDER BY {order_by} LIMIT ?",
            [*values, limit],
        )
        items = [LogEntry.from_row(row) for row in rows]
        if reverse:
            items.reverse()
        return items

    async def get_logs(self, filters: Optional[LogFilter] = None) -> List[LogEntry]:
        """
        Logs matching *filters*. Only one cursor applies, in order of precedence:
        lt_id, gt_id, then the timestamp bounds.
        """
        filters = filters or LogFilter()
        where: List[str] = []
        values: list = []
        _match_clauses(filters, where, values)

        order_by, reverse = "id DESC", True
        if filters.lt_id:
            where.append("id < ?")
            values.append(filters.lt_id)
        elif filters.gt_id:
            where.append("id > ?")
            values.append(filters.gt_id)
            order_by, reverse = "id ASC", False
        elif filters.lte_timestamp or filters.gte_timestamp:
            if filters.lte_timestamp:
                where.append("timestamp <= ?")
                values.append(to_epoch_ms(filters.lte_timestamp))
                order_by, reverse = "timestamp DESC, id DESC", True
            if filters.gte_timestamp:
                where.append("timestamp >= ?")
                values.append(to_epoch_ms(filters.gte_timestamp))
                order_by, reverse = "timestamp ASC, id ASC", False

        return await self._select(
            where, values, order_by, reverse, filters.limit or DEFAULT_LOGS_LIMIT
        )

    async def search_logs(
        self, search_terms: List[str], filters: Optional[LogFilter] = None
    ) -> Tuple[List[LogEntry], LogFilter]:
        """
        Logs whose message contains every term, narrowed by *filters*.

        A single time bound is widened into a 24 h window; the returned LogFilter
        carries the bounds actually applied.
        """
        filters = replace(filters) if filters else LogFilter()
        where = ["message LIKE ?"] * len(search_terms)
        values: list = [f"%{term}%" for term in search_terms]
        _match_clauses(filters, where, values)

        order_by, reverse = "id DESC", True
        if filters.lt_id:
            where.append("id < ?")
            values.append(filters.lt_id)
        if filters.gt_id:
            where.append("id > ?")
            values.append(filters.gt_id)
            order_by, reverse = "id ASC", False
        if filters.lte_timestamp and not filters.gte_timestamp:
            filters.gte_timestamp = filters.lte_timestamp - SEARCH_WINDOW
            bounds_order = ("timestamp DESC, id DESC", True)
        elif filters.gte_timestamp and not filters.lte_timestamp:
            filters.lte_timestamp = filters.gte_timestamp + SEARCH_WINDOW
            bounds_order = ("timestamp ASC, id ASC", False)
        else:
            bounds_order = ("timestamp ASC, id ASC", False)
        if filters.lte_timestamp and filters.gte_timestamp:
            where.append("timestamp <= ?")
            values.append(to_epoch_ms(filters.lte_timestamp))
            where.append("timestamp >= ?")
            values.append(to_epoch_ms(filters.gte_timestamp))
            order_by, reverse = bounds_order

        filters.limit = filters.limit or DEFAULT_LOGS_LIMIT
        items = await self._select(where, values, order_by, reverse, filters.limit)
        return items, filters

    async def get_meta(self, log_id: int) -> Tuple[int, Optional[str]]:
        """Return (id, meta) for one log entry. Raises KeyError if absent."""
        row = await self._db.fetchone(
            f"SELECT id, meta FROM {self._table} WHERE id = ?", (log_id,)
        )
        if row is None:
            raise KeyError(f"log entry not found: {log_id}")
        return row["id"], row["meta"]

    async def get_hostnames(self) -> List[str]:
        """Distinct non-empty hostnames, sorted."""
        rows = await self._db.fetchall(
            f"SELECT DISTINCT hostname FROM {self._table} "
            "WHERE hostname IS NOT NULL AND hostname != '' ORDER BY hostname"
        )
        return [row["hostname"] for row in rows]

    async def delete_all_logs(self) -> None:
        """Drop and re-create the logs table in one transaction."""
        async with self._db.transaction() as tx:
            await tx.execute(f"DROP TABLE IF EXISTS {self._table}")
            for statement in logs_table_statements(self._tables):
                await tx.execute(statement)
        logger.info("all logs deleted (%s re-created)", self._table)
