"""
Types for the log store.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Optional
import re

# ─── Defaults ───────────────────────────────────────────────────────────────

# 7 days in milliseconds.
DEFAULT_LOGS_TTL_MS = 7 * 24 * 60 * 60 * 1000
LOGS_TTL_KEY = "logsTTL"

DEFAULT_BATCH_SIZE = 100
DEFAULT_FLUSH_INTERVAL = 1.0
DEFAULT_LOGS_LIMIT = 100

# Retention sweep: rows per DELETE, pause between chunks, time between sweeps.
SWEEP_CHUNK_SIZE = 1000
SWEEP_CHUNK_DELAY = 10.0
SWEEP_INTERVAL = 60 * 60.0

# Log timestamps are stored as integer epoch milliseconds. Notification
# created_at is CURRENT_TIMESTAMP text, which has one-second resolution.
SQL_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# Shared with existing errsole SQLite files.
TABLE_PREFIX_DEFAULT = "errsole"

CorrelationId = int
Fingerprint = str


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes are taken as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    """Render *value* as the stored log timestamp (epoch milliseconds)."""
    return int(_as_utc(value).timestamp() * 1000)


def to_sql_datetime(value: datetime) -> str:
    """Render *value* the way SQLite renders CURRENT_TIMESTAMP."""
    return _as_utc(value).strftime(SQL_DATETIME_FORMAT)


def from_db_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware UTC datetime. Accepts epoch
    milliseconds (int, float or digit text) and ISO / CURRENT_TIMESTAMP text.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, (int, float)) or str(value).strip().isdigit():
        return datetime.fromtimestamp(int(value) / 1000, timezone.utc)
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TableNames:
    """
    Table names for one store. An optional prefix keeps several stores apart in one file:
    "" -> errsole_*, "My App" -> errsole_myapp_*.
    """

    config: str
    logs: str
    notifications: str
    users: str

    @classmethod
    def from_prefix(cls, table_prefix: str = "") -> "TableNames":
        """Build the table names for *table_prefix*."""
        cleaned = re.sub(r"[^a-z0-9]", "", (table_prefix or "").lower())
        prefix = (
            f"{TABLE_PREFIX_DEFAULT}_{cleaned}" if cleaned else TABLE_PREFIX_DEFAULT
        )
        return cls(
            config=f"{prefix}_config",
            logs=f"{prefix}_logs_v3",
            notifications=f"{prefix}_notifications_v2",
            users=f"{prefix}_users",
        )


class SweepTarget(StrEnum):
    """
    Which table a retention sweep reclaims:
    - LOGS: log rows, aged by their own timestamp.
    - NOTIFICATIONS: notification rows, aged by created_at.
    """

    LOGS = "logs"
    NOTIFICATIONS = "notifications"


@dataclass
class LogEntry:
    """
    One structured log record.

    correlation_id groups related entries (stored in the errsole_id column).
    id is assigned by the store on insert and is None until read back.
    """

    timestamp: datetime
    hostname: str
    source: str
    message: str
    level: str = "info"
    pid: Optional[int] = None
    meta: Optional[str] = None
    correlation_id: Optional[CorrelationId] = None
    id: Optional[int] = None

    def to_row(self) -> tuple:
        """Values in the column order used by the batch insert."""
        return (
            to_epoch_ms(self.timestamp),
            self.hostname,
            self.pid,
            self.source,
            self.level or "info",
            self.message,
            self.meta,
            self.correlation_id,
        )

    @classmethod
    def from_row(cls, row) -> "LogEntry":
        """Build a LogEntry from a db row (sqlite Row or mapping)."""
        keys = row.keys()
        return cls(
            id=row["id"],
            timestamp=from_db_timestamp(row["timestamp"]),
            hostname=row["hostname"],
            pid=row["pid"],
            source=row["source"],
            level=row["level"],
            message=row["message"],
            meta=row["meta"] if "meta" in keys else None,
            correlation_id=row["errsole_id"],
        )


@dataclass
class NotificationRecord:
    """One recorded notification occurrence. Append-only."""

    id: int
    correlation_id: Optional[CorrelationId]
    hostname: str
    fingerprint: Fingerprint
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "NotificationRecord":
        """Build a NotificationRecord from a db row."""
        return cls(
            id=row["id"],
            correlation_id=row["errsole_id"],
            hostname=row["hostname"],
            fingerprint=row["hashed_message"],
            created_at=from_db_timestamp(row["created_at"]),
            updated_at=from_db_timestamp(row["updated_at"]),
        )


@dataclass
class NotificationResult:
    """Outcome of recording a notification: the prior occurrence and today's count (incl. this one)."""

    previous: Optional[NotificationRecord]
    today_count: int


@dataclass(frozen=True)
class LevelFilter:
    """(source, level) pair; a log matches if both columns equal."""

    source: str
    level: str


@dataclass
class LogFilter:
    """
    Fixed filter set for log retrieval.

    lt_id / gt_id page by identity; lte_timestamp / gte_timestamp page by time.
    level_json and correlation_id are OR-ed together.
    """

    lt_id: Optional[int] = None
    gt_id: Optional[int] = None
    lte_timestamp: Optional[datetime] = None
    gte_timestamp: Optional[datetime] = None
    hostnames: list[str] = field(default_factory=list)
    level_json: list[LevelFilter] = field(default_factory=list)
    correlation_id: Optional[CorrelationId] = None
    limit: int = DEFAULT_LOGS_LIMIT


@dataclass
class User:
    """A dashboard account. The password hash never leaves the store."""

    id: int
    email: str
    role: str
    name: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "User":
        """Build a User from a db row."""
        return cls(id=row["id"], name=row["name"], email=row["email"], role=row["role"])
