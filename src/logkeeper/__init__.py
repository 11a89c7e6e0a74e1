"""
logkeeper - buffered SQLite storage for structured logs and notification dedup
"""

__version__ = "0.1.0"

from logkeeper.errors import (
    AuthenticationError,
    ConfigurationError,
    DuplicateUserError,
    StorageError,
)
from logkeeper.store import LogStore
from logkeeper.types import (
    LevelFilter,
    LogEntry,
    LogFilter,
    NotificationRecord,
    NotificationResult,
    User,
)

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "DuplicateUserError",
    "LevelFilter",
    "LogEntry",
    "LogFilter",
    "LogStore",
    "NotificationRecord",
    "NotificationResult",
    "StorageError",
    "User",
    "__version__",
]
