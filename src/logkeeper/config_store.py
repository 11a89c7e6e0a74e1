"""
Config store: single-row key/value settings (used for logsTTL).

RetentionConfigStore is the contract the sweeper reads the TTL through;
ConfigStore implements it over the config table.
"""

import logging
from typing import Optional, Protocol

from logkeeper.database import Database
from logkeeper.errors import ConfigurationError
from logkeeper.types import DEFAULT_LOGS_TTL_MS, LOGS_TTL_KEY, TableNames

logger = logging.getLogger(__name__)


class RetentionConfigStore(Protocol):
    """Protocol for key/value settings persistence."""

    async def get(self, key: str) -> Optional[str]:
        """Return the stored value for key, or None"""

    async def set(self, key: str, value: str) -> None:
        """Insert or replace the value for key"""


class ConfigStore:
    """Config table access."""

    def __init__(self, db: Database, tables: TableNames) -> None:
        self._db = db
        self._table = tables.config

    async def get(self, key: str) -> Optional[str]:
        """Return the value stored for *key*, or None."""
        row = await self._db.fetchone(
            f"SELECT value FROM {self._table} WHERE key = ?", (key,)
        )
        return row["value"] if row is not None else None

    async def set(self, key: str, value: str) -> None:
        """Upsert *key* = *value*."""
        await self._db.execute(
            f"""
            INSERT INTO {self._table} (key, value) VALUES (?, ?)
            ON CONFLICT (key) DO UPDATE SET value = excluded.value
            """,
            (key, str(value)),
        )
        logger.debug("config %s updated", key)

    async def delete(self, key: str) -> None:
        """Remove *key*. Raises KeyError if it does not exist."""
        changed = await self._db.execute(
            f"DELETE FROM {self._table} WHERE key = ?", (key,)
        )
        if changed == 0:
            raise KeyError(f"configuration not found: {key}")


def parse_ttl(value: str) -> int:
    """Parse a stored TTL (milliseconds). Raises ConfigurationError if unusable."""
    try:
        ttl = int(str(value).strip())
    except ValueError as e:
        raise ConfigurationError(f"invalid {LOGS_TTL_KEY} value: {value!r}") from e
    if ttl <= 0:
        raise ConfigurationError(f"invalid {LOGS_TTL_KEY} value: {value!r}")
    return ttl


async def read_logs_ttl(
    config: RetentionConfigStore, default: int = DEFAULT_LOGS_TTL_MS
) -> int:
    """TTL in milliseconds; *default* when the setting is absent or unparsable."""
    value = await config.get(LOGS_TTL_KEY)
    if value is None:
        return default
    try:
        return parse_ttl(value)
    except ConfigurationError as e:
        logger.warning("%s; using default %d ms", e, default)
        return default


async def ensure_logs_ttl(
    config: RetentionConfigStore, default: int = DEFAULT_LOGS_TTL_MS
) -> None:
    """Write the default TTL if none is stored yet. Existing values are left alone."""
    if await config.get(LOGS_TTL_KEY) is None:
        await config.set(LOGS_TTL_KEY, str(default))
        logger.info("%s initialized to %d ms", LOGS_TTL_KEY, default)
