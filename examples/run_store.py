"""
Minimal logkeeper script.

Usage:
    python examples/run_store.py [--db PATH] [--prefix PREFIX] [--count N] [--ttl-ms MS]

Options:
    --db PATH       SQLite file (default: logkeeper.db)
    --prefix NAME   Table prefix (default: none)
    --count N       Number of demo log entries to append (default: 250)
    --ttl-ms MS     Set logsTTL before sweeping (default: leave as stored)
"""

import argparse
import asyncio
import hashlib
import logging
import os
import socket
from datetime import datetime, timezone

from logkeeper import LogEntry, LogStore

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def main() -> None:
    parser = argparse.ArgumentParser(description="logkeeper demo")
    parser.add_argument("--db", default="logkeeper.db")
    parser.add_argument("--prefix", default="")
    parser.add_argument("--count", type=int, default=250)
    parser.add_argument("--ttl-ms", type=int, default=None, help="logsTTL override")
    args = parser.parse_args()

    hostname = socket.gethostname()
    async with LogStore(args.db, table_prefix=args.prefix, chunk_delay=0.0) as store:
        if args.ttl_ms is not None:
            await store.set_config("logsTTL", str(args.ttl_ms))

        store.append_logs(
            LogEntry(
                timestamp=datetime.now(timezone.utc),
                hostname=hostname,
                pid=os.getpid(),
                source="console",
                level="error" if i % 50 == 0 else "info",
                message=f"demo message {i}",
            )
            for i in range(args.count)
        )
        await store.flush_logs()

        fingerprint = hashlib.sha256(b"demo message 0").hexdigest()
        result = await store.record_notification(None, hostname, fingerprint)
        logger.info(
            "notification recorded: today=%d previous=%s",
            result.today_count,
            result.previous.id if result.previous else None,
        )

        latest = await store.get_logs()
        logger.info("%d logs readable, hosts=%s", len(latest), await store.get_hostnames())

        deleted_logs, deleted_notifications = await asyncio.gather(
            store.sweep_expired_logs(), store.sweep_expired_notifications()
        )
        logger.info(
            "sweep removed %s logs and %s notifications",
            deleted_logs,
            deleted_notifications,
        )


if __name__ == "__main__":
    asyncio.run(main())
