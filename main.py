"""
Sentinel entry point.

Applies the PostgreSQL schema or runs the offline console demo.

Usage:
    Schema setup:  python main.py init-db
    Console demo:  python main.py demo
"""

import asyncio
import logging
import sys

from sentinel.config import load_config

logger = logging.getLogger(__name__)


async def _init_db() -> None:
    """Install the reservation schema into DATABASE_URL (requires btree_gist)."""
    from sentinel.storage.postgres import PostgresReservationStore

    config = load_config()
    store = await PostgresReservationStore.connect(config.database)
    try:
        await store.apply_schema()
    finally:
        await store.close()
    logger.info("Database ready")


def _run_demo() -> None:
    """Start the offline console demo (no database or network required)."""
    from console_demo import ConsoleSession

    asyncio.run(ConsoleSession().run())


if __name__ == "__main__":
    command = sys.argv[1] if len(sys.argv) > 1 else "demo"
    if command == "init-db":
        asyncio.run(_init_db())
    elif command == "demo":
        _run_demo()
    else:
        print(f"Unknown command {command!r}. Use 'init-db' or 'demo'.", file=sys.stderr)
        sys.exit(2)
