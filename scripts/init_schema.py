"""
Schema initializer.

- Creates the ``archived_messages`` table and its indexes if missing

Supports a best-effort mode via ``--best-effort`` or ``INIT_SCHEMA_BEST_EFFORT=1``
which skips errors when the database is not reachable (useful in broker-only CI).

Examples:
    python -m scripts.init_schema
    python -m scripts.init_schema --best-effort
"""

import argparse
import asyncio
import os

from sqlalchemy.ext.asyncio import create_async_engine

from amqp_archive.config import Settings, normalize_database_url
from amqp_archive.orm_models import Base


async def main(database_url: str, best_effort: bool) -> None:
    """Create the archive schema on ``database_url``.

    When ``best_effort`` is True, any connection or DDL error is printed and
    the function returns successfully.
    """
    engine = create_async_engine(normalize_database_url(database_url))
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        print("[init_schema] archived_messages ready")
    except Exception as exc:  # noqa: BLE001
        if best_effort:
            print(f"[init_schema] Skipping: database not reachable ({exc})")
            return
        raise
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the archive table")
    parser.add_argument("--best-effort", action="store_true", help="Do not fail if the database is unreachable")
    args = parser.parse_args()

    best_effort_env = os.getenv("INIT_SCHEMA_BEST_EFFORT", "false").lower() in {"1", "true", "yes"}
    asyncio.run(main(Settings.from_env().database_url, bool(args.best_effort or best_effort_env)))
