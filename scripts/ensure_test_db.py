from __future__ import annotations

import asyncio
import re

import asyncpg
from sqlalchemy.engine import make_url

from trialgate.core.config import get_settings
from trialgate.core.integration_db_safety import assess_integration_db_safety

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


async def _ensure_database_exists(database_url: str) -> None:
    safety = assess_integration_db_safety(database_url)
    if not safety.is_safe:
        raise RuntimeError(f"Refusing to create database: {safety.reason}")
    if IDENTIFIER_RE.fullmatch(safety.database_name) is None:
        raise RuntimeError(f"Unsupported database name {safety.database_name!r}.")

    parsed = make_url(database_url)
    if parsed.username is None:
        raise RuntimeError("DATABASE_URL username is required.")

    conn = await asyncpg.connect(
        host=parsed.host or "localhost",
        port=int(parsed.port or 5432),
        user=parsed.username,
        password=parsed.password,
        database="postgres",
    )
    try:
        exists = await conn.fetchval(
            "SELECT 1 FROM pg_database WHERE datname = $1",
            safety.database_name,
        )
        if exists:
            print(f"ensure_test_db: exists db={safety.database_name}")  # noqa: T201
            return

        await conn.execute(f'CREATE DATABASE "{safety.database_name}"')
        print(f"ensure_test_db: created db={safety.database_name}")  # noqa: T201
    finally:
        await conn.close()


def main() -> int:
    asyncio.run(_ensure_database_exists(get_settings().database_url))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
