#!/usr/bin/env python3
"""
Create (or drop) a PostgreSQL database for running the test suite against
the production dialect instead of in-memory SQLite.

    python scripts/setup_test_db.py           # recreate and create tables
    python scripts/setup_test_db.py cleanup   # drop it again

Then run the tests with ``TEST_DATABASE_URL`` set to the printed URL.
"""

import asyncio
import os
import sys

import asyncpg
from sqlalchemy.ext.asyncio import create_async_engine

import app.models  # noqa: F401  registers every table on Base.metadata
from app.core.database import Base

TEST_DB_NAME = os.getenv("TEST_DB_NAME", "salon_scheduler_test")
MASTER_DB_NAME = os.getenv("MASTER_DB_NAME", "salon_scheduler")

DB_HOST = "postgres" if os.path.exists("/.dockerenv") else "localhost"
DB_PORT = int(os.getenv("DB_PORT", "5432"))
DB_USER = os.getenv("DB_USER", "salon_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "salon_password")

TEST_DB_URL = (
    f"postgresql+asyncpg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:"
    f"{DB_PORT}/{TEST_DB_NAME}"
)


async def _master_connection():
    return await asyncpg.connect(
        host=DB_HOST,
        port=DB_PORT,
        user=DB_USER,
        password=DB_PASSWORD,
        database=MASTER_DB_NAME,
    )


async def setup_test_database() -> bool:
    print(f"Setting up test database: {TEST_DB_NAME}")

    try:
        master_conn = await _master_connection()
        await master_conn.execute(f"DROP DATABASE IF EXISTS {TEST_DB_NAME}")
        await master_conn.execute(f"CREATE DATABASE {TEST_DB_NAME}")
        await master_conn.close()

        engine = create_async_engine(TEST_DB_URL, echo=False)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()
    except (OSError, asyncpg.PostgresError) as e:
        print(f"Error setting up test database: {e}")
        print(f"Is PostgreSQL reachable at {DB_HOST}:{DB_PORT} as {DB_USER}?")
        return False

    print(f"Created tables: {', '.join(sorted(Base.metadata.tables))}")
    print(f"export TEST_DATABASE_URL={TEST_DB_URL}")
    return True


async def cleanup_test_database() -> bool:
    print(f"Cleaning up test database: {TEST_DB_NAME}")

    try:
        master_conn = await _master_connection()
        await master_conn.execute(f"DROP DATABASE IF EXISTS {TEST_DB_NAME}")
        await master_conn.close()
    except (OSError, asyncpg.PostgresError) as e:
        print(f"Error cleaning up test database: {e}")
        return False

    print(f"Dropped test database: {TEST_DB_NAME}")
    return True


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "cleanup":
        ok = asyncio.run(cleanup_test_database())
    else:
        ok = asyncio.run(setup_test_database())
    sys.exit(0 if ok else 1)
