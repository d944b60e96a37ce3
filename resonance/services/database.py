"""PostgreSQL database service using asyncpg."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import asyncpg

from resonance.config import settings
from resonance.services.logger import log_db_operation

SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"

# Connection pool
_pool: asyncpg.Pool | None = None


def db_available() -> bool:
    """Check if database is configured."""
    return bool(settings.database_url)


async def _init_connection(conn: asyncpg.Connection) -> None:
    # JSONB columns round-trip as Python objects
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


async def get_pool() -> asyncpg.Pool:
    """Get or create the database connection pool."""
    global _pool
    if not db_available():
        raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=10,
            init=_init_connection,
        )
    return _pool


async def close_pool() -> None:
    """Close the database connection pool."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def ensure_schema() -> None:
    """Create tables and indexes if they do not exist."""
    pool = await get_pool()
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
    log_db_operation("ensure_schema", "*", "success")


def coerce_json(value: Any, default: Any) -> Any:
    """Normalize JSON columns that may come back as strings."""
    if value is None:
        return default
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return default
    return value
