"""Per-owner task creation limits backed by an injected counter store."""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Protocol

from resonance.errors import RateLimitExceeded
from resonance.services.database import get_pool
from resonance.services.logger import log_db_operation, log_event


class CounterStore(Protocol):
    async def increment(self, key: str, ttl_seconds: int) -> int:
        """Increment ``key`` and return the new count; the window starts on first hit."""
        ...

    async def purge_expired(self) -> int:
        """Drop counters whose window has closed; returns how many were removed."""
        ...


class InMemoryCounterStore:
    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    def _drop_expired(self, now: float) -> int:
        expired = [key for key, (_, expires_at) in self._counters.items() if expires_at <= now]
        for key in expired:
            del self._counters[key]
        return len(expired)

    async def increment(self, key: str, ttl_seconds: int) -> int:
        async with self._lock:
            now = self._clock()
            self._drop_expired(now)
            count, expires_at = self._counters.get(key, (0, now + ttl_seconds))
            count += 1
            self._counters[key] = (count, expires_at)
            return count

    async def purge_expired(self) -> int:
        async with self._lock:
            return self._drop_expired(self._clock())

    def __len__(self) -> int:
        return len(self._counters)


class PostgresCounterStore:
    async def increment(self, key: str, ttl_seconds: int) -> int:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        pool = await get_pool()
        async with pool.acquire() as conn:
            return await conn.fetchval(
                """
                INSERT INTO request_counters (key, count, expires_at)
                VALUES ($1, 1, $2)
                ON CONFLICT (key) DO UPDATE SET
                    count = CASE WHEN request_counters.expires_at <= NOW()
                                 THEN 1 ELSE request_counters.count + 1 END,
                    expires_at = CASE WHEN request_counters.expires_at <= NOW()
                                      THEN EXCLUDED.expires_at
                                      ELSE request_counters.expires_at END
                RETURNING count
                """,
                key,
                expires_at,
            )

    async def purge_expired(self) -> int:
        pool = await get_pool()
        async with pool.acquire() as conn:
            removed = await conn.fetchval(
                """
                WITH gone AS (
                    DELETE FROM request_counters WHERE expires_at <= NOW() RETURNING 1
                )
                SELECT count(*) FROM gone
                """
            )
        log_db_operation("delete", "request_counters", "success", details=f"purged {removed}")
        return removed


class TaskCreationLimiter:
    def __init__(self, counters: CounterStore, limit: int, window_seconds: int):
        self.counters = counters
        self.limit = limit
        self.window_seconds = window_seconds

    async def check(self, owner_id: str) -> None:
        """Count one creation for ``owner_id``; raise once over the limit."""
        count = await self.counters.increment(f"task_create:{owner_id}", self.window_seconds)
        if count > self.limit:
            log_event("rate_limited", "Task creation limit reached", owner_id=owner_id, count=count)
            raise RateLimitExceeded(self.limit, self.window_seconds)
