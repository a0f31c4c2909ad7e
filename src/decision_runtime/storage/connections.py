"""
Explicitly managed store connections.

``StoreConnections`` owns one asyncpg pool and one Redis client. It is
constructed by the caller, connected once, handed to the stores that need it
and closed on shutdown. There is no process-wide connection object.
"""

from __future__ import annotations

from typing import Any

import asyncpg
import redis.asyncio as redis_lib
from redis.exceptions import ConnectionError as RedisConnectionError

from ..logging import get_logger

logger = get_logger("decision_runtime.storage")


class StoreConnections:
    def __init__(
        self,
        postgres_dsn: str | None = None,
        redis_url: str | None = None,
        *,
        pool_min_size: int = 1,
        pool_max_size: int = 10,
    ):
        self._postgres_dsn = postgres_dsn
        self._redis_url = redis_url
        self._pool_min_size = pool_min_size
        self._pool_max_size = pool_max_size
        self._pool: asyncpg.Pool | None = None
        self._redis: redis_lib.Redis | None = None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Postgres pool is not connected")
        return self._pool

    @property
    def redis(self) -> redis_lib.Redis:
        if self._redis is None:
            raise RuntimeError("Redis client is not connected")
        return self._redis

    @property
    def connected(self) -> bool:
        return self._pool is not None or self._redis is not None

    async def connect(self) -> None:
        if self._postgres_dsn and self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self._postgres_dsn,
                min_size=self._pool_min_size,
                max_size=self._pool_max_size,
            )
            logger.info("Postgres pool connected")
        if self._redis_url and self._redis is None:
            self._redis = redis_lib.from_url(self._redis_url, decode_responses=True)
            logger.info("Redis client connected")

    async def health_check(self) -> dict[str, Any]:
        status: dict[str, Any] = {}
        if self._pool is not None:
            try:
                async with self._pool.acquire() as conn:
                    await conn.fetchval("SELECT 1")
                status["postgres"] = "ok"
            except (OSError, asyncpg.PostgresError) as e:
                status["postgres"] = f"error: {e}"
        if self._redis is not None:
            try:
                await self._redis.ping()
                status["redis"] = "ok"
            except RedisConnectionError as e:
                status["redis"] = f"error: {e}"
        status["ok"] = all(v == "ok" for k, v in status.items())
        return status

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        if self._pool is not None:
            await self._pool.close()
            self._pool = None


__all__ = ["StoreConnections"]
