"""
Async Redis Client for Gateway State
====================================

Provides JSON-serialized, async Redis operations for:
- Per-user quota windows (optimistic WATCH/MULTI transactions)
- Result cache entries with key TTLs
- Sorted-set indexes used by maintenance sweeps
- Connection health monitoring with a circuit breaker

Architecture: Connection pool with automatic failover and
transparent serialization layer.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Optional, TypeVar, Union

from loguru import logger
from redis.asyncio import Redis
from redis.asyncio.client import Pipeline
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError, RedisError, TimeoutError, WatchError

from config.settings import RedisSettings
from core.exceptions import InfrastructureError, StoreContentionError, StoreError

R = TypeVar("R")


def _decode_or_none(raw: Optional[Union[str, bytes]], key: str) -> Optional[Any]:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning(f"Treating undecodable value at {key} as absent")
        return None


# Receives the decoded current value; returns (value to write or None, outcome)
Mutation = Callable[[Optional[Any]], tuple[Optional[Any], R]]
# Queues extra commands in the same MULTI block as the write
OnWrite = Callable[[Pipeline, Any], None]


class RedisConnectionPool:
    """
    Connection pool manager with health monitoring.

    Opens a circuit after repeated connection failures and backs off
    exponentially before allowing new attempts, so callers fail fast
    (and fail open where they choose to) while Redis is down.
    """

    def __init__(self, config: RedisSettings):
        self._config = config
        self._pool: Optional[ConnectionPool] = None
        self._circuit_breaker_open = False
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._backoff_multiplier = 1
        self._max_backoff = 300  # 5 minutes max backoff
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize Redis connection pool."""
        async with self._lock:
            if self._pool is not None:
                return
            try:
                self._pool = ConnectionPool.from_url(
                    str(self._config.url),
                    encoding="utf-8",
                    decode_responses=True,
                    max_connections=self._config.max_connections,
                    socket_timeout=self._config.socket_timeout,
                    socket_connect_timeout=self._config.socket_connect_timeout,
                    socket_keepalive=True,
                    health_check_interval=30,
                )
                logger.info("Redis connection pool initialized successfully")
                self._circuit_breaker_open = False
                self._failure_count = 0

            except Exception as e:
                logger.error(f"Failed to initialize Redis connection pool: {e}")
                raise InfrastructureError(f"Redis initialization failed: {e}", cause=e)

    @asynccontextmanager
    async def get_connection(self) -> AsyncGenerator[Redis, None]:
        """
        Context manager for acquiring Redis connections with circuit breaker.

        Raises:
            StoreError: When circuit breaker is open or connection fails
        """
        if self._circuit_breaker_open:
            current_time = asyncio.get_running_loop().time()
            time_since_failure = current_time - (self._last_failure_time or 0)
            backoff_time = min(60 * self._backoff_multiplier, self._max_backoff)

            if time_since_failure < backoff_time:
                raise StoreError(
                    f"Circuit breaker open: Redis unavailable. "
                    f"Retry in {backoff_time - time_since_failure:.1f}s"
                )
            logger.info(f"Attempting to close Redis circuit breaker (backoff: {backoff_time}s)")
            self._circuit_breaker_open = False
            self._failure_count = 0

        if self._pool is None:
            await self.initialize()

        connection = Redis(connection_pool=self._pool)
        try:
            yield connection
            self._failure_count = 0
            self._backoff_multiplier = 1

        except (ConnectionError, TimeoutError) as e:
            self._failure_count += 1
            self._last_failure_time = asyncio.get_running_loop().time()

            if self._failure_count >= 3:
                self._circuit_breaker_open = True
                self._backoff_multiplier = min(self._backoff_multiplier * 2, 16)
                logger.error(
                    f"Circuit breaker opened after {self._failure_count} failures. "
                    f"Backoff multiplier: {self._backoff_multiplier}x"
                )

            raise StoreError(f"Redis connection error: {e}", cause=e)

        finally:
            await connection.aclose()

    async def close(self) -> None:
        """Gracefully close connection pool."""
        if self._pool:
            await self._pool.disconnect()
            self._pool = None
            logger.info("Redis connection pool closed")


class RedisClient:
    """
    High-level Redis client with JSON serialization.

    Every operation raises ``StoreError`` on failure; callers decide
    whether a failure is fatal (quota checks fail open, cache misses
    degrade silently).
    """

    def __init__(self, config: RedisSettings, pool: Optional[RedisConnectionPool] = None):
        self._config = config
        self._pool = pool or RedisConnectionPool(config)

    @property
    def key_prefix(self) -> str:
        return self._config.key_prefix

    async def initialize(self) -> None:
        """Initialize Redis client and verify connectivity."""
        await self._pool.initialize()

    # =========================================================================
    # KEY/VALUE OPERATIONS
    # =========================================================================

    async def get_json(self, key: str) -> Optional[Any]:
        """Get and decode a JSON value, or None when the key is absent."""
        try:
            async with self._pool.get_connection() as conn:
                data = await conn.get(key)
        except StoreError:
            raise
        except RedisError as e:
            logger.error(f"Failed to get {key}: {e}")
            raise StoreError(f"get failed: {e}", cause=e)

        return json.loads(data) if data is not None else None

    async def get_many_json(self, keys: list[str]) -> list[Optional[Any]]:
        if not keys:
            return []
        try:
            async with self._pool.get_connection() as conn:
                values = await conn.mget(keys)
        except StoreError:
            raise
        except RedisError as e:
            logger.error(f"Failed mget of {len(keys)} keys: {e}")
            raise StoreError(f"mget failed: {e}", cause=e)

        return [_decode_or_none(value, key) for key, value in zip(keys, values)]

    async def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Encode and store a JSON value with optional TTL in seconds."""
        try:
            async with self._pool.get_connection() as conn:
                await conn.set(key, json.dumps(value), ex=ttl)
            return True
        except StoreError:
            raise
        except RedisError as e:
            logger.error(f"Failed to set {key}: {e}")
            raise StoreError(f"set failed: {e}", cause=e)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            async with self._pool.get_connection() as conn:
                return await conn.delete(*keys)
        except StoreError:
            raise
        except RedisError as e:
            logger.error(f"Failed to delete {len(keys)} keys: {e}")
            raise StoreError(f"delete failed: {e}", cause=e)

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def update_json(
        self,
        key: str,
        mutate: Mutation,
        *,
        ttl: Optional[int] = None,
        on_write: Optional[OnWrite] = None,
    ) -> R:
        """
        Atomically read-modify-write a JSON value.

        Uses WATCH/MULTI optimistic locking: if another client writes the
        key between our read and our EXEC, the transaction is discarded
        and ``mutate`` runs again against the fresh value. ``mutate``
        must be pure; it may run several times. A value that is not valid
        JSON reaches ``mutate`` as None so the write replaces it.

        Returns:
            The outcome returned by the successful ``mutate`` call

        Raises:
            StoreContentionError: When every attempt lost the race
            StoreError: On connection or command failure
        """
        attempts = self._config.transaction_retries
        try:
            async with self._pool.get_connection() as conn:
                for attempt in range(1, attempts + 1):
                    async with conn.pipeline(transaction=True) as pipe:
                        try:
                            await pipe.watch(key)
                            raw = await pipe.get(key)
                            current = _decode_or_none(raw, key)
                            new_value, outcome = mutate(current)
                            if new_value is None:
                                await pipe.unwatch()
                                return outcome

                            pipe.multi()
                            pipe.set(key, json.dumps(new_value), ex=ttl)
                            if on_write is not None:
                                on_write(pipe, new_value)
                            await pipe.execute()
                            return outcome
                        except WatchError:
                            logger.debug(f"Concurrent write on {key}, retrying ({attempt}/{attempts})")
                            continue
        except StoreError:
            raise
        except RedisError as e:
            logger.error(f"Transaction on {key} failed: {e}")
            raise StoreError(f"transaction failed: {e}", cause=e)

        raise StoreContentionError(key, attempts)

    # =========================================================================
    # SORTED-SET INDEXES
    # =========================================================================

    async def zrangebyscore(self, key: str, max_score: Union[float, str], limit: int) -> list[str]:
        """Members scored at or below ``max_score``, oldest first."""
        try:
            async with self._pool.get_connection() as conn:
                return await conn.zrangebyscore(key, "-inf", max_score, start=0, num=limit)
        except StoreError:
            raise
        except RedisError as e:
            logger.error(f"Failed zrangebyscore on {key}: {e}")
            raise StoreError(f"zrangebyscore failed: {e}", cause=e)

    async def zrangebyscore_from(self, key: str, min_score: float) -> list[str]:
        """Members scored at or above ``min_score``."""
        try:
            async with self._pool.get_connection() as conn:
                return await conn.zrangebyscore(key, min_score, "+inf")
        except StoreError:
            raise
        except RedisError as e:
            logger.error(f"Failed zrangebyscore on {key}: {e}")
            raise StoreError(f"zrangebyscore failed: {e}", cause=e)

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        try:
            async with self._pool.get_connection() as conn:
                return await conn.zadd(key, mapping)
        except StoreError:
            raise
        except RedisError as e:
            logger.error(f"Failed zadd on {key}: {e}")
            raise StoreError(f"zadd failed: {e}", cause=e)

    async def zrem(self, key: str, *members: str) -> int:
        if not members:
            return 0
        try:
            async with self._pool.get_connection() as conn:
                return await conn.zrem(key, *members)
        except StoreError:
            raise
        except RedisError as e:
            logger.error(f"Failed zrem on {key}: {e}")
            raise StoreError(f"zrem failed: {e}", cause=e)

    # =========================================================================
    # UTILITY & MONITORING
    # =========================================================================

    async def close(self) -> None:
        """Close Redis connection pool."""
        await self._pool.close()

    async def ping(self) -> bool:
        """Ping Redis to verify connectivity."""
        try:
            async with self._pool.get_connection() as conn:
                await conn.ping()
            return True
        except Exception as e:
            logger.error(f"Redis ping failed: {e}")
            return False
