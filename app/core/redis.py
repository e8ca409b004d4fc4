"""Redis connection management with connection pooling."""

import asyncio
from dataclasses import asdict, dataclass
from typing import Optional

import redis.asyncio as redis
from loguru import logger

from app.config import settings


@dataclass(frozen=True)
class RedisClientConfig:
    """Connection options for one logical Redis database."""

    host: str
    port: int
    db: int
    password: str | None = None
    decode_responses: bool = True
    max_connections: int = 20
    socket_connect_timeout: int = 5
    socket_keepalive: bool = True
    health_check_interval: int = 30

    def to_kwargs(self) -> dict:
        options = asdict(self)
        if not self.password:
            options.pop("password")
        return options


@dataclass(frozen=True)
class RedisConfig:
    queue_config: RedisClientConfig
    cache_config: RedisClientConfig

    @classmethod
    def from_settings(cls, host: str, port: int, password: str | None = None) -> "RedisConfig":
        """Celery broker on DB 0, per-tenant caches on DB 1."""
        return cls(
            queue_config=RedisClientConfig(host=host, port=port, db=0, password=password),
            cache_config=RedisClientConfig(host=host, port=port, db=1, password=password),
        )


class RedisManager:
    """
    Redis connection manager with separate clients per use.

    - Queue: DB 0 (Celery broker, polled by readiness checks)
    - Cache: DB 1 (per-tenant cache, purged after a tenant is deleted)
    """

    def __init__(self, config: RedisConfig):
        self.config = config
        self._queue_client: Optional[redis.Redis] = None
        self._cache_client: Optional[redis.Redis] = None

    async def init_connections(self, max_retries: int = 3, base_delay: float = 1) -> None:
        """
        Initialize all Redis connections with retry logic.

        Implements exponential backoff retry for transient failures.
        """
        for attempt in range(max_retries):
            try:
                await self._create_connections()
                logger.info("Redis connections initialized successfully")
                return
            except redis.ConnectionError as e:
                if attempt < max_retries - 1:
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        f"Redis connection attempt {attempt + 1}/{max_retries} failed: {e}. "
                        f"Retrying in {delay}s..."
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Failed to connect to Redis after {max_retries} attempts: {e}")
                    raise

    def _create_client(self, client_config: RedisClientConfig) -> redis.Redis:
        return redis.Redis(**client_config.to_kwargs())

    async def _create_connections(self) -> None:
        self._queue_client = self._create_client(self.config.queue_config)
        self._cache_client = self._create_client(self.config.cache_config)

        await self._queue_client.ping()
        await self._cache_client.ping()

    async def close_connections(self) -> None:
        """Close all Redis connections."""
        try:
            if self._queue_client:
                await self._queue_client.aclose()
            if self._cache_client:
                await self._cache_client.aclose()
            logger.info("Redis connections closed")
        except Exception as e:
            logger.error(f"Error closing Redis connections: {e}")

    @property
    def is_initialized(self) -> bool:
        return self._cache_client is not None

    @property
    def cache(self) -> redis.Redis:
        """
        Get cache Redis client (DB 1).

        Note: Redis clients have built-in automatic reconnection on connection failure.
        """
        if not self._cache_client:
            raise RuntimeError("Redis cache client not initialized. Call init_connections() first.")
        return self._cache_client

    async def delete_pattern(self, pattern: str, batch_size: int = 500) -> int:
        """
        Delete every cache key matching ``pattern``.

        Uses SCAN rather than KEYS so a large tenant cache does not block Redis.

        Returns:
            Number of keys deleted
        """
        deleted = 0
        batch: list[str] = []
        async for key in self.cache.scan_iter(match=pattern, count=batch_size):
            batch.append(key)
            if len(batch) >= batch_size:
                deleted += await self.cache.delete(*batch)
                batch.clear()
        if batch:
            deleted += await self.cache.delete(*batch)
        return deleted

    async def health_check(self) -> dict[str, bool]:
        """Check health of all Redis connections concurrently."""

        async def check_client(client: Optional[redis.Redis], name: str) -> tuple[str, bool]:
            if not client:
                return name, False
            try:
                await client.ping()
                return name, True
            except Exception as e:
                logger.warning(f"{name.capitalize()} Redis health check failed: {e}")
                return name, False

        results = await asyncio.gather(
            check_client(self._queue_client, "queue"),
            check_client(self._cache_client, "cache"),
        )
        return dict(results)


# Global Redis manager instance with configuration from settings
redis_manager = RedisManager(
    config=RedisConfig.from_settings(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
    )
)
