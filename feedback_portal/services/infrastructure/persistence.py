# feedback_portal/services/infrastructure/persistence.py
"""
Durable key-value storage for client-side feedback state.

Everything that must survive a restart (responded meetings, the next
meeting timer, revealed flags) goes through the narrow ``get/set/remove``
interface below.
"""

from typing import Protocol

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from feedback_portal.config import settings
from feedback_portal.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class PersistenceAdapter(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> bool: ...

    async def remove(self, key: str) -> bool: ...


class InMemoryPersistence:
    """Process-local adapter. Used by tests and when no Redis is configured."""

    def __init__(self):
        self.store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def set(self, key: str, value: str) -> bool:
        self.store[key] = value
        return True

    async def remove(self, key: str) -> bool:
        return self.store.pop(key, None) is not None

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class RedisPersistence:
    """Redis-backed adapter with connection pooling and per-user key namespace."""

    def __init__(self, url: str, namespace: str):
        self.url = url
        self.namespace = namespace
        self.pool = None
        self.client = None
        self._initialized = False

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            logger.info("Attempting Redis connection", url_preview=self.url[:30] + "...")

            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=10,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Redis persistence initialized", namespace=self.namespace)

        except Exception as e:
            logger.error("Failed to initialize Redis persistence", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Redis persistence closed")
        except Exception as e:
            logger.error("Error closing Redis persistence", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()

    async def ping(self) -> bool:
        try:
            await self._ensure_initialized()
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> str | None:
        """Get value, None on any failure so callers degrade to empty state"""
        try:
            await self._ensure_initialized()
            result = await self.client.get(self._key(key))
            return result if result else None
        except Exception as e:
            logger.error("Redis GET failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: str) -> bool:
        try:
            await self._ensure_initialized()
            return bool(await self.client.set(self._key(key), value))
        except Exception as e:
            logger.error("Redis SET failed", key=key, error=str(e))
            return False

    async def remove(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            return (await self.client.delete(self._key(key))) > 0
        except Exception as e:
            logger.error("Redis DELETE failed", key=key, error=str(e))
            return False


def build_persistence() -> InMemoryPersistence | RedisPersistence:
    """Pick the adapter configured in settings."""
    backend = settings.PERSISTENCE_BACKEND.strip().lower()
    if backend == "redis":
        if not settings.REDIS_URL:
            raise ValueError("PERSISTENCE_BACKEND=redis requires REDIS_URL")
        return RedisPersistence(settings.REDIS_URL, settings.redis_namespace())
    if backend != "memory":
        raise ValueError(f"Unknown persistence backend '{backend}'")
    return InMemoryPersistence()
