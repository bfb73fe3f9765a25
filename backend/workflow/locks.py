"""
Per-execution locks.

A driver invocation only runs while it holds the lock for its execution id.
Acquisition never waits: a second caller gets ``False`` back and the driver
reports the execution as locked without touching it.

Backends:
- memory: process-local set guarded by a threading lock. Shared by the API
  event loop and the in-process poller thread.
- redis: ``redis.asyncio`` lock with a lease timeout, for several workers.
"""

import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog

logger = structlog.get_logger(__name__)

LOCK_PREFIX = "workflow:execution:lock:"


class LocalLockManager:
    """In-process, thread-safe try-lock keyed by execution id."""

    def __init__(self):
        self._held: set[str] = set()
        self._guard = threading.Lock()

    def try_acquire(self, key: str) -> bool:
        with self._guard:
            if key in self._held:
                return False
            self._held.add(key)
            return True

    def release(self, key: str) -> None:
        with self._guard:
            self._held.discard(key)

    def is_locked(self, key: str) -> bool:
        with self._guard:
            return key in self._held

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[bool]:
        """Yield True if the lock was taken; release it on exit."""
        acquired = self.try_acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key)

    async def close(self) -> None:
        return None


class RedisLockManager:
    """Distributed try-lock on Redis.

    The lease expires after ``timeout`` seconds so a crashed holder cannot
    block an execution forever; the version column catches the rare write
    after expiry.
    """

    def __init__(self, redis_url: str, timeout: int = 300, client=None):
        if client is None:
            import redis.asyncio as aioredis

            client = aioredis.from_url(redis_url)
        self._redis = client
        self._timeout = timeout

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[bool]:
        lock = self._redis.lock(f"{LOCK_PREFIX}{key}", timeout=self._timeout, blocking=False)
        acquired = await lock.acquire()
        try:
            yield bool(acquired)
        finally:
            if acquired:
                try:
                    await lock.release()
                except Exception as e:
                    # Lease already expired and possibly re-taken
                    logger.warning("Lock release failed", key=key, error=str(e))

    async def close(self) -> None:
        await self._redis.aclose()


# Memory locks must be one object per process so the API and the poller
# thread see the same set.
_local_manager: Optional[LocalLockManager] = None


def get_local_lock_manager() -> LocalLockManager:
    global _local_manager
    if _local_manager is None:
        _local_manager = LocalLockManager()
    return _local_manager


def get_lock_manager(settings=None):
    """Lock manager for the configured ``LOCK_BACKEND``."""
    if settings is None:
        from app.config import get_settings

        settings = get_settings()
    if settings.LOCK_BACKEND == "redis":
        return RedisLockManager(settings.REDIS_URL, timeout=settings.LOCK_TIMEOUT_SECONDS)
    return get_local_lock_manager()
