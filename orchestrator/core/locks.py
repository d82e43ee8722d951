"""Per-key mutual exclusion for join evaluation"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from redis.exceptions import LockError
from redis.asyncio.lock import Lock

from orchestrator.db.redis import RedisCache
from shared.errors import LockTimeout

logger = logging.getLogger(__name__)


class JoinLockManager:
    """Serializes callers that touch the same key.

    Within one process an asyncio.Lock per key is used. When a Redis cache
    is configured the key is also locked in Redis so that several
    orchestrator processes serialize on it.
    """

    def __init__(self,
                 redis: Optional[RedisCache] = None,
                 ttl: int = 10,
                 timeout: float = 5.0,
                 poll_interval: float = 0.05):
        self.redis = redis
        self.ttl = ttl
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        """Hold the lock for name for the duration of the block."""
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._holders[name] = self._holders.get(name, 0) + 1
        try:
            async with lock:
                if self.redis is None:
                    yield
                    return

                remote = await self._acquire_remote(name)
                try:
                    yield
                finally:
                    await self._release_remote(remote, name)
        finally:
            self._holders[name] -= 1
            if self._holders[name] == 0:
                del self._holders[name]
                del self._locks[name]

    async def _acquire_remote(self, name: str) -> Lock:
        remote = self.redis.lock(name,
                                 ttl=self.ttl,
                                 blocking_timeout=self.timeout,
                                 sleep=self.poll_interval)
        try:
            acquired = await remote.acquire()
        except LockError as e:
            raise LockTimeout(f"Could not acquire lock {name}: {e}") from e
        if not acquired:
            raise LockTimeout(
                f"Could not acquire lock {name} within {self.timeout}s")
        logger.debug(f"Acquired distributed lock {name}")
        return remote

    async def _release_remote(self, remote: Lock, name: str) -> None:
        # The token check stops an expired holder from freeing a lock that
        # another process has taken since
        try:
            await remote.release()
        except LockError as e:
            raise LockTimeout(
                f"Lock {name} expired after {self.ttl}s before it was "
                f"released") from e

    def is_locked(self, name: str) -> bool:
        lock = self._locks.get(name)
        return lock is not None and lock.locked()
