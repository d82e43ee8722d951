"""Redis cache, distributed locks, and counters"""
import json
from typing import Optional, Dict
import redis.asyncio as redis
from redis.asyncio.lock import Lock
from shared.models import Event, Build


class RedisCache:
    """Redis cache and lock manager"""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.client: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis"""
        self.client = await redis.from_url(self.redis_url,
                                           decode_responses=True)

    async def close(self):
        """Close Redis connection"""
        if self.client:
            await self.client.close()

    # Caching operations
    async def cache_event(self, event: Event) -> None:
        """Cache event in Redis"""
        await self.client.hset(
            "cache:events",
            str(event.id),
            event.model_dump_json(),
        )

    async def get_cached_event(self, event_id: int) -> Optional[Dict]:
        """Get cached event"""
        data = await self.client.hget("cache:events", str(event_id))
        return json.loads(data) if data else None

    async def cache_build(self, build: Build) -> None:
        """Cache build in Redis"""
        await self.client.hset(
            "cache:builds",
            str(build.id),
            build.model_dump_json(),
        )

    async def get_cached_build(self, build_id: int) -> Optional[Dict]:
        """Get cached build"""
        data = await self.client.hget("cache:builds", str(build_id))
        return json.loads(data) if data else None

    # Distributed locks
    def lock(self,
             lock_key: str,
             ttl: int = 10,
             blocking_timeout: Optional[float] = None,
             sleep: float = 0.1) -> Lock:
        """Distributed lock released only by the holder of its token"""
        return self.client.lock(f"lock:{lock_key}",
                                timeout=ttl,
                                sleep=sleep,
                                blocking_timeout=blocking_timeout)

    # Id sequences
    async def next_id(self, kind: str) -> int:
        """Allocate the next id of a sequence shared by every process"""
        return await self.client.incr(f"seq:{kind}")

    # Metrics
    async def increment_metric(self, metric: str) -> None:
        """Increment a counter metric"""
        await self.client.incr(f"metric:{metric}")

    async def get_metric(self, metric: str) -> int:
        """Get metric value"""
        value = await self.client.get(f"metric:{metric}")
        return int(value) if value else 0
