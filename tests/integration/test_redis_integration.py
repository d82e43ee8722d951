"""Integration tests for Redis caching, locks and counters"""
import asyncio
import uuid
import pytest
from redis.exceptions import LockError

from orchestrator.core.locks import JoinLockManager
from orchestrator.db.redis import RedisCache
from shared.errors import LockTimeout
from shared.models import Build, Event


@pytest.mark.integration
@pytest.mark.asyncio
async def test_redis_cache_event(redis_cache: RedisCache) -> None:
    """Test caching and retrieving an event"""
    event = Event(id=9001, pipeline_id=1, group_event_id=9001, sha="abc123")

    await redis_cache.cache_event(event)
    cached = await redis_cache.get_cached_event(event.id)

    assert cached is not None
    assert Event(**cached) == event


@pytest.mark.integration
@pytest.mark.asyncio
async def test_redis_cache_build(redis_cache: RedisCache) -> None:
    """Test caching and retrieving a build"""
    build = Build(id=9001, pipeline_id=1, job_id=1, job_name="build",
                  event_id=9001)

    await redis_cache.cache_build(build)
    cached = await redis_cache.get_cached_build(build.id)

    assert cached["job_name"] == "build"
    assert cached["status"] == "queued"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_redis_lock_exclusive(redis_cache: RedisCache) -> None:
    """Test the distributed lock cannot be taken twice"""
    name = f"test:{uuid.uuid4().hex}"
    first = redis_cache.lock(name, ttl=5)
    second = redis_cache.lock(name, ttl=5, blocking_timeout=0.1)

    assert await first.acquire()
    assert not await second.acquire()

    await first.release()
    assert await second.acquire()
    await second.release()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_expired_holder_cannot_free_new_holder(
        redis_cache: RedisCache) -> None:
    """A holder that outlived its ttl leaves the next holder's lock alone"""
    name = f"test:{uuid.uuid4().hex}"
    stale = redis_cache.lock(name, ttl=1)
    assert await stale.acquire()
    await asyncio.sleep(1.2)

    manager = JoinLockManager(redis=redis_cache, ttl=5, timeout=1.0)
    async with manager.hold(name):
        with pytest.raises(LockError):
            await stale.release()
        assert await redis_cache.client.exists(f"lock:{name}")

    assert not await redis_cache.client.exists(f"lock:{name}")


@pytest.mark.integration
@pytest.mark.asyncio
async def test_lock_manager_times_out_on_held_key(
        redis_cache: RedisCache) -> None:
    """A key held by another process makes the lock manager give up"""
    name = f"test:{uuid.uuid4().hex}"
    other = redis_cache.lock(name, ttl=5)
    await other.acquire()
    manager = JoinLockManager(redis=redis_cache, timeout=0.2)

    try:
        with pytest.raises(LockTimeout):
            async with manager.hold(name):
                pass
    finally:
        await other.release()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_redis_id_sequence(redis_cache: RedisCache) -> None:
    """Ids come from one counter shared by every process"""
    kind = f"test_{uuid.uuid4().hex}"

    assert await redis_cache.next_id(kind) == 1
    assert await redis_cache.next_id(kind) == 2


@pytest.mark.integration
@pytest.mark.asyncio
async def test_redis_metrics(redis_cache: RedisCache) -> None:
    """Test counter increments"""
    metric = f"test_{uuid.uuid4().hex}"

    assert await redis_cache.get_metric(metric) == 0
    await redis_cache.increment_metric(metric)
    await redis_cache.increment_metric(metric)

    assert await redis_cache.get_metric(metric) == 2
