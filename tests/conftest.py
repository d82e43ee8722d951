"""Root conftest.py - Shared fixtures for all tests"""
import pytest
import os
from typing import Callable, AsyncGenerator

from orchestrator.core.dispatcher import TriggerDispatcher
from orchestrator.core.factories import (OwnerTrustAuthorizer, StateBuildFactory,
                                         StateEventFactory, StateJobFactory,
                                         StatePipelineFactory)
from orchestrator.core.locks import JoinLockManager
from orchestrator.core.state_manager import StateManager
from orchestrator.core.triggers import TriggerResolver
from orchestrator.utils.pipeline_parser import parse_yaml_pipelines
from shared.enums import BuildStatus
from shared.models import Build, BuildSpec, Event, EventSpec

# ============================================================================
# Pipeline Definitions
# ============================================================================

# Job ids: build=1, test=2, package=3, deploy=4, audit=5, smoke=6
FAN_IN_YAML = """
pipelines:
  - id: 1
    name: app
    scm_owner: acme
    jobs:
      - name: build
        requires: ["~commit"]
      - name: test
        requires: ["~commit"]
      - name: package
        requires: [build, test]
  - id: 2
    name: deploy
    scm_owner: acme
    jobs:
      - name: deploy
        requires: ["sd@1:build", "sd@1:test"]
      - name: audit
        requires: ["~sd@1:build"]
      - name: smoke
        requires: [deploy]
"""

VIRTUAL_CHAIN_YAML = """
pipelines:
  - id: 1
    name: app
    scm_owner: acme
    jobs:
      - name: build
        requires: ["~commit"]
      - name: gate
        virtual: true
        requires: [build]
      - name: approve
        virtual: true
        requires: [gate]
      - name: publish
        requires: [approve]
  - id: 2
    name: deploy
    scm_owner: acme
    jobs:
      - name: deploy
        requires: ["sd@1:approve"]
"""

EXTERNAL_YAML = """
pipelines:
  - id: 1
    name: app
    scm_owner: acme
    jobs:
      - name: build
        requires: ["~commit"]
  - id: 3
    name: docs
    scm_owner: docs-team
    trusted_owners: [acme]
    jobs:
      - name: publish
        requires: ["~sd@1:build"]
  - id: 4
    name: mirror
    scm_owner: stranger
    jobs:
      - name: sync
        requires: ["~sd@1:build"]
"""

# ============================================================================
# Database Fixtures (for integration tests)
# ============================================================================


@pytest.fixture
async def postgres_db() -> AsyncGenerator:
    """Create a test database connection"""
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set - skipping PostgreSQL tests")

    from orchestrator.db.postgres import PostgresDB
    db = PostgresDB(database_url)
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
async def redis_cache() -> AsyncGenerator:
    """Create a test Redis connection"""
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        pytest.skip("REDIS_URL not set - skipping Redis tests")

    from orchestrator.db.redis import RedisCache
    cache = RedisCache(redis_url)
    await cache.connect()
    yield cache
    await cache.close()


@pytest.fixture
async def full_state_manager() -> AsyncGenerator:
    """Create StateManager with full database stack"""
    database_url = os.getenv("DATABASE_URL")
    redis_url = os.getenv("REDIS_URL")

    if not (database_url and redis_url):
        pytest.skip("DATABASE_URL or REDIS_URL not set - skipping full stack tests")

    from orchestrator.core.state_manager import init_state_manager
    state = await init_state_manager(database_url, redis_url)
    yield state

    # Cleanup
    if state.postgres:
        await state.postgres.close()
    if state.redis:
        await state.redis.close()


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def state_manager() -> StateManager:
    """Create a fresh StateManager instance for testing"""
    return StateManager()


@pytest.fixture
def load_pipelines(state_manager: StateManager) -> Callable:
    """Register the pipelines of a YAML document in the state manager"""

    def _load(yaml_content: str) -> StateManager:
        for definition in parse_yaml_pipelines(yaml_content):
            state_manager.add_pipeline(definition.pipeline, definition.jobs)
        return state_manager

    return _load


@pytest.fixture
def lock_manager() -> JoinLockManager:
    """In-process lock manager"""
    return JoinLockManager()


@pytest.fixture
def event_factory(state_manager: StateManager) -> StateEventFactory:
    return StateEventFactory(state_manager)


@pytest.fixture
def build_factory(state_manager: StateManager) -> StateBuildFactory:
    return StateBuildFactory(state_manager)


@pytest.fixture
def resolver(state_manager: StateManager, event_factory: StateEventFactory,
             build_factory: StateBuildFactory,
             lock_manager: JoinLockManager) -> TriggerResolver:
    """Create a trigger resolver for testing"""
    return TriggerResolver(state_manager,
                           events=event_factory,
                           builds=build_factory,
                           locks=lock_manager,
                           authorizer=OwnerTrustAuthorizer())


@pytest.fixture
def make_dispatcher(state_manager: StateManager, resolver: TriggerResolver,
                    event_factory: StateEventFactory) -> Callable:
    """Factory for dispatchers with a custom depth limit"""

    def _create(max_depth: int = 64) -> TriggerDispatcher:
        return TriggerDispatcher(resolver,
                                 pipelines=StatePipelineFactory(state_manager),
                                 jobs=StateJobFactory(state_manager),
                                 events=event_factory,
                                 max_depth=max_depth)

    return _create


@pytest.fixture
def dispatcher(make_dispatcher: Callable) -> TriggerDispatcher:
    """Create a trigger dispatcher for testing"""
    return make_dispatcher()


# ============================================================================
# Data Factories
# ============================================================================


@pytest.fixture
def finished_build(state_manager: StateManager,
                   build_factory: StateBuildFactory) -> Callable:
    """Factory for builds that already reached a terminal status"""

    async def _create(pipeline_id: int,
                      job_name: str,
                      event: Event,
                      status: BuildStatus = BuildStatus.SUCCESS) -> Build:
        job = state_manager.find_job(pipeline_id, job_name)
        build = await build_factory.create(
            BuildSpec(pipeline_id=pipeline_id,
                      job_id=job.id,
                      job_name=job_name,
                      event_id=event.id))
        build.status = status
        await state_manager.save_build(build)
        return build

    return _create


@pytest.fixture
def fan_in_pipelines(load_pipelines: Callable) -> StateManager:
    """Pipeline 1 builds and tests; pipeline 2 deploys once both succeeded"""
    return load_pipelines(FAN_IN_YAML)


@pytest.fixture
async def root_event(fan_in_pipelines: StateManager,
                     event_factory: StateEventFactory) -> Event:
    """A commit event in pipeline 1"""
    return await event_factory.create(
        EventSpec(pipeline_id=1, sha="abc123", ref="main"))
