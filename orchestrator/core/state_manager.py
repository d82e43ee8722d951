"""Hybrid state management with PostgreSQL persistence and Redis caching"""
from typing import Dict, Iterable, List, Optional
from datetime import datetime, UTC

from orchestrator.db.models import JoinRecordModel
from orchestrator.db.postgres import PostgresDB
from orchestrator.db.redis import RedisCache
from shared.enums import JoinRecordStatus
from shared.errors import ConcurrencyConflict
from shared.models import (Build, Event, EventQuery, Job, JoinKey, JoinRecord,
                           ParentBuild, Pipeline)


class StateManager:
    """Centralized state with optional PostgreSQL + Redis backends"""

    def __init__(self,
                 postgres: Optional[PostgresDB] = None,
                 redis: Optional[RedisCache] = None):
        # Pipeline definitions are loaded at startup and live in memory only
        self.pipelines: Dict[int, Pipeline] = {}
        self.jobs: Dict[int, Job] = {}
        self.events: Dict[int, Event] = {}
        self.builds: Dict[int, Build] = {}
        self.join_records: Dict[str, JoinRecord] = {}
        self._last_ids: Dict[str, int] = {"event": 0, "build": 0}

        # Database backends (optional)
        self.postgres = postgres
        self.redis = redis

    async def next_id(self, kind: str) -> int:
        """Allocate the next id for an entity kind.

        PostgreSQL or Redis hand out ids when configured so that several
        orchestrator processes never reuse one. The local counter is only
        used without a backend.
        """
        if self.postgres:
            return await self.postgres.next_id(kind)

        if self.redis:
            return await self.redis.next_id(kind)

        self._last_ids[kind] = self._last_ids.get(kind, 0) + 1
        return self._last_ids[kind]

    # Pipeline methods
    def add_pipeline(self, pipeline: Pipeline, jobs: Iterable[Job]) -> None:
        """Register a pipeline and its jobs"""
        self.pipelines[pipeline.id] = pipeline
        for job in jobs:
            self.jobs[job.id] = job

    def get_pipeline(self, pipeline_id: int) -> Optional[Pipeline]:
        return self.pipelines.get(pipeline_id)

    def list_pipelines(self) -> List[Pipeline]:
        return list(self.pipelines.values())

    # Job methods
    def get_job(self, job_id: int) -> Optional[Job]:
        return self.jobs.get(job_id)

    def find_job(self, pipeline_id: int, name: str) -> Optional[Job]:
        """Find a job of a pipeline by name"""
        return next((job for job in self.jobs.values()
                     if job.pipeline_id == pipeline_id and job.name == name),
                    None)

    # Event methods
    async def save_event(self, event: Event) -> None:
        """Add or update an event and persist it"""
        event.updated_at = datetime.now(UTC)
        self.events[event.id] = event

        if self.postgres:
            await self.postgres.save_event(event)

        if self.redis:
            await self.redis.cache_event(event)

    async def get_event(self, event_id: int) -> Optional[Event]:
        """Get event from cache or DB"""
        if event_id in self.events:
            return self.events[event_id]

        if self.redis:
            cached = await self.redis.get_cached_event(event_id)
            if cached:
                event = Event(**cached)
                self.events[event_id] = event
                return event

        if self.postgres:
            model = await self.postgres.get_event(event_id)
            if model:
                event = Event.model_validate(model, from_attributes=True)
                self.events[event_id] = event
                return event

        return None

    async def list_events(self, query: EventQuery) -> List[Event]:
        """List events matching a query, oldest first"""
        if self.postgres:
            models = await self.postgres.list_events(query)
            events = [
                Event.model_validate(m, from_attributes=True) for m in models
            ]
            for event in events:
                self.events.setdefault(event.id, event)
            return [self.events[event.id] for event in events]

        return sorted((event for event in self.events.values()
                       if event.pipeline_id == query.pipeline_id and (
                           query.group_event_id is None
                           or event.group_event_id == query.group_event_id)
                       and (query.status is None
                            or event.status == query.status)),
                      key=lambda event: event.id)

    # Build methods
    async def save_build(self, build: Build) -> None:
        """Add or update a build and persist it"""
        build.updated_at = datetime.now(UTC)
        self.builds[build.id] = build

        if self.postgres:
            await self.postgres.save_build(build)

        if self.redis:
            await self.redis.cache_build(build)

    async def get_build(self, build_id: int) -> Optional[Build]:
        """Get build from cache or DB"""
        if build_id in self.builds:
            return self.builds[build_id]

        if self.redis:
            cached = await self.redis.get_cached_build(build_id)
            if cached:
                build = Build(**cached)
                self.builds[build_id] = build
                return build

        if self.postgres:
            model = await self.postgres.get_build(build_id)
            if model:
                build = Build.model_validate(model, from_attributes=True)
                self.builds[build_id] = build
                return build

        return None

    def list_builds(self, event_id: Optional[int] = None) -> List[Build]:
        """List builds from memory, optionally for one event"""
        return [
            build for build in self.builds.values()
            if event_id is None or build.event_id == event_id
        ]

    # Join record methods
    async def get_join_record(self, key: JoinKey) -> Optional[JoinRecord]:
        """Get a copy of a join record; PostgreSQL is authoritative"""
        if self.postgres:
            model = await self.postgres.get_join_record(key)
            if model is None:
                return None
            record = _join_record_from_model(model)
            self.join_records[key.record_id] = record
            return record.model_copy(deep=True)

        record = self.join_records.get(key.record_id)
        return record.model_copy(deep=True) if record else None

    async def save_join_record(self, record: JoinRecord) -> None:
        """Persist the parent reports of a pending join.

        Raises:
            ConcurrencyConflict: If the join already left the pending state
        """
        current = self.join_records.get(record.key.record_id)
        if current is not None and current.status != JoinRecordStatus.PENDING:
            raise ConcurrencyConflict(
                f"Join {record.key.record_id} is already {current.status.value}")

        record.updated_at = datetime.now(UTC)
        if self.postgres and not await self.postgres.save_pending_join(record):
            raise ConcurrencyConflict(
                f"Join {record.key.record_id} is no longer pending")

        self.join_records[record.key.record_id] = record.model_copy(deep=True)

    async def claim_join(self, record: JoinRecord,
                         status: JoinRecordStatus) -> JoinRecord:
        """Atomically move a pending join to fired or blocked.

        Raises:
            ConcurrencyConflict: If another caller already moved it
        """
        if self.postgres:
            claimed = await self.postgres.claim_join(record, status)
        else:
            current = self.join_records.get(record.key.record_id)
            claimed = current is None or current.status == JoinRecordStatus.PENDING

        if not claimed:
            raise ConcurrencyConflict(
                f"Join {record.key.record_id} was claimed by another caller")

        record.status = status
        record.updated_at = datetime.now(UTC)
        self.join_records[record.key.record_id] = record.model_copy(deep=True)
        return record

    async def release_join(self, key: JoinKey) -> None:
        """Return a fired join to pending after its build could not start"""
        if self.postgres:
            await self.postgres.release_join(key)

        current = self.join_records.get(key.record_id)
        if current is not None and current.status == JoinRecordStatus.FIRED:
            current.status = JoinRecordStatus.PENDING
            current.build_id = None

    async def set_join_build(self, key: JoinKey, build_id: int) -> None:
        """Remember which build a fired join started"""
        if self.postgres:
            await self.postgres.set_join_build(key, build_id)

        current = self.join_records.get(key.record_id)
        if current is not None:
            current.build_id = build_id

    def list_join_records(self) -> List[JoinRecord]:
        """List join records from memory"""
        return list(self.join_records.values())

    async def record_metric(self, metric: str) -> None:
        """Increment a counter when Redis is available"""
        if self.redis:
            await self.redis.increment_metric(metric)

    async def _rebuild_from_db(self) -> None:
        """Rebuild in-memory cache from PostgreSQL after restart"""
        if not self.postgres:
            return

        for model in await self.postgres.list_join_records():
            record = _join_record_from_model(model)
            self.join_records[record.key.record_id] = record


def _join_record_from_model(model: JoinRecordModel) -> JoinRecord:
    return JoinRecord(
        key=JoinKey(pipeline_id=model.pipeline_id,
                    job_name=model.job_name,
                    group_event_id=model.group_event_id),
        status=model.status,
        parent_builds=[ParentBuild(**p) for p in model.parent_builds or []],
        build_id=model.build_id,
        reason=model.reason,
        updated_at=model.updated_at,
    )


# Global state instance
_state: Optional[StateManager] = None


def state_manager() -> StateManager:
    """Dependency injection function for FastAPI"""
    global _state
    if _state is None:
        _state = StateManager()
    return _state


async def init_state_manager(database_url: Optional[str] = None,
                             redis_url: Optional[str] = None) -> StateManager:
    """Initialize state manager with database backends"""
    global _state

    postgres = None
    redis_cache = None

    if database_url:
        postgres = PostgresDB(database_url)
        await postgres.init_db()

    if redis_url:
        redis_cache = RedisCache(redis_url)
        await redis_cache.connect()

    _state = StateManager(postgres=postgres, redis=redis_cache)

    # Rebuild in-memory cache from database after restart
    if postgres:
        await _state._rebuild_from_db()

    return _state
