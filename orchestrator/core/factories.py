"""Collaborator interfaces used by the trigger engine and their state-backed
implementations.

The trigger engine only talks to these protocols, so the build lifecycle
can plug in its own persistence.
"""
import logging
from typing import List, Optional, Protocol

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from orchestrator.core.state_manager import StateManager
from shared.errors import Forbidden, StorageError, ValidationError
from shared.models import (Build, BuildSpec, Event, EventQuery, EventSpec, Job,
                           Pipeline)

logger = logging.getLogger(__name__)

BACKEND_ERRORS = (SQLAlchemyError, RedisError)


class EventFactory(Protocol):

    async def create(self, spec: EventSpec) -> Event:
        ...

    async def list(self, query: EventQuery) -> List[Event]:
        ...

    async def get(self, event_id: int) -> Optional[Event]:
        ...

    async def update(self, event: Event) -> Event:
        ...


class BuildFactory(Protocol):

    async def create(self, spec: BuildSpec) -> Build:
        ...

    async def get(self, build_id: int) -> Optional[Build]:
        ...


class JobFactory(Protocol):

    async def get(self, job_id: int) -> Optional[Job]:
        ...

    async def get_by_name(self, pipeline_id: int, name: str) -> Optional[Job]:
        ...


class PipelineFactory(Protocol):

    async def get(self, pipeline_id: int) -> Optional[Pipeline]:
        ...


class Authorizer(Protocol):

    async def authorize(self, source: Pipeline, destination: Pipeline) -> None:
        """Raise Forbidden unless destination accepts triggers from source."""
        ...


class StateEventFactory:
    """EventFactory backed by the StateManager"""

    def __init__(self, state: StateManager):
        self.state = state

    async def create(self, spec: EventSpec) -> Event:
        if self.state.get_pipeline(spec.pipeline_id) is None:
            raise ValidationError(f"Pipeline {spec.pipeline_id} does not exist")

        try:
            event_id = await self.state.next_id("event")
        except BACKEND_ERRORS as e:
            raise StorageError(f"Could not allocate an event id: {e}") from e

        event = Event(id=event_id,
                      pipeline_id=spec.pipeline_id,
                      group_event_id=spec.group_event_id or event_id,
                      parent_event_id=spec.parent_event_id,
                      cause_build_id=spec.cause_build_id,
                      sha=spec.sha,
                      ref=spec.ref)
        try:
            await self.state.save_event(event)
        except BACKEND_ERRORS as e:
            raise StorageError(f"Could not save event {event_id}: {e}") from e

        logger.info(
            f"Created event {event.id} in pipeline {event.pipeline_id} "
            f"(group {event.group_event_id})")
        return event

    async def list(self, query: EventQuery) -> List[Event]:
        try:
            return await self.state.list_events(query)
        except BACKEND_ERRORS as e:
            raise StorageError(f"Could not list events: {e}") from e

    async def get(self, event_id: int) -> Optional[Event]:
        try:
            return await self.state.get_event(event_id)
        except BACKEND_ERRORS as e:
            raise StorageError(f"Could not load event {event_id}: {e}") from e

    async def update(self, event: Event) -> Event:
        try:
            await self.state.save_event(event)
        except BACKEND_ERRORS as e:
            raise StorageError(f"Could not save event {event.id}: {e}") from e
        return event


class StateBuildFactory:
    """BuildFactory backed by the StateManager"""

    def __init__(self, state: StateManager):
        self.state = state

    async def create(self, spec: BuildSpec) -> Build:
        job = self.state.get_job(spec.job_id)
        if job is None or job.pipeline_id != spec.pipeline_id:
            raise ValidationError(
                f"Job {spec.job_id} does not belong to pipeline {spec.pipeline_id}")
        if job.virtual:
            raise ValidationError(f"Job {job.name} is virtual and cannot build")

        try:
            build_id = await self.state.next_id("build")
        except BACKEND_ERRORS as e:
            raise StorageError(f"Could not allocate a build id: {e}") from e

        build = Build(id=build_id,
                      pipeline_id=spec.pipeline_id,
                      job_id=spec.job_id,
                      job_name=spec.job_name,
                      event_id=spec.event_id,
                      status=spec.status,
                      parent_builds=spec.parent_builds)
        try:
            await self.state.save_build(build)
        except BACKEND_ERRORS as e:
            raise StorageError(f"Could not save build {build.id}: {e}") from e
        return build

    async def get(self, build_id: int) -> Optional[Build]:
        try:
            return await self.state.get_build(build_id)
        except BACKEND_ERRORS as e:
            raise StorageError(f"Could not load build {build_id}: {e}") from e


class StateJobFactory:
    """JobFactory backed by the StateManager"""

    def __init__(self, state: StateManager):
        self.state = state

    async def get(self, job_id: int) -> Optional[Job]:
        return self.state.get_job(job_id)

    async def get_by_name(self, pipeline_id: int, name: str) -> Optional[Job]:
        return self.state.find_job(pipeline_id, name)


class StatePipelineFactory:
    """PipelineFactory backed by the StateManager"""

    def __init__(self, state: StateManager):
        self.state = state

    async def get(self, pipeline_id: int) -> Optional[Pipeline]:
        return self.state.get_pipeline(pipeline_id)


class OwnerTrustAuthorizer:
    """Allows external triggers only from owners the destination trusts"""

    async def authorize(self, source: Pipeline, destination: Pipeline) -> None:
        trusted = destination.trusted_owners
        if source.scm_owner == destination.scm_owner:
            return
        if "*" in trusted or source.scm_owner in trusted:
            return
        raise Forbidden(
            f"Pipeline {destination.id} ({destination.scm_owner}) does not "
            f"accept triggers from pipeline {source.id} ({source.scm_owner})")
