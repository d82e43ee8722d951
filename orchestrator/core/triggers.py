"""Trigger strategies: start the destination of a workflow edge once its join
is satisfied.

A strategy is the pair (scope, join) of an edge. Local edges stay inside the
source event; remote and external edges locate or create an event in the
destination pipeline. External edges are checked by the Authorizer first.
All kinds share one resolver.
"""
import logging
from typing import NamedTuple, Optional

from pydantic import BaseModel

from orchestrator.core.factories import Authorizer, BuildFactory, EventFactory
from orchestrator.core.join_evaluator import JoinResult, evaluate_join
from orchestrator.core.locks import JoinLockManager
from orchestrator.core.parent_builds import ParentBuildsTracker
from orchestrator.core.state_manager import StateManager
from shared.enums import (JobState, JoinDecision, JoinRecordStatus, JoinType,
                          TriggerResult, TriggerScope)
from shared.errors import ConcurrencyConflict, ConfigurationError
from shared.models import (BuildSpec, Event, EventQuery, EventSpec, Job,
                           JoinKey, JoinRecord, ParentBuild, Pipeline,
                           WorkflowEdge)
from shared.schemas import TriggerOutcome

logger = logging.getLogger(__name__)


class TriggerKind(NamedTuple):
    """Tagged variant selecting how an edge is resolved"""
    scope: TriggerScope
    join: JoinType

    @property
    def label(self) -> str:
        return f"{self.scope.value}-{self.join.value}"


class TriggerRequest(BaseModel):
    """One parent report travelling along one workflow edge"""
    kind: TriggerKind
    edge: WorkflowEdge
    event: Event  # event of the reporting parent
    parent: ParentBuild
    source_pipeline: Pipeline
    dest_pipeline: Pipeline
    dest_job: Job
    cause_build_id: Optional[int] = None  # build whose completion started the chain


class TriggerResolver:
    """Resolves a TriggerRequest into a started build, a propagated virtual
    job, or nothing."""

    def __init__(self, state: StateManager, events: EventFactory,
                 builds: BuildFactory, locks: JoinLockManager,
                 authorizer: Authorizer):
        self.state = state
        self.events = events
        self.builds = builds
        self.locks = locks
        self.authorizer = authorizer

    async def resolve(self, request: TriggerRequest) -> TriggerOutcome:
        """Report one parent into the destination job and act on the join.

        Raises:
            Forbidden: External edge not trusted by the destination
            ConfigurationError: Graph does not declare the reporting parent
            StorageError, ValidationError: From the factories
        """
        if request.kind.scope == TriggerScope.EXTERNAL:
            await self.authorizer.authorize(request.source_pipeline,
                                            request.dest_pipeline)

        key = JoinKey(pipeline_id=request.dest_pipeline.id,
                      job_name=request.dest_job.name,
                      group_event_id=request.event.group_event_id)
        parents = request.dest_pipeline.workflow_graph.parents(
            request.dest_pipeline.id, request.dest_job.name)

        async with self.locks.hold(f"join:{key.record_id}"):
            record = await self.state.get_join_record(key) or JoinRecord(key=key)
            if record.status != JoinRecordStatus.PENDING:
                logger.debug(f"Join {key.record_id} already {record.status.value}")
                return self._outcome(request,
                                     TriggerResult.ALREADY_RESOLVED,
                                     reason=f"join already {record.status.value}")

            tracker = ParentBuildsTracker()
            tracker.declare(key, parents)
            tracker.restore(key, record.parent_builds)
            tracker.record(key, request.parent.pipeline_id,
                           request.parent.job_name, request.parent.build_id,
                           request.parent.status, request.parent.event_id)

            snapshot = tracker.snapshot(key)
            record.parent_builds = list(snapshot.values())
            result = evaluate_join(parents, snapshot)

            try:
                if result.decision == JoinDecision.NOT_READY:
                    await self.state.save_join_record(record)
                    return self._outcome(request, TriggerResult.NOT_READY)

                if result.decision == JoinDecision.BLOCKED:
                    record.reason = result.reason
                    await self.state.claim_join(record, JoinRecordStatus.BLOCKED)
                    await self.state.record_metric("joins_blocked")
                    logger.warning(
                        f"Job {key.job_name} in pipeline {key.pipeline_id} will "
                        f"not run: {result.reason}")
                    return self._outcome(request,
                                         TriggerResult.BLOCKED,
                                         reason=result.reason)

                await self.state.claim_join(record, JoinRecordStatus.FIRED)
            except ConcurrencyConflict as e:
                logger.warning(str(e))
                return self._outcome(request,
                                     TriggerResult.CONFLICT,
                                     reason=str(e))

            tracker.discard(key)
            try:
                return await self._start(request, key, result)
            except Exception:
                await self.state.release_join(key)
                raise

    async def _start(self, request: TriggerRequest, key: JoinKey,
                     result: JoinResult) -> TriggerOutcome:
        job = request.dest_job
        if job.state == JobState.DISABLED:
            logger.info(
                f"Job {job.name} in pipeline {job.pipeline_id} is disabled")
            return self._outcome(request,
                                 TriggerResult.DISABLED,
                                 reason="job is disabled")

        event = await self._destination_event(request)

        if job.virtual:
            logger.info(
                f"Virtual job {job.name} in pipeline {job.pipeline_id} is ready")
            return self._outcome(request,
                                 TriggerResult.PROPAGATED,
                                 event_id=event.id)

        build = await self.builds.create(
            BuildSpec(pipeline_id=job.pipeline_id,
                      job_id=job.id,
                      job_name=job.name,
                      event_id=event.id,
                      parent_builds=result.parent_builds))
        await self.state.set_join_build(key, build.id)
        await self.state.record_metric("builds_started")
        logger.info(
            f"Started build {build.id} for job {job.name} in pipeline "
            f"{job.pipeline_id} (event {event.id}, {request.kind.label})")
        return self._outcome(request,
                             TriggerResult.STARTED,
                             event_id=event.id,
                             build=build)

    async def _destination_event(self, request: TriggerRequest) -> Event:
        """Event the destination job runs in.

        Local edges reuse the reporting event. Other edges reuse an open event
        of the destination pipeline in the same causal chain, or create one.
        """
        dest = request.dest_pipeline
        if request.kind.scope == TriggerScope.LOCAL:
            if request.event.pipeline_id != dest.id:
                raise ConfigurationError(
                    f"Local edge {request.edge.src} -> {request.edge.dest} "
                    f"leaves pipeline {request.event.pipeline_id}")
            return request.event

        group_event_id = request.event.group_event_id
        async with self.locks.hold(f"event:{dest.id}:{group_event_id}"):
            existing = await self.events.list(
                EventQuery(pipeline_id=dest.id, group_event_id=group_event_id))
            if existing:
                return existing[0]

            return await self.events.create(
                EventSpec(pipeline_id=dest.id,
                          group_event_id=group_event_id,
                          parent_event_id=request.event.id,
                          cause_build_id=request.cause_build_id
                          or request.parent.build_id,
                          sha=request.event.sha,
                          ref=request.event.ref))

    def _outcome(self,
                 request: TriggerRequest,
                 result: TriggerResult,
                 event_id: Optional[int] = None,
                 build=None,
                 reason: Optional[str] = None) -> TriggerOutcome:
        return TriggerOutcome(source_pipeline_id=request.parent.pipeline_id,
                              source_job=request.parent.job_name,
                              dest_pipeline_id=request.dest_pipeline.id,
                              dest_job=request.dest_job.name,
                              join=request.kind.join,
                              scope=request.kind.scope,
                              result=result,
                              build=build,
                              event_id=event_id,
                              reason=reason)
