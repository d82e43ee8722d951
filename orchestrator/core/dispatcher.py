"""Trigger dispatcher: entry point invoked once per finished build"""
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel

from orchestrator.core.factories import (BACKEND_ERRORS, EventFactory, JobFactory,
                                         PipelineFactory)
from orchestrator.core.triggers import TriggerKind, TriggerRequest, TriggerResolver
from shared.enums import BuildStatus, TriggerResult, TriggerScope
from shared.errors import ConfigurationError, TriggerError, ValidationError
from shared.models import (Build, Event, EventQuery, ParentBuild, Pipeline,
                           WorkflowEdge)
from shared.schemas import DispatchResult, TriggerOutcome

logger = logging.getLogger(__name__)


class _Completion(BaseModel):
    """A job whose outgoing edges still have to be resolved"""
    pipeline: Pipeline
    event: Event  # carried into trigger requests for lineage
    # Event of pipeline in this causal chain; None when it has none yet
    own_event: Optional[Event] = None
    parent: ParentBuild
    cause_build_id: int
    depth: int = 0


class TriggerDispatcher:
    """Resolves the outgoing edges of finished builds.

    Virtual jobs that become ready, and jobs whose join is blocked, are fed
    back into the same worklist so that their own edges are resolved within
    the same call.
    """

    def __init__(self,
                 resolver: TriggerResolver,
                 pipelines: PipelineFactory,
                 jobs: JobFactory,
                 events: EventFactory,
                 max_depth: int = 64):
        self.resolver = resolver
        self.pipelines = pipelines
        self.jobs = jobs
        self.events = events
        self.max_depth = max_depth

    async def dispatch(self, build: Build) -> DispatchResult:
        """Start whatever the completion of build makes ready.

        Args:
            build: A build in a terminal state

        Returns:
            DispatchResult: Started builds, per-edge outcomes and errors

        Raises:
            ValidationError: If the build is not finished or its event is unknown
            ConfigurationError: If its pipeline is unknown
        """
        if not build.status.is_terminal:
            raise ValidationError(
                f"Build {build.id} is {build.status.value}, not finished")

        event = await self.events.get(build.event_id)
        if event is None:
            raise ValidationError(f"Event {build.event_id} does not exist")

        pipeline = await self.pipelines.get(build.pipeline_id)
        if pipeline is None:
            raise ConfigurationError(
                f"Pipeline {build.pipeline_id} does not exist")

        result = DispatchResult(build_id=build.id)
        visited: Set[Tuple[int, str]] = {(pipeline.id, build.job_name)}
        work: Deque[_Completion] = deque([
            _Completion(pipeline=pipeline,
                        event=event,
                        own_event=event,
                        parent=ParentBuild(pipeline_id=build.pipeline_id,
                                           job_name=build.job_name,
                                           build_id=build.id,
                                           status=build.status,
                                           event_id=build.event_id),
                        cause_build_id=build.id)
        ])

        while work:
            item = work.popleft()
            edges = item.pipeline.workflow_graph.outgoing(
                item.pipeline.id, item.parent.job_name)

            for dest_pipeline_id, group in self._partition(item, edges).items():
                for edge in group:
                    outcome = await self._resolve_edge(item, edge,
                                                       dest_pipeline_id)
                    result.outcomes.append(outcome)
                    if outcome.result == TriggerResult.FAILED:
                        result.errors.append(outcome.reason)
                        continue
                    if outcome.build is not None:
                        result.builds.append(outcome.build)

                    follow_up = await self._follow_up(item, outcome)
                    if follow_up is None:
                        continue

                    node = (follow_up.pipeline.id, follow_up.parent.job_name)
                    if follow_up.depth > self.max_depth or node in visited:
                        message = (
                            f"Virtual propagation from {item.parent.job_name} "
                            f"reached {node[1]}@{node[0]} "
                            + ("again (cycle)" if node in visited else
                               f"beyond depth {self.max_depth}"))
                        await self._report_error(item, message)
                        result.errors.append(message)
                        continue

                    visited.add(node)
                    work.append(follow_up)

        logger.info(
            f"Build {build.id} ({build.job_name}, {build.status.value}) "
            f"started {len(result.builds)} builds across "
            f"{len(result.outcomes)} edges")
        return result

    def _partition(self, item: _Completion,
                   edges: List[WorkflowEdge]) -> Dict[int, List[WorkflowEdge]]:
        """Group edges by destination pipeline, own pipeline first."""
        groups: Dict[int, List[WorkflowEdge]] = {item.pipeline.id: []}
        for edge in edges:
            groups.setdefault(edge.destination_pipeline(item.pipeline.id),
                              []).append(edge)
        return groups

    async def _resolve_edge(self, item: _Completion, edge: WorkflowEdge,
                            dest_pipeline_id: int) -> TriggerOutcome:
        """Resolve one edge; errors are confined to that edge."""
        try:
            request = await self._request(item, edge, dest_pipeline_id)
            return await self.resolver.resolve(request)
        except (TriggerError, *BACKEND_ERRORS) as e:
            logger.error(
                f"Edge {item.parent.job_name}@{item.pipeline.id} -> "
                f"{edge.dest}@{dest_pipeline_id} failed: {e}")
            if isinstance(e, ConfigurationError):
                await self._report_error(item, str(e))
            return TriggerOutcome(source_pipeline_id=item.pipeline.id,
                                  source_job=item.parent.job_name,
                                  dest_pipeline_id=dest_pipeline_id,
                                  dest_job=edge.dest,
                                  join=edge.join,
                                  result=TriggerResult.FAILED,
                                  reason=f"{type(e).__name__}: {e}")

    async def _request(self, item: _Completion, edge: WorkflowEdge,
                       dest_pipeline_id: int) -> TriggerRequest:
        dest_pipeline = await self.pipelines.get(dest_pipeline_id)
        if dest_pipeline is None:
            raise ConfigurationError(
                f"Edge {edge.src} -> {edge.dest} targets unknown pipeline "
                f"{dest_pipeline_id}")

        dest_job = await self.jobs.get_by_name(dest_pipeline_id, edge.dest)
        if dest_job is None:
            raise ConfigurationError(
                f"Edge {edge.src} -> {edge.dest} targets unknown job in "
                f"pipeline {dest_pipeline_id}")

        return TriggerRequest(kind=TriggerKind(
            self._scope(item.pipeline, dest_pipeline), edge.join),
                              edge=edge,
                              event=item.event,
                              parent=item.parent,
                              source_pipeline=item.pipeline,
                              dest_pipeline=dest_pipeline,
                              dest_job=dest_job,
                              cause_build_id=item.cause_build_id)

    def _scope(self, source: Pipeline, dest: Pipeline) -> TriggerScope:
        if source.id == dest.id:
            return TriggerScope.LOCAL
        if source.scm_owner == dest.scm_owner:
            return TriggerScope.REMOTE
        return TriggerScope.EXTERNAL

    async def _follow_up(self, item: _Completion,
                         outcome: TriggerOutcome) -> Optional[_Completion]:
        """Completion to enqueue after an outcome, if any.

        A ready virtual job completes successfully without a build. A job
        whose join is blocked will never run, which its own children see as
        a skipped parent.
        """
        if outcome.result == TriggerResult.PROPAGATED:
            status = BuildStatus.SUCCESS
            own_event = await self.events.get(outcome.event_id)
        elif outcome.result == TriggerResult.BLOCKED:
            status = BuildStatus.SKIPPED
            own_event = await self._pipeline_event(item,
                                                   outcome.dest_pipeline_id)
        else:
            return None

        pipeline = await self.pipelines.get(outcome.dest_pipeline_id)
        return _Completion(pipeline=pipeline,
                           event=own_event or item.event,
                           own_event=own_event,
                           parent=ParentBuild(
                               pipeline_id=outcome.dest_pipeline_id,
                               job_name=outcome.dest_job,
                               build_id=None,
                               status=status,
                               event_id=own_event.id if own_event else None),
                           cause_build_id=item.cause_build_id,
                           depth=item.depth + 1)

    async def _pipeline_event(self, item: _Completion,
                              pipeline_id: int) -> Optional[Event]:
        """Open event of pipeline_id in the causal chain of item, if any.

        Blocked joins create no event, so a pipeline reached only through
        blocked jobs has none.
        """
        if pipeline_id == item.pipeline.id:
            return item.own_event
        events = await self.events.list(
            EventQuery(pipeline_id=pipeline_id,
                       group_event_id=item.event.group_event_id))
        return events[0] if events else None

    async def _report_error(self, item: _Completion, message: str) -> None:
        """Record a processing error on the event of the reporting pipeline"""
        event = item.own_event
        if event is None:
            logger.warning(
                f"No event of pipeline {item.pipeline.id} in group "
                f"{item.event.group_event_id} to record error on: {message}")
            return

        event.processing_errors.append(message)
        try:
            await self.events.update(event)
        except TriggerError as e:
            logger.error(f"Could not record error on event {event.id}: {e}")
