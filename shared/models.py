"""Domain model definitions for pipelines, events, builds, and joins"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Tuple
from datetime import datetime, UTC

from .enums import (BuildStatus, EventStatus, JobState, JoinRecordStatus,
                    JoinType)

# (pipeline_id, job_name)
ParentKey = Tuple[int, str]

# Graph nodes that start a workflow; no build ever reports for them
START_MARKERS = frozenset({"~commit", "~pr", "~release", "~tag"})


def _now() -> datetime:
    return datetime.now(UTC)


class WorkflowEdge(BaseModel):
    """A directed edge between two jobs, possibly across pipelines"""
    model_config = ConfigDict(frozen=True)

    src: str
    dest: str
    join: JoinType = JoinType.OR
    src_pipeline_id: Optional[int] = None  # None means the owning pipeline
    dest_pipeline_id: Optional[int] = None

    @property
    def is_start(self) -> bool:
        return self.src in START_MARKERS

    def source_pipeline(self, pipeline_id: int) -> int:
        return self.src_pipeline_id if self.src_pipeline_id is not None else pipeline_id

    def destination_pipeline(self, pipeline_id: int) -> int:
        return self.dest_pipeline_id if self.dest_pipeline_id is not None else pipeline_id


class WorkflowGraph(BaseModel):
    """Immutable job graph owned by a pipeline"""
    model_config = ConfigDict(frozen=True)

    nodes: List[str] = []
    edges: List[WorkflowEdge] = []

    def outgoing(self, pipeline_id: int, job_name: str) -> List[WorkflowEdge]:
        """Edges leaving job_name of pipeline_id"""
        return [
            edge for edge in self.edges if edge.src == job_name
            and edge.source_pipeline(pipeline_id) == pipeline_id
        ]

    def incoming(self, pipeline_id: int, job_name: str) -> List[WorkflowEdge]:
        """Edges entering job_name of pipeline_id"""
        return [
            edge for edge in self.edges if edge.dest == job_name
            and edge.destination_pipeline(pipeline_id) == pipeline_id
        ]

    def parents(self, pipeline_id: int,
                job_name: str) -> Dict[ParentKey, JoinType]:
        """Declared parents of a job with the join type of each edge.

        Start markers are not parents: they trigger the job when an event
        begins and take no part in its join.
        """
        return {(edge.source_pipeline(pipeline_id), edge.src): edge.join
                for edge in self.incoming(pipeline_id, job_name)
                if not edge.is_start}


class Pipeline(BaseModel):
    """A pipeline and its workflow graph"""
    id: int
    name: str
    scm_owner: str
    trusted_owners: List[str] = []  # "*" trusts every owner
    workflow_graph: WorkflowGraph = WorkflowGraph()


class Job(BaseModel):
    """A node of a pipeline's workflow graph"""
    id: int
    pipeline_id: int
    name: str
    virtual: bool = False
    state: JobState = JobState.ENABLED


class ParentBuild(BaseModel):
    """One upstream report accumulated for a downstream job"""
    pipeline_id: int
    job_name: str
    build_id: Optional[int] = None  # None for virtual parents
    status: BuildStatus
    event_id: Optional[int] = None

    @property
    def key(self) -> ParentKey:
        return (self.pipeline_id, self.job_name)


class Event(BaseModel):
    """One causal run of a pipeline's workflow"""
    id: int
    pipeline_id: int
    group_event_id: int
    parent_event_id: Optional[int] = None
    cause_build_id: Optional[int] = None
    sha: str = ""
    ref: str = ""
    status: EventStatus = EventStatus.OPEN
    processing_errors: List[str] = []
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class Build(BaseModel):
    """One execution of one job within one event"""
    id: int
    pipeline_id: int
    job_id: int
    job_name: str
    event_id: int
    status: BuildStatus = BuildStatus.QUEUED
    parent_builds: List[ParentBuild] = []
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class EventSpec(BaseModel):
    """Request to create an event"""
    pipeline_id: int
    group_event_id: Optional[int] = None  # None starts a new causal chain
    parent_event_id: Optional[int] = None
    cause_build_id: Optional[int] = None
    sha: str = ""
    ref: str = ""


class EventQuery(BaseModel):
    """Filter for listing events"""
    pipeline_id: int
    group_event_id: Optional[int] = None
    status: Optional[EventStatus] = EventStatus.OPEN


class BuildSpec(BaseModel):
    """Request to create a build"""
    pipeline_id: int
    job_id: int
    job_name: str
    event_id: int
    parent_builds: List[ParentBuild] = []
    status: BuildStatus = BuildStatus.QUEUED


class JoinKey(BaseModel):
    """Identity of one unresolved join"""
    model_config = ConfigDict(frozen=True)

    pipeline_id: int
    job_name: str
    group_event_id: int

    @property
    def record_id(self) -> str:
        return f"{self.pipeline_id}:{self.job_name}:{self.group_event_id}"


class JoinRecord(BaseModel):
    """Persisted parent reports for a downstream job not yet started"""
    key: JoinKey
    status: JoinRecordStatus = JoinRecordStatus.PENDING
    parent_builds: List[ParentBuild] = []
    build_id: Optional[int] = None
    reason: Optional[str] = None
    updated_at: datetime = Field(default_factory=_now)
