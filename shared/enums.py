"""Enum definitions for the trigger engine"""
from enum import Enum


class BuildStatus(str, Enum):
    """Status values for build execution"""
    CREATED = "created"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    ABORTED = "aborted"
    UNSTABLE = "unstable"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_BUILD_STATUSES


TERMINAL_BUILD_STATUSES = frozenset({
    BuildStatus.SUCCESS,
    BuildStatus.FAILURE,
    BuildStatus.ABORTED,
    BuildStatus.UNSTABLE,
    BuildStatus.SKIPPED,
})


class JoinType(str, Enum):
    """How a downstream job combines the outcomes of its parents"""
    AND = "and"
    OR = "or"


class TriggerScope(str, Enum):
    """Where the destination of a workflow edge lives"""
    LOCAL = "local"  # same pipeline
    REMOTE = "remote"  # other pipeline, same owner
    EXTERNAL = "external"  # other pipeline, other owner


class JoinDecision(str, Enum):
    """Readiness of a downstream job"""
    NOT_READY = "not_ready"
    READY = "ready"
    BLOCKED = "blocked"


class JoinRecordStatus(str, Enum):
    """Lifecycle of an unresolved join"""
    PENDING = "pending"
    FIRED = "fired"
    BLOCKED = "blocked"


class TriggerResult(str, Enum):
    """Outcome of resolving one workflow edge"""
    STARTED = "started"
    PROPAGATED = "propagated"
    NOT_READY = "not_ready"
    BLOCKED = "blocked"
    ALREADY_RESOLVED = "already_resolved"
    CONFLICT = "conflict"
    DISABLED = "disabled"
    FAILED = "failed"


class EventStatus(str, Enum):
    """Status values for events"""
    OPEN = "open"
    CLOSED = "closed"


class JobState(str, Enum):
    """Whether a job may be triggered"""
    ENABLED = "enabled"
    DISABLED = "disabled"
