"""Join policy: decides whether a downstream job may start"""
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from shared.enums import BuildStatus, JoinDecision, JoinType
from shared.errors import ConfigurationError
from shared.models import ParentBuild, ParentKey


class JoinResult(BaseModel):
    """Readiness of a downstream job"""
    decision: JoinDecision
    parent_builds: List[ParentBuild] = []
    reason: Optional[str] = None

    @classmethod
    def not_ready(cls) -> "JoinResult":
        return cls(decision=JoinDecision.NOT_READY)

    @classmethod
    def ready(cls, snapshot: Mapping[ParentKey, ParentBuild]) -> "JoinResult":
        return cls(decision=JoinDecision.READY,
                   parent_builds=list(snapshot.values()))

    @classmethod
    def blocked(cls, reason: str) -> "JoinResult":
        return cls(decision=JoinDecision.BLOCKED, reason=reason)


def _describe(key: ParentKey) -> str:
    pipeline_id, job_name = key
    return f"{job_name}@{pipeline_id}"


def _and_group(keys: List[ParentKey],
               snapshot: Mapping[ParentKey, ParentBuild]
               ) -> Tuple[JoinDecision, Optional[str]]:
    """Every parent must succeed; one non-success blocks the group."""
    for key in keys:
        report = snapshot.get(key)
        if report is not None and report.status != BuildStatus.SUCCESS:
            return (JoinDecision.BLOCKED,
                    f"required parent {_describe(key)} finished {report.status.value}")

    if all(key in snapshot for key in keys):
        return JoinDecision.READY, None
    return JoinDecision.NOT_READY, None


def _or_group(keys: List[ParentKey],
              snapshot: Mapping[ParentKey, ParentBuild]
              ) -> Tuple[JoinDecision, Optional[str]]:
    """Any success satisfies the group; it is blocked only once all failed."""
    reported = [snapshot[key] for key in keys if key in snapshot]
    if any(report.status == BuildStatus.SUCCESS for report in reported):
        return JoinDecision.READY, None

    if len(reported) == len(keys):
        return (JoinDecision.BLOCKED,
                "no parent succeeded: " +
                ", ".join(_describe(key) for key in keys))
    return JoinDecision.NOT_READY, None


def evaluate_join(parents: Mapping[ParentKey, JoinType],
                  snapshot: Mapping[ParentKey, ParentBuild]) -> JoinResult:
    """Evaluate the AND and OR edge groups of a downstream job.

    The job is ready when the AND group (if any) and the OR group (if any)
    are both satisfied. It is blocked as soon as either group can never be
    satisfied.

    Args:
        parents: Declared parents of the job and the join type of each edge
        snapshot: Reports received so far

    Returns:
        JoinResult: not_ready, ready (with the snapshot) or blocked
    """
    if not parents:
        raise ConfigurationError("Cannot evaluate a join without parents")

    groups: Dict[JoinType, List[ParentKey]] = {}
    for key, join in parents.items():
        groups.setdefault(join, []).append(key)

    decisions = []
    if JoinType.AND in groups:
        decisions.append(_and_group(groups[JoinType.AND], snapshot))
    if JoinType.OR in groups:
        decisions.append(_or_group(groups[JoinType.OR], snapshot))

    for decision, reason in decisions:
        if decision == JoinDecision.BLOCKED:
            return JoinResult.blocked(reason)

    if all(decision == JoinDecision.READY for decision, _ in decisions):
        return JoinResult.ready(snapshot)
    return JoinResult.not_ready()
