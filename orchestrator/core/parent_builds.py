"""Accumulation of parent reports for downstream jobs that have not started"""
from typing import Dict, Iterable, Optional, Set

from shared.enums import BuildStatus
from shared.errors import ConfigurationError
from shared.models import JoinKey, ParentBuild, ParentKey


class ParentBuildsTracker:
    """Records which parents of a downstream job have reported, and how.

    Pure data structure: the caller is responsible for loading persisted
    reports with restore() and for saving the snapshot afterwards.
    """

    def __init__(self):
        self._declared: Dict[JoinKey, Set[ParentKey]] = {}
        self._reports: Dict[JoinKey, Dict[ParentKey, ParentBuild]] = {}

    def declare(self, downstream: JoinKey,
                parents: Iterable[ParentKey]) -> None:
        """Register the parents the workflow graph declares for a job."""
        declared = set(parents)
        if not declared:
            raise ConfigurationError(
                f"Job {downstream.job_name} in pipeline {downstream.pipeline_id} "
                f"has no declared parents")
        self._declared[downstream] = declared
        self._reports.setdefault(downstream, {})

    def restore(self, downstream: JoinKey,
                parent_builds: Iterable[ParentBuild]) -> None:
        """Load previously persisted reports."""
        for parent in parent_builds:
            self.record(downstream, parent.pipeline_id, parent.job_name,
                        parent.build_id, parent.status, parent.event_id)

    def record(self,
               downstream: JoinKey,
               parent_pipeline_id: int,
               parent_job_name: str,
               build_id: Optional[int],
               status: BuildStatus,
               event_id: Optional[int] = None) -> ParentBuild:
        """Merge one parent's report; the latest report for a key wins.

        Raises:
            ConfigurationError: If the parent is not declared for the job
        """
        declared = self._declared.get(downstream)
        if declared is None:
            raise ConfigurationError(
                f"No parents declared for job {downstream.job_name} "
                f"in pipeline {downstream.pipeline_id}")

        key = (parent_pipeline_id, parent_job_name)
        if key not in declared:
            raise ConfigurationError(
                f"Job {parent_job_name} of pipeline {parent_pipeline_id} is not "
                f"a parent of {downstream.job_name} in pipeline {downstream.pipeline_id}"
            )

        entry = ParentBuild(pipeline_id=parent_pipeline_id,
                            job_name=parent_job_name,
                            build_id=build_id,
                            status=status,
                            event_id=event_id)
        self._reports[downstream][key] = entry
        return entry

    def snapshot(self, downstream: JoinKey) -> Dict[ParentKey, ParentBuild]:
        """Current reports for a job, without mutating them."""
        return dict(self._reports.get(downstream, {}))

    def discard(self, downstream: JoinKey) -> None:
        """Forget a job once its join has been consumed."""
        self._declared.pop(downstream, None)
        self._reports.pop(downstream, None)
