"""Request and result schemas exchanged with the build lifecycle"""
from pydantic import BaseModel, ConfigDict
from typing import Optional, List

from .enums import BuildStatus, JoinType, TriggerResult, TriggerScope
from .models import Build


class BuildCompletion(BaseModel):
    """Terminal status reported for a build"""
    status: BuildStatus


class TriggerOutcome(BaseModel):
    """Outcome of resolving one workflow edge"""
    model_config = ConfigDict(use_enum_values=True)

    source_pipeline_id: int
    source_job: str
    dest_pipeline_id: int
    dest_job: str
    join: JoinType
    scope: Optional[TriggerScope] = None
    result: TriggerResult
    build: Optional[Build] = None
    event_id: Optional[int] = None
    reason: Optional[str] = None


class DispatchResult(BaseModel):
    """Everything that happened while handling one finished build"""
    build_id: int
    builds: List[Build] = []
    outcomes: List[TriggerOutcome] = []
    errors: List[str] = []

    @property
    def ok(self) -> bool:
        return not self.errors
