"""Health check and status endpoints"""
from fastapi import APIRouter, Depends
from datetime import datetime, UTC

from orchestrator.core.state_manager import StateManager, state_manager
from shared.enums import JoinRecordStatus

router = APIRouter(tags=["health"])

METRICS = ("builds_started", "joins_blocked")


@router.get("/")
async def root():
    """Health check endpoint"""
    return {
        "service": "orchestrator",
        "status": "running",
        "timestamp": datetime.now(UTC).isoformat()
    }


@router.get("/health")
async def health(state: StateManager = Depends(state_manager)):
    """Detailed health status"""
    status = {
        "status":
        "healthy",
        "pipelines":
        len(state.pipelines),
        "events":
        len(state.events),
        "builds":
        len(state.builds),
        "pending_joins":
        len([
            r for r in state.list_join_records()
            if r.status == JoinRecordStatus.PENDING
        ])
    }
    if state.redis:
        status["metrics"] = {
            metric: await state.redis.get_metric(metric)
            for metric in METRICS
        }
    return status
