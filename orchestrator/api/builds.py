from fastapi import APIRouter, HTTPException, Depends

from shared.errors import TriggerError
from shared.models import Build, Event
from shared.schemas import BuildCompletion, DispatchResult
from orchestrator.core.state_manager import StateManager, state_manager
from orchestrator.core.dependencies import get_dispatcher

router = APIRouter(tags=["builds"])


async def _get_build_or_404(build_id: int, state: StateManager) -> Build:
    """Get a build by ID or raise 404 if not found"""
    build = await state.get_build(build_id)
    if build is None:
        raise HTTPException(status_code=404, detail="Build not found")
    return build


@router.get("/builds/{build_id}", response_model=Build)
async def get_build(build_id: int,
                    state: StateManager = Depends(state_manager)):
    """Get a specific build"""
    return await _get_build_or_404(build_id, state)


@router.post("/builds/{build_id}/complete", response_model=DispatchResult)
async def complete_build(build_id: int,
                         completion: BuildCompletion,
                         state: StateManager = Depends(state_manager)):
    """Record the terminal status of a build and trigger its downstream jobs"""
    if not completion.status.is_terminal:
        raise HTTPException(
            status_code=400,
            detail=f"Status {completion.status.value} is not terminal")

    build = await _get_build_or_404(build_id, state)
    if build.status.is_terminal:
        raise HTTPException(
            status_code=409,
            detail=f"Build already finished with {build.status.value}")

    build.status = completion.status
    await state.save_build(build)

    try:
        return await get_dispatcher().dispatch(build)
    except TriggerError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/events/{event_id}", response_model=Event)
async def get_event(event_id: int,
                    state: StateManager = Depends(state_manager)):
    """Get a specific event"""
    event = await state.get_event(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event
