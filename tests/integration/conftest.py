"""Integration test fixtures"""
import pytest
from fastapi.testclient import TestClient

from orchestrator.core import state_manager as state_module
from orchestrator.core.dependencies import reset_dependencies
from orchestrator.core.factories import StateBuildFactory, StateEventFactory
from orchestrator.core.state_manager import StateManager
from orchestrator.utils.pipeline_parser import parse_yaml_pipelines
from shared.models import BuildSpec, EventSpec
from tests.conftest import FAN_IN_YAML


@pytest.fixture
async def api_state(monkeypatch) -> StateManager:
    """Fresh global state with the fan-in pipelines, a commit event in
    pipeline 1 and running builds for build (id 1) and test (id 2)"""
    state = StateManager()
    monkeypatch.setattr(state_module, "_state", state)
    reset_dependencies()

    for definition in parse_yaml_pipelines(FAN_IN_YAML):
        state.add_pipeline(definition.pipeline, definition.jobs)

    event = await StateEventFactory(state).create(
        EventSpec(pipeline_id=1, sha="abc123", ref="main"))
    builds = StateBuildFactory(state)
    for name in ("build", "test"):
        job = state.find_job(1, name)
        await builds.create(
            BuildSpec(pipeline_id=1,
                      job_id=job.id,
                      job_name=name,
                      event_id=event.id))

    yield state
    reset_dependencies()


@pytest.fixture
def client(api_state: StateManager) -> TestClient:
    """Create a test client for the FastAPI app"""
    from orchestrator.main import app
    return TestClient(app)
