"""Integration tests for build completion and lookup endpoints"""
import pytest
from fastapi.testclient import TestClient

from orchestrator.core.state_manager import StateManager


@pytest.mark.integration
class TestBuildEndpoints:
    """Test build lookup and completion"""

    def test_get_build(self, client: TestClient) -> None:
        response = client.get("/builds/1")

        assert response.status_code == 200
        data = response.json()
        assert data["job_name"] == "build"
        assert data["status"] == "queued"

    def test_get_missing_build(self, client: TestClient) -> None:
        response = client.get("/builds/999")

        assert response.status_code == 404

    def test_complete_missing_build(self, client: TestClient) -> None:
        response = client.post("/builds/999/complete",
                               json={"status": "success"})

        assert response.status_code == 404

    def test_non_terminal_status_rejected(self, client: TestClient) -> None:
        response = client.post("/builds/1/complete", json={"status": "running"})

        assert response.status_code == 400

    def test_unknown_status_rejected(self, client: TestClient) -> None:
        response = client.post("/builds/1/complete", json={"status": "done"})

        assert response.status_code == 422

    def test_complete_triggers_downstream(self, client: TestClient,
                                          api_state: StateManager) -> None:
        first = client.post("/builds/1/complete", json={"status": "success"})

        assert first.status_code == 200
        data = first.json()
        assert data["build_id"] == 1
        assert [o["result"] for o in data["outcomes"]
                ] == ["not_ready", "not_ready", "started"]
        assert [b["job_name"] for b in data["builds"]] == ["audit"]
        assert data["errors"] == []

        second = client.post("/builds/2/complete", json={"status": "success"})

        assert second.status_code == 200
        started = second.json()["builds"]
        assert [b["job_name"] for b in started] == ["package", "deploy"]
        assert started[1]["event_id"] == data["builds"][0]["event_id"]
        assert api_state.builds[1].status == "success"

    def test_failure_blocks_downstream(self, client: TestClient) -> None:
        response = client.post("/builds/2/complete", json={"status": "failure"})

        outcomes = response.json()["outcomes"]
        assert [(o["dest_job"], o["result"]) for o in outcomes] == [
            ("package", "blocked"),
            ("deploy", "blocked"),
            ("smoke", "blocked"),
        ]
        assert response.json()["builds"] == []

    def test_finished_build_cannot_complete_twice(
            self, client: TestClient) -> None:
        client.post("/builds/1/complete", json={"status": "success"})

        response = client.post("/builds/1/complete", json={"status": "failure"})

        assert response.status_code == 409


@pytest.mark.integration
class TestEventEndpoints:
    """Test event lookup"""

    def test_get_event(self, client: TestClient) -> None:
        response = client.get("/events/1")

        assert response.status_code == 200
        data = response.json()
        assert data["pipeline_id"] == 1
        assert data["group_event_id"] == 1
        assert data["sha"] == "abc123"
        assert data["processing_errors"] == []

    def test_remote_event_lineage(self, client: TestClient) -> None:
        data = client.post("/builds/1/complete",
                           json={"status": "success"}).json()
        event_id = data["builds"][0]["event_id"]

        event = client.get(f"/events/{event_id}").json()

        assert event["pipeline_id"] == 2
        assert event["group_event_id"] == 1
        assert event["parent_event_id"] == 1
        assert event["cause_build_id"] == 1

    def test_get_missing_event(self, client: TestClient) -> None:
        assert client.get("/events/999").status_code == 404
