"""
Tests for the scheduler control router.
"""

import pytest
from fastapi.testclient import TestClient

from src.api._engine_state import set_engine_service
from src.engine.service import EngineService


@pytest.fixture
def engine_service(tmp_path):
    service = EngineService.create(tmp_path / "policy_jobs.db", poll_interval=0.05)
    set_engine_service(service)
    return service


@pytest.fixture
def client(engine_service):
    from src.api.main import app
    return TestClient(app)


class TestSchedulerControl:

    def test_status_when_stopped(self, client):
        response = client.get("/scheduler/status")

        assert response.status_code == 200
        data = response.json()
        assert data["scheduler_running"] is False
        assert data["state"] == "STOPPED"
        assert data["current_job_id"] is None
        assert data["job_count"] == 0

    def test_start_and_stop(self, client, engine_service):
        response = client.post("/scheduler/start")
        assert response.status_code == 200
        assert response.json()["message"] == "Scheduler started successfully"
        assert engine_service.is_running

        response = client.post("/scheduler/start")
        assert response.json()["message"] == "Scheduler is already running"

        response = client.post("/scheduler/stop", json={"timeout": 5})
        assert response.json()["message"] == "Scheduler stopped successfully"
        assert not engine_service.is_running

    def test_stop_when_stopped(self, client):
        response = client.post("/scheduler/stop")

        assert response.status_code == 200
        assert response.json()["message"] == "Scheduler is already stopped"

    def test_due_job_count(self, client, engine_service):
        engine_service.routines.register("public", "noop", lambda job_id, config, *, ctx: None)
        engine_service.jobs.add_job("public", "noop", "1 day")

        data = client.get("/scheduler/status").json()

        assert data["job_count"] == 1
        assert data["due_job_count"] == 1
