"""Tests for the HTTP endpoints."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from vmfleet.api import configure, router
from vmfleet.destroy import DestroyOutcome
from vmfleet.errors import BadRequestError, DestroyAttemptError
from vmfleet.metrics import FleetMetrics
from vmfleet.models import CleanupRequest, Instance


@pytest.fixture
def app():
    """Create a test FastAPI app with the vmfleet router."""
    test_app = FastAPI()
    test_app.include_router(router)
    return test_app


@pytest.fixture
def handler():
    h = MagicMock()
    h.handle = AsyncMock(
        return_value=DestroyOutcome(instance=Instance(id="i-1", name="runner-1"))
    )
    return h


@pytest.fixture
def metrics():
    return FleetMetrics()


@pytest.fixture
def client(app, handler, metrics):
    configure(handler, metrics)
    return TestClient(app)


class TestDestroyEndpoint:
    def test_success(self, client, handler):
        response = client.post(
            "/destroy",
            json={
                "pool_id": "linux-pool",
                "stage_runtime_id": "stage-1",
                "log_key": "k",
                "context": {"task_id": "t-1"},
            },
        )

        assert response.status_code == 200
        assert response.json() == {"instance_id": "i-1", "instance_name": "runner-1"}
        request = handler.handle.call_args[0][0]
        assert isinstance(request, CleanupRequest)
        assert request.stage_runtime_id == "stage-1"
        assert request.context == {"task_id": "t-1"}

    def test_bad_request_maps_to_400(self, client, handler):
        handler.handle.side_effect = BadRequestError("stage_runtime_id is empty")

        response = client.post("/destroy", json={"pool_id": "linux-pool"})

        assert response.status_code == 400
        assert "stage_runtime_id" in response.json()["detail"]

    def test_exhausted_retries_map_to_500(self, client, handler):
        handler.handle.side_effect = DestroyAttemptError(MagicMock(), "cannot destroy the instance")

        response = client.post("/destroy", json={"stage_runtime_id": "stage-1"})

        assert response.status_code == 500
        assert "cannot destroy" in response.json()["detail"]


class TestHealthAndMetrics:
    def test_healthz(self, client):
        assert client.get("/healthz").json() == {"status": "ok"}

    def test_metrics_exposition(self, client, metrics):
        metrics.observe_usage(
            pool_id="p", os="linux", arch="amd64", provider="amazon", max_cpu_pct=80, max_mem_pct=40
        )

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "vmfleet_max_cpu_usage_percent_count" in response.text
