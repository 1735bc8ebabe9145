"""Tests for the REST routes."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock

from app.api import router
from core.models.indicator import IndicatorRequest


@pytest.fixture
def app():
    app = FastAPI()
    app.include_router(router, prefix="/api")
    return app


class TestSchedulerRoute:
    """Tests for GET /api/scheduler."""

    def test_lists_scheduled_indicators(self, app):
        """Test listing scheduled indicators."""
        request = IndicatorRequest(
            indicator_type="SMA", symbol="AAPL", interval="daily", parameters={"time_period": 20}
        )
        scheduler = MagicMock()
        scheduler.is_running = True
        scheduler.scheduled = {request.fingerprint: request}
        app.state.scheduler = scheduler

        response = TestClient(app).get("/api/scheduler")

        assert response.status_code == 200
        body = response.json()
        assert body["running"] is True
        assert body["scheduled"][0]["fingerprint"] == request.fingerprint
        assert body["scheduled"][0]["parameters"] == {"time_period": 20}

    def test_not_running(self, app):
        """Test the route when the scheduler is not running."""
        response = TestClient(app).get("/api/scheduler")
        assert response.status_code == 503


class TestRefreshRoute:
    """Tests for POST /api/indicators/refresh."""

    def test_refresh_forced(self, app):
        """Test a forced refresh."""
        fetcher = MagicMock()
        fetcher.fetch = AsyncMock(return_value={"2024-01-05": {"SMA": "155.0"}})
        app.state.fetcher = fetcher

        response = TestClient(app).post(
            "/api/indicators/refresh",
            json={"indicator_type": "SMA", "symbol": "AAPL", "interval": "daily", "force": True},
        )

        assert response.status_code == 200
        assert response.json()["data"] == {"2024-01-05": {"SMA": "155.0"}}
        request, = fetcher.fetch.call_args[0]
        assert request.symbol == "AAPL"
        assert fetcher.fetch.call_args.kwargs["force_refresh"] is True

    def test_refresh_failure(self, app):
        """Test a refresh that fails."""
        fetcher = MagicMock()
        fetcher.fetch = AsyncMock(return_value=None)
        app.state.fetcher = fetcher

        response = TestClient(app).post(
            "/api/indicators/refresh",
            json={"indicator_type": "SMA", "symbol": "AAPL", "interval": "daily"},
        )

        assert response.status_code == 502
