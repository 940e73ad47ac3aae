import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from conftest import make_metric
from fleetdrift.api import endpoints
from fleetdrift.db import get_db
from fleetdrift.drift import calculate_driver_drift
from fleetdrift.main import app


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def seeded(db_session, add_metrics, window_days, target_day):
    """One driver drifting hard, one steady, both profiled for target_day."""
    metrics = []
    for i, d in enumerate(window_days):
        heavy = i >= 11
        metrics.append(make_metric(
            "D1", d,
            hours=9.0 if heavy else 6.0,
            night=3.0 if heavy else 1.0,
            aggression=2.0 if heavy else 1.0,
            first_name="Dana",
            vehicle_id="b1",
            vehicle_name="Truck 7",
        ))
        metrics.append(make_metric("D2", d, hours=6.0, night=1.0, aggression=1.0))
    add_metrics(metrics)

    for driver_id in ("D1", "D2"):
        asyncio.run(calculate_driver_drift(db_session, driver_id, target_day))
    return metrics


class TestHealth:
    """Test health endpoints."""

    def test_api_health(self, client):
        """Test the API health check."""
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "API is running"}

    def test_app_health(self, client):
        """Test the root health check."""
        assert client.get("/health").json() == {"status": "healthy"}


class TestOverview:
    """Test the fleet overview endpoint."""

    def test_overview_for_date(self, client, seeded):
        """Test stats and ordering for a seeded fleet."""
        response = client.get("/api/overview", params={"date": "2025-03-14"})
        assert response.status_code == 200
        data = response.json()

        stats = data["stats"]
        assert stats["totalDrivers"] == 2
        assert stats["high"] == 1
        assert stats["stable"] == 1
        assert stats["driversAtRisk"] == 1
        assert stats["driftDistribution"] == {"high": 1, "moderate": 0, "mild": 0, "stable": 1}
        assert stats["avgBurnoutScore"] == round(66.61 / 2, 2)

        first, second = data["drivers"]
        assert first["id"] == "D1"
        assert first["firstName"] == "Dana"
        assert first["vehicleName"] == "Truck 7"
        assert first["burnout"] == {"score": 66.61, "level": "high", "consecutiveDays": 3, "volatilityRising": False}
        assert first["lastActive"] == "2025-03-14T00:00:00+00:00"
        assert len(first["dailyMetrics"]) == 14
        assert "Dana" in first["nudgeMessage"]
        assert second["id"] == "D2"
        assert second["nudgeMessage"] == ""

    def test_overview_without_profiles(self, client):
        """Test that a date with no baselines is an empty fleet."""
        data = client.get("/api/overview", params={"date": "2025-03-14"}).json()
        assert data["stats"]["totalDrivers"] == 0
        assert data["stats"]["avgBurnoutScore"] == 0
        assert data["drivers"] == []

    def test_overview_rejects_bad_date(self, client):
        """Test query validation."""
        assert client.get("/api/overview", params={"date": "not-a-date"}).status_code == 422


class TestHistory:
    """Test the driver history endpoint."""

    def test_history_ends_today(self, client, add_metrics):
        """Test that history covers the trailing window up to today (UTC)."""
        today = datetime.now(timezone.utc).date()
        add_metrics([
            make_metric("D1", today - timedelta(days=20), hours=1.0),
            make_metric("D1", today - timedelta(days=2), hours=4.0, night=0.5, aggression=0.2),
            make_metric("D1", today - timedelta(days=1), hours=5.0),
        ])
        response = client.get("/api/drivers/D1/history")
        assert response.status_code == 200
        history = response.json()

        assert [h["date"] for h in history] == [
            (today - timedelta(days=2)).isoformat(),
            (today - timedelta(days=1)).isoformat(),
        ]
        assert history[0] == {
            "date": (today - timedelta(days=2)).isoformat(),
            "drivingHours": 4.0,
            "nightHours": 0.5,
            "aggressionRate": 0.2,
        }

    def test_unknown_driver_has_empty_history(self, client):
        """Test that an unknown driver is not an error."""
        assert client.get("/api/drivers/nobody/history").json() == []


class TestRefresh:
    """Test the manual refresh endpoint."""

    def test_refresh_success(self, client, monkeypatch):
        """Test that the refresh result is returned."""
        async def fake_refresh():
            return {"success": True, "message": "Data refreshed successfully", "summary": {"reports": 2}}

        monkeypatch.setattr(endpoints, "trigger_manual_refresh", fake_refresh)
        response = client.post("/api/refresh")

        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_refresh_failure_is_500(self, client, monkeypatch):
        """Test that a failed refresh maps to a server error."""
        async def failing_refresh():
            raise RuntimeError("telemetry unavailable")

        monkeypatch.setattr(endpoints, "trigger_manual_refresh", failing_refresh)
        response = client.post("/api/refresh")

        assert response.status_code == 500
        assert "telemetry unavailable" in response.json()["detail"]
