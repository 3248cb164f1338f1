"""Tests for the radar cache API.

Tests use FastAPI TestClient over a real cache directory and a fake
acquirer that writes tiny PNGs, so no browser is started.
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from radarcache.api import ErrorResponse, HealthResponse, create_app
from radarcache.api.app import API_VERSION, RETRY_AFTER_SECONDS, validate_location
from radarcache.cache.models import Location, utc_now
from radarcache.cache.orchestrator import MSG_NO_CACHE, MSG_VALID
from radarcache.service import RadarCacheService


@pytest.fixture
def service(settings, acquirer_factory):
    """Service over the temporary cache with a fake acquirer."""
    return RadarCacheService(settings, acquirer=acquirer_factory())


@pytest.fixture
def client(service):
    """Test client with startup run but no background loops."""
    app = create_app(service=service, start_background=False)
    with TestClient(app) as client:
        yield client


def now_seconds():
    return utc_now().replace(microsecond=0)


class TestSchemas:
    """Tests for response models."""

    def test_error_response_optional_fields(self):
        """Retry hints are optional."""
        error = ErrorResponse(error="HTTP_404", message="Not found")
        assert error.model_dump(exclude_none=True) == {"error": "HTTP_404", "message": "Not found"}

    def test_health_response(self):
        health = HealthResponse(status="healthy", version="1.0.0", active_updates=0, timestamp=utc_now())
        assert health.status == "healthy"


class TestValidateLocation:
    """Tests for path parameter validation."""

    def test_valid(self):
        """Whitespace is trimmed."""
        assert validate_location(" Pomona ", "QLD ") == Location("Pomona", "QLD")

    @pytest.mark.parametrize("suburb,state", [
        ("", "QLD"),
        ("Pomona", " "),
        ("Pom..ona", "QLD"),
        ("Pomona\\x", "QLD"),
        ("Pomona", "XYZ"),
    ])
    def test_invalid(self, suburb, state):
        """Empty parts, path characters and unknown states are rejected."""
        from fastapi import HTTPException

        with pytest.raises(HTTPException) as exc_info:
            validate_location(suburb, state)
        assert exc_info.value.status_code == 400


class TestInfoEndpoints:
    """Tests for root and health endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["version"] == API_VERSION

    def test_health(self, client):
        """Health reports the number of in-flight updates."""
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["active_updates"] == 0


class TestCors:
    """Tests for CORS origins."""

    def test_configured_origins(self, settings_factory, acquirer_factory):
        """An app built around a service only allows the configured origins."""
        settings = settings_factory(api={"cors_origins": ["https://radar.example"]})
        service = RadarCacheService(settings, acquirer=acquirer_factory())

        with TestClient(create_app(service=service, start_background=False)) as client:
            allowed = client.get("/api/health", headers={"Origin": "https://radar.example"})
            other = client.get("/api/health", headers={"Origin": "https://elsewhere.example"})

        assert allowed.headers["access-control-allow-origin"] == "https://radar.example"
        assert "access-control-allow-origin" not in other.headers


class TestRadarEndpoint:
    """Tests for GET /api/radar/{suburb}/{state}."""

    def test_unknown_state(self, client):
        """Unknown states are a 400 with the error envelope."""
        response = client.get("/api/radar/Pomona/XYZ")
        assert response.status_code == 400
        assert response.json()["error"] == "HTTP_400"

    def test_nothing_cached(self, client, service):
        """First request: 404 with retry hints, and an update is started."""
        response = client.get("/api/radar/Pomona/QLD")

        assert response.status_code == 404
        data = response.json()
        assert data["retry_after"] == RETRY_AFTER_SECONDS
        assert data["refresh_endpoint"] == "/api/radar/Pomona/QLD/refresh"

        client.portal.call(service.orchestrator.wait_for_updates)
        assert len(service.acquirer.calls) == 1
        response = client.get("/api/radar/Pomona/QLD")
        assert response.status_code == 200
        assert len(response.json()["frames"]) == 7

    def test_valid_cache(self, client, service, location, cache_folder):
        """A fresh cache is served without triggering an update."""
        folder = cache_folder(location, now_seconds() - timedelta(minutes=1))

        response = client.get("/api/radar/Pomona/QLD")

        assert response.status_code == 200
        data = response.json()
        assert data["cache_folder"] == folder.name
        assert data["cache_is_valid"] is True
        assert data["is_updating"] is False
        assert [f["frame_index"] for f in data["frames"]] == list(range(7))
        assert data["frames"][0]["image_url"] == "/api/radar/Pomona/QLD/frame/0"
        assert service.acquirer.calls == []

    def test_stale_cache_served_while_updating(self, client, location, cache_folder):
        """A stale cache is still served and the response reports the update."""
        folder = cache_folder(location, now_seconds() - timedelta(hours=2))

        response = client.get("/api/radar/Pomona/QLD")

        assert response.status_code == 200
        data = response.json()
        assert data["cache_folder"] == folder.name
        assert data["cache_is_valid"] is False
        assert data["is_updating"] is True
        assert data["estimated_update_seconds"] == 53


    def test_failed_updates_annotated(self, settings, acquirer_factory, location, cache_folder):
        """When updates keep failing the old cache is still served, with the error."""
        folder = cache_folder(location, now_seconds() - timedelta(hours=2))
        service = RadarCacheService(settings, acquirer=acquirer_factory(fail=True))

        with TestClient(create_app(service=service, start_background=False)) as client:
            for _ in range(2):
                client.post("/api/radar/Pomona/QLD/refresh")
                client.portal.call(service.orchestrator.wait_for_updates)
            status = client.post("/api/radar/Pomona/QLD/refresh").json()
            client.portal.call(service.orchestrator.wait_for_updates)
            data = client.get("/api/radar/Pomona/QLD").json()

        assert status["last_error"] == "CaptureFrames: map did not load"
        assert status["consecutive_failures"] == 2
        assert data["cache_folder"] == folder.name
        assert data["last_error"] == "CaptureFrames: map did not load"
        assert data["consecutive_failures"] == 3
        assert data["last_error_at"] is not None


class TestFrameEndpoint:
    """Tests for frame images."""

    def test_frame_png(self, client, location, cache_folder):
        """Frames are served as PNG."""
        cache_folder(location, now_seconds() - timedelta(minutes=1))
        response = client.get("/api/radar/Pomona/QLD/frame/3")
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content.startswith(b"\x89PNG")

    @pytest.mark.parametrize("index", [-1, 7])
    def test_index_out_of_range(self, client, index):
        """Indices outside 0..frame_count-1 are a 400."""
        response = client.get(f"/api/radar/Pomona/QLD/frame/{index}")
        assert response.status_code == 400

    def test_not_cached(self, client):
        """A frame that is not cached is a 404."""
        response = client.get("/api/radar/Pomona/QLD/frame/0")
        assert response.status_code == 404

    def test_from_cache_folder(self, client, location, cache_folder):
        """Historical frames are served from the named folder."""
        base = now_seconds() - timedelta(hours=1)
        older = cache_folder(location, base)
        cache_folder(location, base + timedelta(minutes=5))

        response = client.get("/api/radar/Pomona/QLD/frame/0", params={"cacheFolder": older.name})
        assert response.status_code == 200

        response = client.get("/api/radar/Pomona/QLD/frame/0", params={"cacheFolder": "Pomona_QLD_19990101_000000"})
        assert response.status_code == 404


class TestMetadataEndpoint:
    """Tests for observation metadata."""

    def test_not_cached(self, client):
        """The 404 message points at the refresh endpoint."""
        response = client.get("/api/radar/Pomona/QLD/metadata")
        assert response.status_code == 404
        assert "POST /api/radar/Pomona/QLD/refresh" in response.json()["message"]

    def test_metadata(self, client, location, cache_folder):
        observed = now_seconds() - timedelta(minutes=3)
        cache_folder(location, now_seconds(), observation_time=observed)
        response = client.get("/api/radar/Pomona/QLD/metadata")
        assert response.status_code == 200
        assert response.json()["observation_time"].startswith(observed.strftime("%Y-%m-%dT%H:%M:%S"))


class TestHistoryEndpoints:
    """Tests for range and time series."""

    def test_range(self, client, location, cache_folder):
        """Oldest and newest complete folders with their span."""
        base = now_seconds() - timedelta(hours=1)
        oldest = cache_folder(location, base)
        newest = cache_folder(location, base + timedelta(minutes=10))

        data = client.get("/api/radar/Pomona/QLD/range").json()

        assert data["total_count"] == 2
        assert data["oldest"]["folder_name"] == oldest.name
        assert data["newest"]["folder_name"] == newest.name
        assert data["time_span_minutes"] == 10

    def test_range_empty(self, client):
        data = client.get("/api/radar/Pomona/QLD/range").json()
        assert data["total_count"] == 0
        assert data["oldest"] is None

    def test_timeseries(self, client, location, cache_folder):
        """Overlapping folders are deduplicated, newer copies winning."""
        base = now_seconds() - timedelta(hours=1)
        older = cache_folder(location, base)
        newer = cache_folder(location, base + timedelta(minutes=5))

        data = client.get("/api/radar/Pomona/QLD/timeseries").json()

        assert data["total_frames"] == 8
        assert [f["folder_name"] for f in data["cache_folders"]] == [older.name, newer.name]
        assert len(data["cache_folders"][0]["frames"]) == 1
        assert "cacheFolder=" in data["cache_folders"][1]["frames"][0]["image_url"]

    def test_timeseries_window(self, client, location, cache_folder):
        """Only folders inside the window contribute."""
        base = now_seconds() - timedelta(hours=1)
        cache_folder(location, base)
        cache_folder(location, base + timedelta(minutes=5))

        start = (base + timedelta(minutes=1)).isoformat()
        data = client.get("/api/radar/Pomona/QLD/timeseries", params={"startTime": start}).json()

        assert data["total_frames"] == 7
        assert len(data["cache_folders"]) == 1

    def test_timeseries_inverted_window(self, client):
        """startTime after endTime is a 400."""
        end = now_seconds()
        start = end + timedelta(hours=1)
        response = client.get(
            "/api/radar/Pomona/QLD/timeseries",
            params={"startTime": start.isoformat(), "endTime": end.isoformat()},
        )
        assert response.status_code == 400


class TestCacheEndpoints:
    """Tests for refresh and delete."""

    def test_refresh_valid_cache(self, client, location, cache_folder):
        """A valid cache is not refreshed."""
        cache_folder(location, now_seconds() - timedelta(minutes=1))
        data = client.post("/api/radar/Pomona/QLD/refresh").json()
        assert data["update_triggered"] is False
        assert data["message"] == MSG_VALID

    def test_refresh_triggers(self, client, service):
        """A missing cache is refreshed."""
        data = client.post("/api/radar/Pomona/QLD/refresh").json()
        assert data["update_triggered"] is True
        assert data["cache_exists"] is False
        assert data["message"] == MSG_NO_CACHE

        client.portal.call(service.orchestrator.wait_for_updates)
        assert len(service.acquirer.calls) == 1

    def test_delete(self, client, location, cache_folder, cache_dir):
        """Deleting removes every folder for the location."""
        cache_folder(location, now_seconds() - timedelta(minutes=1))
        response = client.delete("/api/radar/Pomona/QLD")
        assert response.status_code == 200
        assert not any(cache_dir.glob("Pomona_QLD_*"))

    def test_delete_nothing_cached(self, client):
        response = client.delete("/api/radar/Pomona/QLD")
        assert response.status_code == 404
