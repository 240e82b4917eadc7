"""
Tests for the HTTP surface: settings, pipeline control, overlay inspection and health.
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock

import numpy as np
import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from shade.application.orchestration.pipeline_coordinator import CaptureState
from shade.dependencies import get_pipeline_coordinator
from shade.domains.visualization.entities.pixelated_region import OverlayPatch
from shade.main import app

from conftest import solid_frame

BASE_URL = "/api/v1"


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def test_root_and_health(client):
    assert "Welcome" in client.get("/").json()["message"]

    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["pipeline_running"] is False
    assert health["surface_attached"] is True


def test_get_settings_returns_defaults(client):
    response = client.get(f"{BASE_URL}/settings")

    assert response.status_code == 200
    body = response.json()
    assert body["full_scene_mode"] is False
    assert set(body) == {"confidence_percent", "pixelation_level", "opacity_percent", "full_scene_mode", "performance_mode"}


def test_patch_settings_updates_only_given_fields(client):
    before = client.get(f"{BASE_URL}/settings").json()

    response = client.patch(f"{BASE_URL}/settings", json={"confidence_percent": 80, "full_scene_mode": True})

    assert response.status_code == 200
    body = response.json()
    assert body["confidence_percent"] == 80.0
    assert body["full_scene_mode"] is True
    assert body["opacity_percent"] == before["opacity_percent"]


@pytest.mark.parametrize("payload", [{"confidence_percent": 150}, {"pixelation_level": 1}, {"opacity_percent": -5}])
def test_patch_settings_rejects_out_of_range(client, payload):
    response = client.patch(f"{BASE_URL}/settings", json=payload)

    assert response.status_code == 422


def test_pipeline_status_when_idle(client):
    response = client.get(f"{BASE_URL}/pipeline/status")

    assert response.status_code == 200
    body = response.json()
    assert body["capture_state"] == "idle"
    assert body["detector_ready"] is False
    assert body["presenter"]["surface_attached"] is True


def test_visibility_and_clear(client):
    response = client.post(f"{BASE_URL}/pipeline/visibility", json={"visible": False})
    assert response.status_code == 200
    assert client.get(f"{BASE_URL}/pipeline/status").json()["target_visible"] is False

    response = client.post(f"{BASE_URL}/pipeline/clear")
    assert response.status_code == 200
    assert response.json()["success"] is True


def test_start_failure_maps_to_503(client, mocker):
    coordinator = app.state.pipeline_coordinator
    mocker.patch.object(coordinator, "start", AsyncMock(return_value=False))

    response = client.post(f"{BASE_URL}/pipeline/start")

    assert response.status_code == 503


def test_start_while_running_conflicts(client, mocker):
    coordinator = app.state.pipeline_coordinator
    mocker.patch.object(coordinator, "capture_state", CaptureState.RUNNING)

    response = client.post(f"{BASE_URL}/pipeline/start")

    assert response.status_code == 409


def test_stop_is_safe_when_idle(client):
    response = client.post(f"{BASE_URL}/pipeline/stop")

    assert response.status_code == 200
    assert response.json()["capture_state"] == "idle"


def test_overlay_state_and_patch_image(client):
    surface = app.state.overlay_surface
    assert client.get(f"{BASE_URL}/overlay").json()["patches"] == []
    assert client.get(f"{BASE_URL}/overlay/patches/0.png").status_code == 404

    content = np.ascontiguousarray(solid_frame(4, 6, (255, 0, 0)))
    surface.render([OverlayPatch(content, (10.0, 20.0, 110.0, 170.0), 200)])

    state = client.get(f"{BASE_URL}/overlay").json()
    assert (state["surface_width"], state["surface_height"]) == surface.size
    assert state["patches"][0]["bounds"] == [10.0, 20.0, 110.0, 170.0]
    assert state["patches"][0]["content_width"] == 4
    assert state["patches"][0]["opacity"] == 200

    image = client.get(f"{BASE_URL}/overlay/patches/0.png")
    assert image.status_code == 200
    assert image.headers["content-type"] == "image/png"
    assert image.content[:8] == b"\x89PNG\r\n\x1a\n"


def test_surface_resize(client):
    response = client.put(f"{BASE_URL}/overlay/surface", json={"width": 720, "height": 1600})

    assert response.status_code == 200
    assert (response.json()["surface_width"], response.json()["surface_height"]) == (720, 1600)

    assert client.put(f"{BASE_URL}/overlay/surface", json={"width": 0, "height": 1600}).status_code == 422


def test_missing_component_is_service_unavailable():
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))

    with pytest.raises(HTTPException) as exc_info:
        get_pipeline_coordinator(request)

    assert exc_info.value.status_code == 503
