#!/usr/bin/env python3
"""REST and WebSocket endpoints of the coach service."""

import logging
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))
sys.path.insert(0, str(Path(__file__).resolve().parent))

import main
from main import app
from core.config import settings
from shared.utils import parse_log_level
from pose_fixtures import frame_payload, frontal_frame, invisible_frame, profile_squat_frame, squat_trace_frames

API = "/api/coach"


@pytest.fixture
def client():
    return TestClient(app)


def _start(client, exercise="squats", **extra):
    response = client.post(f"{API}/session/start", json={"user_id": "user-1", "exercise_type": exercise, **extra})
    assert response.status_code == 200, response.text
    return response.json()["session_id"]


def _frame_body(frame):
    return {"landmarks": frame_payload(frame), "timestamp_ms": frame.timestamp_ms}


# ---------------------------------------------------------------------------
# 1. Service endpoints
# ---------------------------------------------------------------------------

class TestServiceEndpoints:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["service"] == "formcoach-api"

    def test_exercises(self, client):
        body = client.get(f"{API}/exercises").json()
        assert body["total"] == 8
        assert {"rules", "scientific"} == set(body["detection_modes"])

    def test_log_level_comes_from_settings(self):
        assert main.LOG_LEVEL == parse_log_level(settings.LOG_LEVEL)
        assert logging.getLogger("formcoach.main").level == main.LOG_LEVEL
        assert parse_log_level("warning") == logging.WARNING
        assert parse_log_level("loud") == logging.INFO


# ---------------------------------------------------------------------------
# 2. Session lifecycle
# ---------------------------------------------------------------------------

class TestSessionEndpoints:
    def test_invalid_exercise(self, client):
        response = client.post(f"{API}/session/start", json={"user_id": "u", "exercise_type": "yoga"})
        assert response.status_code == 400

    def test_invalid_detection_mode(self, client):
        response = client.post(
            f"{API}/session/start",
            json={"user_id": "u", "exercise_type": "squats", "detection_mode": "magic"},
        )
        assert response.status_code == 400

    def test_unknown_session(self, client):
        response = client.post(f"{API}/session/missing/frame", json=_frame_body(profile_squat_frame(170)))
        assert response.status_code == 404
        assert client.get(f"{API}/session/missing/stats").status_code == 404

    def test_wrong_landmark_count(self, client):
        session_id = _start(client)
        body = {"landmarks": frame_payload(profile_squat_frame(170))[:20], "timestamp_ms": 0}
        assert client.post(f"{API}/session/{session_id}/frame", json=body).status_code == 400

    def test_repetition_over_rest(self, client):
        session_id = _start(client, target_reps=1)
        last = None
        for frame in squat_trace_frames():
            response = client.post(f"{API}/session/{session_id}/frame", json=_frame_body(frame))
            assert response.status_code == 200
            last = response.json()
        assert last["repetition_count"] == 1
        assert last["repetition_completed"]
        assert last["target_reached"]
        assert last["phase"] == "top"

        readiness = client.get(f"{API}/session/{session_id}/readiness").json()
        assert readiness["readiness"] == "exercising"
        assert readiness["message"]

        stats = client.get(f"{API}/session/{session_id}/stats").json()
        assert stats["stats"]["repetitions"] == 1
        assert stats["session"]["total_reps"] == 1

        report = client.get(f"{API}/session/{session_id}/report").json()
        assert report["total_frames"] == 30

        done = client.post(f"{API}/session/{session_id}/complete").json()
        assert done["status"] == "completed"
        assert done["result"]["summary"]["total_reps"] == 1
        assert client.get(f"{API}/session/{session_id}/readiness").status_code == 404

    def test_reset(self, client):
        session_id = _start(client)
        for frame in squat_trace_frames():
            client.post(f"{API}/session/{session_id}/frame", json=_frame_body(frame))
        assert client.post(f"{API}/session/{session_id}/reset").json()["status"] == "reset"
        stats = client.get(f"{API}/session/{session_id}/stats").json()["stats"]
        assert stats["repetitions"] == 0
        assert stats["readiness"] == "not_ready"

    def test_precomputed_angles_are_accepted(self, client):
        session_id = _start(client)
        body = _frame_body(profile_squat_frame(170))
        body["angles"] = {"left_knee_angle": 170.0, "right_knee_angle": 170.0, "spine_angle": 90.0}
        response = client.post(f"{API}/session/{session_id}/frame", json=body)
        assert response.status_code == 200
        assert response.json()["readiness"] == "getting_ready"

    def test_unknown_angle_name_is_rejected(self, client):
        session_id = _start(client)
        body = _frame_body(profile_squat_frame(170))
        body["angles"] = {"tail_angle": 10.0}
        assert client.post(f"{API}/session/{session_id}/frame", json=body).status_code == 400

    def test_frames_without_timestamps_use_server_time(self, client):
        session_id = _start(client)
        body = {"landmarks": frame_payload(frontal_frame())}
        first = client.post(f"{API}/session/{session_id}/frame", json=body)
        assert first.status_code == 200
        errors = first.json()["errors"]
        assert [e["type"] for e in errors] == ["poor_alignment"]
        assert errors[0]["timestamp_ms"] > 0, "Untimed frames are stamped with the server clock"
        second = client.post(f"{API}/session/{session_id}/frame", json=body).json()
        assert second["errors"] == [], "The alignment cue is still cooling down"


# ---------------------------------------------------------------------------
# 3. WebSocket stream
# ---------------------------------------------------------------------------

class TestWebSocket:
    def test_unknown_session(self, client):
        with client.websocket_connect(f"{API}/ws/session/missing") as ws:
            assert ws.receive_json()["type"] == "ERROR"

    def test_stream(self, client):
        session_id = _start(client)
        with client.websocket_connect(f"{API}/ws/session/{session_id}") as ws:
            assert ws.receive_json()["type"] == "SESSION_STARTED"

            ws.send_json(_frame_body(profile_squat_frame(170)))
            result = ws.receive_json()
            assert result["type"] == "FRAME_RESULT"
            assert result["readiness"] == "getting_ready"
            changed = ws.receive_json()
            assert changed["type"] == "READINESS_CHANGED"
            assert changed["readiness"] == "getting_ready"

            ws.send_json({"landmarks": [], "timestamp_ms": 33})
            assert ws.receive_json()["type"] == "ERROR"

            ws.send_json({"type": "RESET"})
            assert ws.receive_json()["status"] == "reset"

            ws.send_json(_frame_body(invisible_frame(66)))
            result = ws.receive_json()
            assert result["type"] == "FRAME_RESULT"
            assert result["quality_score"] == 0
