"""HTTP service: session lifecycle, ingestion, configuration and feedback queries"""
import time

import pytest
from fastapi.testclient import TestClient

from posture_feedback import sessions
from posture_feedback.main import app

SHOULDERS = [
    {"name": "LEFT_SHOULDER", "x": 0.4, "y": 0.6, "visibility": 1.0},
    {"name": "RIGHT_SHOULDER", "x": 0.6, "y": 0.6, "visibility": 1.0},
]


def keypoints(ear_x=0.45, ear_visibility=1.0):
    return SHOULDERS + [{"name": "LEFT_EAR", "x": ear_x, "y": 0.5, "visibility": ear_visibility}]


@pytest.fixture
def client():
    with TestClient(app) as client:
        yield client
    assert sessions.active_sessions == {}


@pytest.fixture
def session_id(client):
    response = client.post("/sessions/start", json={"settings": {"sound": False}})
    assert response.status_code == 200
    return response.json()["session_id"]


def post_sample(client, session_id, classification, timestamp, angle=-8.0):
    return client.post(f"/sessions/{session_id}/samples", json={
        "angle": angle,
        "classification": classification,
        "confidence": 0.9,
        "timestamp": timestamp
    })


def test_root_and_health(client):
    assert client.get("/").json()["name"] == "Posture Feedback API"
    health = client.get("/health").json()
    assert health["status"] == "healthy"


def test_start_session_applies_partial_configuration(client):
    response = client.post("/sessions/start", json={
        "side_selection": "left",
        "thresholds": {"mild": -4, "severe": -2},
        "profile": {"sensitivity": 99, "preferences": {"exercise_suggestions": False}},
        "settings": {"browser": False}
    })
    body = response.json()

    assert response.status_code == 200
    assert body["session_id"].startswith("session_")
    assert body["thresholds"] == {"mild": -2, "severe": -4}
    assert body["profile"]["sensitivity"] == 10
    assert body["profile"]["preferences"]["exercise_suggestions"] is False
    assert body["profile"]["preferences"]["positive_reinforcement"] is True
    assert body["settings"]["system_notifications"] is False


def test_frame_is_analyzed(client, session_id):
    response = client.post(f"/sessions/{session_id}/frames", json={"keypoints": keypoints(), "timestamp": 100.0})
    body = response.json()

    assert response.status_code == 200
    assert body["sample"]["angle"] == pytest.approx(26.565, abs=0.01)
    assert body["sample"]["classification"] == "normal"
    assert body["sample"]["confidence"] == pytest.approx(1.0)
    assert body["message"] is None
    assert body["level"] == "none"


def test_landmark_frame(client, session_id):
    landmarks = [None] * 33
    landmarks[7] = {"x": 0.52, "y": 0.5, "visibility": 0.9}
    landmarks[11] = {"x": 0.4, "y": 0.6, "visibility": 0.9}
    landmarks[12] = {"x": 0.6, "y": 0.6, "visibility": 0.9}

    body = client.post(f"/sessions/{session_id}/frames", json={"landmarks": landmarks}).json()

    assert body["sample"]["classification"] == "severe"
    assert body["message"]["level"] == "gentle"


def test_occluded_frame_is_unmeasurable(client, session_id):
    body = client.post(f"/sessions/{session_id}/frames",
                       json={"keypoints": keypoints(ear_visibility=0.1)}).json()

    assert body["sample"]["unmeasurable_reason"] == "no_ear"
    assert client.get(f"/sessions/{session_id}/analytics").json()["unmeasurable_samples"] == 1


def test_frame_without_points_is_rejected(client, session_id):
    assert client.post(f"/sessions/{session_id}/frames", json={}).status_code == 400


def test_unknown_session_is_404(client):
    assert client.get("/sessions/session_missing/analytics").status_code == 404
    assert client.post("/sessions/session_missing/frames", json={"keypoints": keypoints()}).status_code == 404
    assert client.delete("/sessions/session_missing/messages").status_code == 404


def test_severe_samples_fire_and_publish_events(client, session_id):
    now = time.time()
    first = post_sample(client, session_id, "severe", now).json()
    second = post_sample(client, session_id, "severe", now + 5).json()

    assert first["message"]["level"] == "gentle"
    assert first["message"]["type"] == "info"
    assert second["message"] is None

    analytics = client.get(f"/sessions/{session_id}/analytics").json()
    assert analytics["total_alerts"] == 1
    assert analytics["samples_processed"] == 2

    events = [e["event"] for e in client.get(f"/sessions/{session_id}/events").json()["events"]]
    assert events == ["message", "feedback"]


def test_messages_can_be_dismissed(client, session_id):
    message = post_sample(client, session_id, "severe", time.time()).json()["message"]

    active = client.get(f"/sessions/{session_id}/messages").json()["messages"]
    assert [m["id"] for m in active] == [message["id"]]

    first = client.delete(f"/sessions/{session_id}/messages/{message['id']}").json()
    again = client.delete(f"/sessions/{session_id}/messages/{message['id']}").json()

    assert first == {"success": True, "dismissed": True}
    assert again == {"success": True, "dismissed": False}
    assert client.get(f"/sessions/{session_id}/analytics").json()["alerts_acknowledged"] == 1
    assert client.delete(f"/sessions/{session_id}/messages").json()["dismissed"] == 0


def test_detection_update_swaps_inverted_thresholds(client, session_id):
    body = client.put(f"/sessions/{session_id}/detection",
                      json={"side_selection": "right", "mild": -5}).json()

    assert body["side_selection"] == "right"
    assert body["thresholds"] == {"mild": -3, "severe": -5}


def test_settings_and_profile_updates(client, session_id):
    settings = client.put(f"/sessions/{session_id}/settings", json={"volume": -10, "browser": False}).json()
    profile = client.put(f"/sessions/{session_id}/profile",
                         json={"durations": {"break_reminder": 30}}).json()

    assert settings["settings"]["volume"] == 0
    assert settings["settings"]["system_notifications"] is False
    assert profile["profile"]["durations"]["break_reminder"] == 30
    assert profile["profile"]["durations"]["mild_duration"] == 300


def test_invalid_profile_is_rejected(client, session_id):
    response = client.put(f"/sessions/{session_id}/profile", json={"sensitivity": "very"})
    assert response.status_code == 400


def test_snooze_reports_until(client, session_id):
    before = time.time()
    body = client.post(f"/sessions/{session_id}/snooze", json={"minutes": 5}).json()

    assert body["snoozed_until"] >= before + 300
    state = client.get(f"/sessions/{session_id}/state").json()
    assert state["engine"]["snoozed"] is True

    fired = post_sample(client, session_id, "severe", time.time()).json()
    assert fired["message"] is not None
    assert client.get(f"/sessions/{session_id}/messages").json()["messages"] == []


def test_stop_then_samples_are_ignored(client, session_id):
    stopped = client.post(f"/sessions/{session_id}/stop").json()
    again = client.post(f"/sessions/{session_id}/stop").json()

    assert stopped["success"] is True
    assert stopped["analytics"]["total_alerts"] == 0
    assert again["success"] is False

    body = post_sample(client, session_id, "severe", time.time()).json()
    assert body["active"] is False
    assert body["message"] is None
    assert client.post(f"/sessions/{session_id}/snooze", json={}).status_code == 400


def test_reset_clears_analytics(client, session_id):
    post_sample(client, session_id, "severe", time.time())

    body = client.post(f"/sessions/{session_id}/reset").json()

    assert body["state"]["current_level"] == "none"
    assert body["state"]["is_active"] is True
    assert client.get(f"/sessions/{session_id}/analytics").json()["total_alerts"] == 0
