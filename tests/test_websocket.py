"""Tests for the dashboard WebSocket feeds."""


def test_department_feed_greets(client):
    with client.websocket_connect("/ws/emergency") as ws:
        data = ws.receive_json()
        assert data["type"] == "connected"


def test_case_feed_rejects_unknown_case(client):
    """Test WebSocket reports an error for a non-existent case."""
    with client.websocket_connect("/ws/emergency/nonexistent-case-id") as ws:
        data = ws.receive_json()
        assert data["type"] == "error"
        assert "not found" in data["message"].lower()


def test_case_feed_sends_snapshot(client):
    resp = client.post("/api/emergency/cases", json={
        "patient_id": "P010",
        "chief_complaint": "Fall",
        "patient_age": 81,
        "symptoms": ["confusion"],
    })
    case_id = resp.json()["id"]

    with client.websocket_connect(f"/ws/emergency/{case_id}") as ws:
        data = ws.receive_json()
        assert data["type"] == "snapshot"
        assert data["case"]["id"] == case_id
        assert data["case"]["priority"] == "Medium"
