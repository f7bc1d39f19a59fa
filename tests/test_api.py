"""
API Integration Tests

Tests for the REST endpoints with the full application lifespan running
(road graph, routing service, corridor manager and scheduler).
"""

import pytest
from fastapi.testclient import TestClient

from greenroute.main import app

from conftest import make_intersections, make_square_segments


NETWORK = {
    "intersections": [node.model_dump() for node in make_intersections()],
    "segments": [seg.model_dump() for seg in make_square_segments()],
}


@pytest.fixture(scope="module")
def client():
    """Application client with the square network loaded"""
    with TestClient(app) as c:
        response = c.post("/api/network", json=NETWORK)
        assert response.status_code == 200
        yield c


# ============================================
# Root Endpoints
# ============================================

class TestRootEndpoints:
    """Test root and health endpoints"""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "GreenRoute"
        assert data["status"] == "operational"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["schedulerRunning"] is True
        assert data["snapshotVersion"] >= 1


# ============================================
# Network Endpoints
# ============================================

class TestNetworkEndpoints:
    """Test topology and telemetry endpoints"""

    def test_snapshot(self, client):
        response = client.get("/api/network/snapshot")

        assert response.status_code == 200
        assert response.json()["segments"] == 8
        assert response.json()["intersections"] == 4

    def test_invalid_network_rejected(self, client):
        """Test a bad network is refused and the old one stays"""
        bad = {
            "intersections": NETWORK["intersections"],
            "segments": NETWORK["segments"] + [{
                "id": "S-A-Z", "from_node": "A", "to_node": "Z",
                "length_m": 100, "speed_limit_kmh": 50, "capacity_vph": 600,
            }],
        }

        response = client.post("/api/network", json=bad)

        assert response.status_code == 422
        assert any("Z" in p for p in response.json()["detail"]["problems"])
        assert client.get("/api/network/snapshot").json()["segments"] == 8

    def test_segment_state(self, client):
        response = client.get("/api/network/segments/S-A-B")

        assert response.status_code == 200
        assert response.json()["segmentId"] == "S-A-B"

    def test_unknown_segment_state(self, client):
        assert client.get("/api/network/segments/S-X-Y").status_code == 404

    def test_congestion_telemetry(self, client):
        """Test applied and out-of-order observations are counted"""
        response = client.post("/api/telemetry/congestion", json={"updates": [
            {"segment_id": "S-C-D", "observed_load": 400, "congestion_cause": "roadworks"},
            {"segment_id": "S-C-D", "observed_load": 900, "timestamp": 0},
        ]})

        assert response.status_code == 200
        data = response.json()
        assert data["applied"] == 1
        assert data["ignored"] == 1

    def test_congestion_unknown_segment(self, client):
        response = client.post("/api/telemetry/congestion", json={"updates": [
            {"segment_id": "S-X-Y", "observed_load": 10},
        ]})

        assert response.status_code == 404

    def test_congestion_empty_batch(self, client):
        assert client.post("/api/telemetry/congestion", json={"updates": []}).status_code == 422


# ============================================
# Routing Endpoints
# ============================================

class TestRoutingEndpoints:
    """Test ordinary route requests"""

    def test_route(self, client):
        response = client.post("/api/routes?k=2", json={"request_id": "rq-api", "origin": "A", "destination": "C"})

        assert response.status_code == 200
        data = response.json()
        assert data["requestId"] == "rq-api"
        assert len(data["plans"]) == 2
        assert data["plans"][0]["node_ids"][0] == "A"
        assert data["partial"] is False

    def test_route_unknown_destination(self, client):
        response = client.post("/api/routes", json={"origin": "A", "destination": "Z"})

        assert response.status_code == 404

    def test_emergency_priority_rejected(self, client):
        response = client.post("/api/routes", json={"origin": "A", "destination": "C", "priority": "emergency"})

        assert response.status_code == 400

    def test_batch(self, client):
        """Test a confirmed batch assigns every request"""
        requests = [{"request_id": f"rq-b{i}", "origin": "A", "destination": "C"} for i in range(3)]

        response = client.post("/api/routes/batch", json={"requests": requests, "confirm": True})

        assert response.status_code == 200
        assert set(response.json()["assignments"]) == {"rq-b0", "rq-b1", "rq-b2"}


# ============================================
# Emergency Endpoints
# ============================================

class TestEmergencyEndpoints:
    """Test emergency corridor endpoints"""

    def test_detect_position_cancel(self, client):
        """Test the corridor lifecycle over HTTP"""
        response = client.post("/api/emergency/detect", json={
            "vehicle_id": "AMB-API",
            "vehicle_type": "AMBULANCE",
            "location": {"intersection_id": "A"},
            "destination": "C",
            "priority_rank": 1,
        })
        assert response.status_code == 200
        event = response.json()
        assert event["state"] == "CORRIDOR_ACTIVE"
        assert event["route"] == ["A", "B", "C"]

        response = client.post("/api/emergency/position", json={
            "vehicle_id": "AMB-API",
            "location": {"intersection_id": "B"},
        })
        assert response.status_code == 200
        assert response.json()["positionIndex"] == 1

        active = client.get("/api/emergency/events").json()["active"]
        assert [e["eventId"] for e in active] == [event["eventId"]]

        response = client.post(f"/api/emergency/{event['eventId']}/cancel", json={"reason": "test complete"})
        assert response.status_code == 200
        assert response.json()["state"] == "RESTORED"

        response = client.get(f"/api/emergency/{event['eventId']}")
        assert response.status_code == 200
        assert response.json()["restoreReason"] == "test complete"
        assert response.json()["history"][-1]["action"] == "restored"

    def test_unknown_event(self, client):
        assert client.get("/api/emergency/EMG-99999").status_code == 404
        assert client.post("/api/emergency/EMG-99999/cancel").status_code == 404

    def test_position_for_unknown_vehicle(self, client):
        response = client.post("/api/emergency/position", json={
            "vehicle_id": "NOBODY",
            "location": {"intersection_id": "A"},
        })

        assert response.status_code == 404

    def test_statistics(self, client):
        response = client.get("/api/emergency/statistics")

        assert response.status_code == 200
        assert "corridorsActivated" in response.json()


# ============================================
# System Endpoints
# ============================================

class TestSystemEndpoints:
    """Test scheduler and analytics endpoints"""

    def test_scheduler_status(self, client):
        response = client.get("/api/scheduler/status")

        assert response.status_code == 200
        assert response.json()["maxInterval"] <= 45

    def test_topology_load_announced(self, client):
        """Test network loads reach the publish listeners"""
        client.post("/api/network", json=NETWORK)

        status = client.get("/api/scheduler/status").json()
        records = client.get("/api/analytics/recent?name=recalculation&limit=50").json()["records"]

        assert status["announced"] >= 2
        assert any(r["payload"]["reason"] == "topology" for r in records)

    def test_recalculate(self, client):
        before = client.get("/api/network/snapshot").json()["version"]

        response = client.post("/api/scheduler/recalculate?reason=test")

        assert response.status_code == 200
        assert response.json()["snapshot"]["version"] > before

    def test_recent_analytics(self, client):
        response = client.get("/api/analytics/recent?name=recalculation&limit=5")

        assert response.status_code == 200
        records = response.json()["records"]
        assert records
        assert all(r["name"] == "recalculation" for r in records)
