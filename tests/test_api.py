"""
test_api.py — HTTP and WebSocket surface.

Each test builds its own application on a fresh SQLite file with a recording
SMS transport. Rows are seeded through the app's own storage on the client's
event loop.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

from functools import partial

import pytest
from fastapi.testclient import TestClient

from backend.app.main import create_app

from tests.fakes import RecordingTransport


class _Api:
    """TestClient plus seeding helpers bound to the app under test."""

    def __init__(self, client: TestClient, app, transport: RecordingTransport):
        self.client = client
        self.transport = transport
        self.storage = app.state.storage

    def seed(self, method, **fields):
        return self.client.portal.call(partial(getattr(self.storage, method), **fields))

    def user(self, **fields):
        return self.seed("create_user", **fields)

    @staticmethod
    def as_user(user):
        return {"X-User-Id": user.id}


@pytest.fixture
def api(database_url):
    transport = RecordingTransport()
    app = create_app(database_url=database_url, transport=transport)
    with TestClient(app) as client:
        yield _Api(client, app, transport)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Health & Directory
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:

    def test_live(self, api):
        assert api.client.get("/health/live").json() == {"status": "alive"}

    def test_ready_reports_components(self, api):
        response = api.client.get("/health/ready")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        names = {c["name"] for c in body["components"]}
        assert names == {"database", "sms_transport", "realtime_hub"}

    def test_request_id_header(self, api):
        response = api.client.get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"
        assert "X-Process-Time" in response.headers


class TestVillages:

    def test_list_villages(self, api):
        api.seed("create_village", name="Pedoulas", district="Nicosia")
        api.seed("create_village", name="Kalopanagiotis", district="Nicosia")

        names = [v["name"] for v in api.client.get("/api/v1/villages").json()]

        assert names == ["Kalopanagiotis", "Pedoulas"]


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Authentication
# ═══════════════════════════════════════════════════════════════════════════

class TestAuthentication:

    def test_missing_header(self, api):
        response = api.client.get("/api/v1/alerts")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHENTICATED"

    def test_unknown_user(self, api):
        response = api.client.get("/api/v1/alerts", headers={"X-User-Id": "ghost"})
        assert response.status_code == 401


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertRoutes:

    def test_resident_gets_403_and_nothing_happens(self, api):
        resident = api.user(village_id="V1", phone="+35799000001", phone_verified=True)

        with api.client.websocket_connect("/ws") as ws:
            assert ws.receive_json()["type"] == "connected"
            response = api.client.post(
                "/api/v1/alerts",
                json={"type": "warning", "title": "T", "message": "M",
                      "target_villages": ["V1"], "send_sms": True},
                headers=api.as_user(resident),
            )
            ws.send_text("ping")
            # the next frame is the pong, not an alert
            assert ws.receive_json()["type"] == "pong"

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"
        assert api.transport.sent == []
        assert api.client.get("/api/v1/user/alerts", headers=api.as_user(resident)).json() == []

    def test_create_alert_pushes_event(self, api):
        admin = api.user(village_id="V1", phone="+35799000001", phone_verified=True,
                         is_village_admin=True)
        resident = api.user(village_id="V1", phone="+35799000002", phone_verified=False)

        with api.client.websocket_connect("/ws") as ws:
            ws.receive_json()
            response = api.client.post(
                "/api/v1/alerts",
                json={"type": "warning", "title": "Flood", "message": "Flood warning",
                      "target_villages": ["V1", "V2"], "send_sms": True},
                headers=api.as_user(admin),
            )
            event = ws.receive_json()

        assert response.status_code == 200
        body = response.json()
        assert body["alert"]["target_villages"] == ["V1"]
        assert body["recipient_count"] == 2
        assert body["deliveries_recorded"] == 2
        assert body["dispatch"]["status"] == "partially_sent"
        assert body["sms_alert"]["delivery_status"] == "partially_sent"
        assert api.transport.sent == [("+35799000001", "Flood warning")]

        assert event["type"] == "alert_created"
        assert event["data"]["alert"]["id"] == body["alert"]["id"]
        assert sorted(event["data"]["target_users"]) == sorted([admin.id, resident.id])

    def test_validation_error_body(self, api):
        admin = api.user(village_id="V1", is_village_admin=True)
        response = api.client.post(
            "/api/v1/alerts",
            json={"type": "info", "title": "T", "message": "x" * 281},
            headers=api.as_user(admin),
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["field"] == "message"

    def test_read_and_resolve(self, api):
        admin = api.user(village_id="V1", is_village_admin=True)
        resident = api.user(village_id="V1")
        created = api.client.post(
            "/api/v1/alerts",
            json={"type": "info", "title": "Water", "message": "Mains off until 6pm"},
            headers=api.as_user(admin),
        ).json()
        alert_id = created["alert"]["id"]

        listed = api.client.get("/api/v1/alerts", headers=api.as_user(resident)).json()
        assert [a["id"] for a in listed] == [alert_id]

        first = api.client.patch(f"/api/v1/alerts/{alert_id}/read", headers=api.as_user(resident))
        second = api.client.patch(f"/api/v1/alerts/{alert_id}/read", headers=api.as_user(resident))
        assert first.json() == {"alert_id": alert_id, "updated": True}
        assert second.json()["updated"] is False

        [row] = api.client.get("/api/v1/user/alerts", headers=api.as_user(resident)).json()
        assert row["read_at"] is not None

        resolved = api.client.patch(f"/api/v1/alerts/{alert_id}/resolve", headers=api.as_user(admin))
        assert resolved.json()["status"] == "resolved"
        again = api.client.patch(f"/api/v1/alerts/{alert_id}/resolve", headers=api.as_user(admin))
        assert again.status_code == 409

        assert api.client.get("/api/v1/alerts", headers=api.as_user(resident)).json() == []


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: SMS Alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestSmsAlertRoutes:

    def test_send_and_list(self, api):
        admin = api.user(village_id="V1", phone="+35799000001", phone_verified=True,
                         is_village_admin=True)

        sent = api.client.post(
            "/api/v1/sms-alerts",
            json={"message": "Road closed", "priority": "urgent"},
            headers=api.as_user(admin),
        )
        assert sent.status_code == 200
        assert sent.json()["sms_alert"]["delivery_status"] == "sent"

        [listed] = api.client.get("/api/v1/sms-alerts", headers=api.as_user(admin)).json()
        assert listed["message"] == "Road closed"

    def test_service_status(self, api):
        admin = api.user(village_id="V1", is_village_admin=True)
        status = api.client.get("/api/v1/sms-alerts/service-status", headers=api.as_user(admin))
        assert status.json()["provider"] == "recording"

    def test_service_status_is_admin_only(self, api):
        resident = api.user(village_id="V1")
        status = api.client.get("/api/v1/sms-alerts/service-status", headers=api.as_user(resident))
        assert status.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Emergency Pins
# ═══════════════════════════════════════════════════════════════════════════

class TestEmergencyPinRoutes:

    def test_unverified_report_is_rejected_without_event(self, api):
        unverified = api.user(village_id="V1", phone="+35799000002", phone_verified=False)

        with api.client.websocket_connect("/ws") as ws:
            ws.receive_json()
            response = api.client.post(
                "/api/v1/emergency-pins",
                json={"type": "fire", "latitude": 34.9, "longitude": 32.9},
                headers=api.as_user(unverified),
            )
            ws.send_text("ping")
            assert ws.receive_json()["type"] == "pong"

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "PHONE_NOT_VERIFIED"
        assert api.client.get("/api/v1/emergency-pins").json() == []

    def test_pin_lifecycle(self, api):
        reporter = api.user(village_id="V1", phone="+35799000001", phone_verified=True)

        with api.client.websocket_connect("/ws") as ws:
            ws.receive_json()
            created = api.client.post(
                "/api/v1/emergency-pins",
                json={"type": "fire", "latitude": 34.9167, "longitude": 32.8833},
                headers=api.as_user(reporter),
            )
            pin_id = created.json()["id"]
            assert ws.receive_json()["type"] == "emergency_pin_created"

            updated = api.client.patch(
                f"/api/v1/emergency-pins/{pin_id}/status",
                json={"status": "resolved"},
                headers=api.as_user(reporter),
            )
            assert ws.receive_json()["type"] == "emergency_pin_updated"

            deleted = api.client.delete(f"/api/v1/emergency-pins/{pin_id}",
                                        headers=api.as_user(reporter))
            assert ws.receive_json() == {"type": "emergency_pin_deleted", "data": {"id": pin_id}}

        assert created.status_code == 201
        assert created.json()["latitude"] == "34.91670000"
        assert updated.json()["status"] == "resolved"
        assert deleted.status_code == 204
        assert api.client.get("/api/v1/emergency-pins").json() == []

    def test_update_unknown_pin(self, api):
        reporter = api.user(village_id="V1", phone_verified=True)
        response = api.client.patch(
            "/api/v1/emergency-pins/missing/status",
            json={"status": "resolved"},
            headers=api.as_user(reporter),
        )
        assert response.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Section 6: Account
# ═══════════════════════════════════════════════════════════════════════════

class TestAccountRoutes:

    def test_current_user(self, api):
        resident = api.user(first_name="Eleni")
        body = api.client.get("/api/v1/auth/user", headers=api.as_user(resident)).json()
        assert body["id"] == resident.id
        assert "phone_verification_code" not in body

    def test_joining_a_village_brings_its_alerts(self, api):
        village = api.seed("create_village", name="Pedoulas", district="Nicosia")
        admin = api.user(village_id=village.id, phone="+35799000001", phone_verified=True,
                         is_village_admin=True)
        resident = api.user()

        joined = api.client.put(
            "/api/v1/user/profile",
            json={"village_id": village.id, "first_name": "Eleni"},
            headers=api.as_user(resident),
        )
        api.client.post(
            "/api/v1/alerts",
            json={"type": "warning", "title": "Flood", "message": "River rising"},
            headers=api.as_user(admin),
        )

        assert joined.status_code == 200
        assert joined.json()["village_id"] == village.id
        alerts = api.client.get("/api/v1/alerts", headers=api.as_user(resident)).json()
        assert [a["title"] for a in alerts] == ["Flood"]

    def test_unknown_village_is_422(self, api):
        resident = api.user()
        response = api.client.put("/api/v1/user/profile", json={"village_id": "nowhere"},
                                  headers=api.as_user(resident))
        assert response.status_code == 422
        assert response.json()["error"]["details"]["field"] == "village_id"

    def test_admin_flags_cannot_be_set(self, api):
        resident = api.user()
        api.client.put("/api/v1/user/profile", json={"is_system_admin": True},
                       headers=api.as_user(resident))
        body = api.client.get("/api/v1/auth/user", headers=api.as_user(resident)).json()
        assert body["is_system_admin"] is False

    def test_phone_verification_flow(self, api):
        resident = api.user()

        sent = api.client.post("/api/v1/auth/send-verification", json={"phone": "+35799123456"},
                               headers=api.as_user(resident))
        [(phone, message)] = api.transport.sent
        code = next(word for word in message.replace(".", " ").split() if word.isdigit())
        wrong = api.client.post("/api/v1/auth/verify-phone", json={"code": "x"},
                                headers=api.as_user(resident))
        right = api.client.post("/api/v1/auth/verify-phone", json={"code": code},
                                headers=api.as_user(resident))

        assert sent.status_code == 200
        assert sent.json()["phone"] == phone == "+35799123456"
        assert wrong.status_code == 422
        assert right.status_code == 200
        assert right.json()["phone_verified"] is True

        # a verified resident may now report incidents
        reported = api.client.post(
            "/api/v1/emergency-pins",
            json={"type": "smoke", "latitude": 34.9, "longitude": 32.8},
            headers=api.as_user(resident),
        )
        assert reported.status_code == 201

    def test_send_verification_transport_failure(self, api):
        resident = api.user()
        api.transport.fail_numbers.add("+35799123456")
        response = api.client.post("/api/v1/auth/send-verification", json={"phone": "+35799123456"},
                                   headers=api.as_user(resident))
        assert response.status_code == 502
        assert response.json()["error"]["code"] == "EXTERNAL_SERVICE_ERROR"


# ═══════════════════════════════════════════════════════════════════════════
# Section 7: Emergency Services
# ═══════════════════════════════════════════════════════════════════════════

class TestEmergencyServiceRoutes:

    def test_directory_and_call_log(self, api):
        system = api.user(is_system_admin=True)
        resident = api.user()

        added = api.client.post(
            "/api/v1/emergency-services",
            json={"name": "Emergency Services", "type": "general", "phone": "112", "is_primary": True},
            headers=api.as_user(system),
        )
        service_id = added.json()["id"]
        directory = api.client.get("/api/v1/emergency-services").json()
        logged = api.client.post(
            "/api/v1/emergency-services/call",
            json={"service_id": service_id, "latitude": 34.9, "longitude": 32.8},
            headers=api.as_user(resident),
        )
        history = api.client.get("/api/v1/emergency-services/calls",
                                 headers=api.as_user(resident)).json()

        assert added.status_code == 201
        assert [s["id"] for s in directory] == [service_id]
        assert logged.status_code == 201
        assert logged.json()["user_location"] == {"lat": 34.9, "lng": 32.8}
        assert [c["service_id"] for c in history] == [service_id]

    def test_resident_cannot_add_service(self, api):
        resident = api.user()
        response = api.client.post(
            "/api/v1/emergency-services",
            json={"name": "X", "type": "police", "phone": "199"},
            headers=api.as_user(resident),
        )
        assert response.status_code == 403

    def test_call_to_unknown_service(self, api):
        resident = api.user()
        response = api.client.post("/api/v1/emergency-services/call", json={"service_id": "missing"},
                                   headers=api.as_user(resident))
        assert response.status_code == 404

    def test_call_history_requires_caller(self, api):
        assert api.client.get("/api/v1/emergency-services/calls").status_code == 401
