"""
Tests for Device API
====================

Tests the endpoints used by pill box firmware: sensor telemetry, the next
doses display, heartbeats and the event audit trail.
"""

import pytest
from datetime import datetime, timedelta, timezone
from fastapi import status
from fastapi.testclient import TestClient

from models import IntakeStatus, IntakeRecord
from tools.notification_service import NotificationEvent, NotificationTarget


def _soon(minutes: int) -> datetime:
    return datetime.now().replace(second=0, microsecond=0) + timedelta(minutes=minutes)


class TestSensorData:
    """Tests for POST /device/sensor-data"""

    @pytest.mark.api
    def test_open_confirms_intake(self, client: TestClient, make_intake, db_session, api_sink, test_box):
        record = make_intake(_soon(-5))

        response = client.post("/api/v1/device/sensor-data", json={
            "box_code": test_box.box_code,
            "compartment_no": 1,
            "event_type": "open",
            "sensor_value": 870,
            "timestamp": _soon(0).isoformat()
        })

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["success"] is True
        assert data["outcome"] == "confirmed"
        assert data["intake_id"] == record.id

        db_session.expire_all()
        stored = db_session.get(IntakeRecord, record.id)
        assert stored.status == IntakeStatus.TAKEN
        assert stored.sensor_detected is True

        assert len(api_sink.events(NotificationEvent.ALERT_CLEARED, NotificationTarget.DEVICE)) == 1

    @pytest.mark.api
    def test_offset_timestamp_confirms_intake(self, client: TestClient, make_intake, db_session, test_box):
        record = make_intake(_soon(-5))

        response = client.post("/api/v1/device/sensor-data", json={
            "box_code": test_box.box_code,
            "compartment_no": 1,
            "timestamp": _soon(0).astimezone(timezone.utc).isoformat()
        })

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["outcome"] == "confirmed"
        assert response.json()["intake_id"] == record.id

        db_session.expire_all()
        assert db_session.get(IntakeRecord, record.id).status == IntakeStatus.TAKEN

    @pytest.mark.api
    def test_repeat_open_is_not_an_error(self, client: TestClient, make_intake, test_box):
        make_intake(_soon(-5))
        payload = {"box_code": test_box.box_code, "compartment_no": 1}

        first = client.post("/api/v1/device/sensor-data", json=payload)
        second = client.post("/api/v1/device/sensor-data", json=payload)

        assert first.json()["outcome"] == "confirmed"
        assert second.status_code == status.HTTP_200_OK
        assert second.json()["outcome"] == "no_candidate"

    @pytest.mark.api
    def test_unknown_box(self, client: TestClient):
        response = client.post("/api/v1/device/sensor-data", json={"box_code": "NOPE", "compartment_no": 1})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["outcome"] == "unknown_device"

    @pytest.mark.api
    def test_close_is_ignored(self, client: TestClient, make_intake, test_box):
        make_intake(_soon(0))

        response = client.post("/api/v1/device/sensor-data", json={
            "box_code": test_box.box_code,
            "compartment_no": 1,
            "event_type": "close"
        })

        assert response.json()["outcome"] == "ignored"

    @pytest.mark.api
    def test_invalid_payload(self, client: TestClient):
        response = client.post("/api/v1/device/sensor-data", json={"box_code": "BOX001", "compartment_no": 0})

        assert response.status_code == 422


class TestDeviceReads:
    """Tests for next doses, heartbeat and audit trail"""

    @pytest.mark.api
    def test_next_doses(self, client: TestClient, make_intake, test_box):
        record = make_intake(_soon(20))
        make_intake(_soon(120))

        response = client.get(f"/api/v1/device/next-doses/{test_box.box_code}")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["success"] is True
        assert [d["intake_id"] for d in data["doses"]] == [record.id]
        assert data["doses"][0]["compartment_no"] == 1

    @pytest.mark.api
    def test_device_status(self, client: TestClient):
        response = client.post("/api/v1/device/device-status", json={
            "box_code": "BOX001",
            "status": "online",
            "ip_address": "192.168.0.20",
            "firmware_version": "1.2.0",
            "uptime": 3600
        })

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["success"] is True

    @pytest.mark.api
    def test_event_audit_trail(self, client: TestClient, test_medicine, test_box):
        client.post("/api/v1/device/sensor-data", json={"box_code": test_box.box_code, "compartment_no": 1})
        client.post("/api/v1/device/sensor-data", json={
            "box_code": test_box.box_code, "compartment_no": 1, "event_type": "close"
        })

        response = client.get(f"/api/v1/device/{test_box.box_code}/events")

        assert response.status_code == status.HTTP_200_OK
        assert [e["outcome"] for e in response.json()] == ["ignored", "no_candidate"]
