"""
Tests for Intake Service
Sensor correlation, manual confirmation and skip, and their notifications
"""

import pytest
from types import SimpleNamespace
from unittest.mock import patch
from datetime import timedelta, timezone

from models import (
    IntakeRecord,
    IntakeStatus,
    SensorEvent,
    SensorEventType,
    SignalOutcome,
)
from services.exceptions import IntakeConflictError, IntakeNotFoundError
from services.intake_service import (
    CorrelationResult,
    IntakeService,
    MANUAL_NOTE,
    select_candidate,
    to_local_naive,
)
from services.intake_store import IntakeStore
from tools.notification_service import (
    NotificationDispatcher,
    NotificationEvent,
    NotificationSink,
    NotificationTarget,
)

from tests.conftest import NOW


class StaleCandidateStore(IntakeStore):
    """Returns candidates as an earlier read would have seen them, whatever their status now"""

    def find_pending_near(self, session, patient_id, medicine_id, center, tolerance):
        return session.query(IntakeRecord).filter(
            IntakeRecord.medicine_id == medicine_id,
            IntakeRecord.scheduled_time >= center - tolerance,
            IntakeRecord.scheduled_time <= center + tolerance
        ).all()


class FailingSink(NotificationSink):
    async def notify(self, target_kind, target_id, event_type, payload):
        raise ConnectionError("subscriber gone")


# =============================================================================
# Candidate Selection
# =============================================================================

class TestSelectCandidate:
    """Tests for nearest-occurrence selection"""

    @pytest.mark.unit
    def test_nearest_wins(self):
        early = SimpleNamespace(scheduled_time=NOW - timedelta(minutes=20))
        late = SimpleNamespace(scheduled_time=NOW + timedelta(minutes=10))

        assert select_candidate([early, late], NOW) is late

    @pytest.mark.unit
    def test_tie_goes_to_earlier(self):
        early = SimpleNamespace(scheduled_time=NOW - timedelta(minutes=15))
        late = SimpleNamespace(scheduled_time=NOW + timedelta(minutes=15))

        assert select_candidate([late, early], NOW) is early

    @pytest.mark.unit
    def test_no_candidates(self):
        assert select_candidate([], NOW) is None


# =============================================================================
# Sensor Path
# =============================================================================

class TestSensorSignal:
    """Tests for record_sensor_signal"""

    @pytest.mark.asyncio
    async def test_open_confirms_pending_intake(self, intake_service, db_session, make_intake, reload, sink, test_patient):
        record = make_intake(NOW - timedelta(minutes=5))

        result = await intake_service.record_sensor_signal("BOX001", 1, signal_time=NOW, db=db_session)

        assert result.outcome == SignalOutcome.CONFIRMED
        assert result.intake_id == record.id
        assert result.patient_id == test_patient.id

        record = reload(record)
        assert record.status == IntakeStatus.TAKEN
        assert record.taken_time == NOW
        assert record.sensor_detected is True

        patient_events = sink.events(NotificationEvent.MEDICINE_TAKEN, NotificationTarget.PATIENT)
        assert len(patient_events) == 1
        assert patient_events[0].target_id == test_patient.id
        assert patient_events[0].payload["verified_by"] == "sensor"
        assert patient_events[0].payload["medicine_name"] == "Metformin"

        device_events = sink.events(NotificationEvent.ALERT_CLEARED, NotificationTarget.DEVICE)
        assert len(device_events) == 1
        assert device_events[0].target_id == "BOX001"
        assert device_events[0].payload == {"compartment_no": 1, "alert_cleared": True}

    @pytest.mark.asyncio
    async def test_every_signal_is_audited(self, intake_service, db_session, make_intake):
        record = make_intake(NOW)

        result = await intake_service.record_sensor_signal("BOX001", 1, signal_time=NOW, sensor_value=512, db=db_session)

        event = db_session.get(SensorEvent, result.event_id)
        assert event.outcome == SignalOutcome.CONFIRMED
        assert event.intake_id == record.id
        assert event.sensor_value == 512

        events = await intake_service.get_sensor_events("BOX001", db=db_session)
        assert events[0]["outcome"] == "confirmed"

    @pytest.mark.asyncio
    async def test_second_open_does_not_confirm_twice(self, intake_service, db_session, make_intake, sink):
        make_intake(NOW)

        first = await intake_service.record_sensor_signal("BOX001", 1, signal_time=NOW, db=db_session)
        second = await intake_service.record_sensor_signal(
            "BOX001", 1, signal_time=NOW + timedelta(minutes=1), db=db_session
        )

        assert first.outcome == SignalOutcome.CONFIRMED
        assert second.outcome == SignalOutcome.NO_CANDIDATE
        assert len(sink.events(NotificationEvent.MEDICINE_TAKEN)) == 1

    @pytest.mark.asyncio
    async def test_lost_race_is_duplicate(self, medicine_service, dispatcher, db_session, make_intake, reload, sink):
        record = make_intake(NOW)
        service = IntakeService(
            store=StaleCandidateStore(),
            medicines=medicine_service,
            dispatcher=dispatcher,
            tolerance_minutes=30,
            clock=lambda: NOW
        )

        first = await service.record_sensor_signal("BOX001", 1, signal_time=NOW, db=db_session)
        second = await service.record_sensor_signal("BOX001", 1, signal_time=NOW, db=db_session)

        assert first.outcome == SignalOutcome.CONFIRMED
        assert second.outcome == SignalOutcome.DUPLICATE
        assert second.intake_id == record.id
        assert reload(record).status == IntakeStatus.TAKEN
        assert len(sink.events(NotificationEvent.MEDICINE_TAKEN)) == 1
        assert len(sink.events(NotificationEvent.ALERT_CLEARED)) == 1

    @pytest.mark.asyncio
    async def test_outside_window(self, intake_service, db_session, make_intake, reload, sink):
        record = make_intake(NOW - timedelta(minutes=31))

        result = await intake_service.record_sensor_signal("BOX001", 1, signal_time=NOW, db=db_session)

        assert result.outcome == SignalOutcome.NO_CANDIDATE
        assert result.intake_id is None
        assert reload(record).status == IntakeStatus.PENDING
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_window_edge_is_inclusive(self, intake_service, db_session, make_intake):
        record = make_intake(NOW - timedelta(minutes=30))

        result = await intake_service.record_sensor_signal("BOX001", 1, signal_time=NOW, db=db_session)

        assert result.outcome == SignalOutcome.CONFIRMED
        assert result.intake_id == record.id

    @pytest.mark.asyncio
    async def test_unknown_device(self, intake_service, db_session, test_medicine, sink):
        result = await intake_service.record_sensor_signal("NOPE", 1, signal_time=NOW, db=db_session)

        assert result.outcome == SignalOutcome.UNKNOWN_DEVICE
        assert db_session.get(SensorEvent, result.event_id).outcome == SignalOutcome.UNKNOWN_DEVICE
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_empty_compartment(self, intake_service, db_session, test_medicine):
        result = await intake_service.record_sensor_signal("BOX001", 4, signal_time=NOW, db=db_session)

        assert result.outcome == SignalOutcome.UNKNOWN_DEVICE

    @pytest.mark.asyncio
    async def test_close_event_is_ignored(self, intake_service, db_session, make_intake, reload):
        record = make_intake(NOW)

        result = await intake_service.record_sensor_signal(
            "BOX001", 1, signal_time=NOW, event_type=SensorEventType.CLOSE, db=db_session
        )

        assert result.outcome == SignalOutcome.IGNORED
        assert reload(record).status == IntakeStatus.PENDING

    @pytest.mark.asyncio
    async def test_picks_nearest_of_two(self, intake_service, db_session, make_intake, reload):
        early = make_intake(NOW - timedelta(minutes=20))
        late = make_intake(NOW + timedelta(minutes=10))

        result = await intake_service.record_sensor_signal("BOX001", 1, signal_time=NOW, db=db_session)

        assert result.intake_id == late.id
        assert reload(early).status == IntakeStatus.PENDING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [IntakeStatus.MISSED, IntakeStatus.SKIPPED])
    async def test_terminal_intakes_are_not_revived(self, intake_service, db_session, make_intake, reload, status):
        record = make_intake(NOW - timedelta(minutes=10), status=status)

        result = await intake_service.record_sensor_signal("BOX001", 1, signal_time=NOW, db=db_session)

        assert result.outcome == SignalOutcome.NO_CANDIDATE
        assert reload(record).status == status

    @pytest.mark.asyncio
    async def test_missing_timestamp_uses_processing_time(self, intake_service, db_session, make_intake):
        record = make_intake(NOW + timedelta(minutes=20))

        result = await intake_service.record_sensor_signal("BOX001", 1, db=db_session)

        assert result.intake_id == record.id
        assert db_session.get(SensorEvent, result.event_id).signal_time == NOW

    @pytest.mark.asyncio
    async def test_offset_timestamp_is_converted_to_local(self, intake_service, db_session, make_intake, reload):
        record = make_intake(NOW - timedelta(minutes=5))

        result = await intake_service.record_sensor_signal(
            "BOX001", 1, signal_time=NOW.astimezone(timezone.utc), db=db_session
        )

        assert result.outcome == SignalOutcome.CONFIRMED
        assert result.intake_id == record.id
        assert db_session.get(SensorEvent, result.event_id).signal_time == NOW
        assert reload(record).status == IntakeStatus.TAKEN

    @pytest.mark.asyncio
    async def test_failing_sink_keeps_transition(self, medicine_service, db_session, make_intake, reload):
        record = make_intake(NOW)
        service = IntakeService(
            medicines=medicine_service,
            dispatcher=NotificationDispatcher(FailingSink(), timeout_seconds=1.0),
            tolerance_minutes=30,
            clock=lambda: NOW
        )

        result = await service.record_sensor_signal("BOX001", 1, signal_time=NOW, db=db_session)

        assert result.confirmed
        assert reload(record).status == IntakeStatus.TAKEN

    @pytest.mark.unit
    def test_to_local_naive(self):
        assert to_local_naive(NOW) is NOW
        assert to_local_naive(NOW.astimezone(timezone(timedelta(hours=5, minutes=30)))) == NOW

    @pytest.mark.unit
    def test_result_to_dict(self):
        result = CorrelationResult(SignalOutcome.CONFIRMED, event_id=1, intake_id=2, taken_time=NOW)

        assert result.to_dict()["outcome"] == "confirmed"
        assert result.to_dict()["taken_time"] == NOW.isoformat()


# =============================================================================
# Manual Path
# =============================================================================

class TestManualConfirmation:
    """Tests for record_manual_confirmation and record_manual_skip"""

    @pytest.mark.asyncio
    async def test_confirm(self, intake_service, db_session, make_intake, reload, sink, test_patient):
        record = make_intake(NOW - timedelta(hours=2))

        result = await intake_service.record_manual_confirmation(record.id, test_patient.id, db=db_session)

        assert result["status"] == "taken"
        assert result["taken_time"] == NOW.isoformat()
        assert result["sensor_detected"] is False
        assert result["notes"] == MANUAL_NOTE

        record = reload(record)
        assert record.status == IntakeStatus.TAKEN
        assert record.sensor_detected is False

        events = sink.events(NotificationEvent.MEDICINE_TAKEN, NotificationTarget.PATIENT)
        assert len(events) == 1
        assert events[0].payload["verified_by"] == "manual"

    @pytest.mark.asyncio
    async def test_confirm_with_note(self, intake_service, db_session, make_intake, test_patient):
        record = make_intake(NOW)

        result = await intake_service.record_manual_confirmation(record.id, test_patient.id, note="after lunch", db=db_session)

        assert result["notes"] == "after lunch"

    @pytest.mark.asyncio
    async def test_other_patient_is_forbidden(self, intake_service, db_session, make_intake, reload, other_patient):
        record = make_intake(NOW)

        with pytest.raises(PermissionError):
            await intake_service.record_manual_confirmation(record.id, other_patient.id, db=db_session)
        assert reload(record).status == IntakeStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_intake(self, intake_service, db_session, test_patient):
        with pytest.raises(IntakeNotFoundError):
            await intake_service.record_manual_confirmation(9999, test_patient.id, db=db_session)

    @pytest.mark.asyncio
    async def test_missed_intake_conflicts(self, intake_service, db_session, make_intake, test_patient):
        record = make_intake(NOW - timedelta(hours=3), status=IntakeStatus.MISSED)

        with pytest.raises(IntakeConflictError) as exc_info:
            await intake_service.record_manual_confirmation(record.id, test_patient.id, db=db_session)
        assert exc_info.value.status == "missed"

    @pytest.mark.asyncio
    async def test_double_confirm_conflicts(self, intake_service, db_session, make_intake, test_patient, sink):
        record = make_intake(NOW)
        await intake_service.record_manual_confirmation(record.id, test_patient.id, db=db_session)

        with pytest.raises(IntakeConflictError):
            await intake_service.record_manual_confirmation(record.id, test_patient.id, db=db_session)
        assert len(sink.events(NotificationEvent.MEDICINE_TAKEN)) == 1

    @pytest.mark.asyncio
    async def test_lost_race_conflicts(self, intake_service, db_session, make_intake, test_patient, sink):
        record = make_intake(NOW)

        with patch.object(intake_service.store, "transition", return_value=False):
            with pytest.raises(IntakeConflictError):
                await intake_service.record_manual_confirmation(record.id, test_patient.id, db=db_session)
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_sensor_after_manual_confirm(self, intake_service, db_session, make_intake, test_patient):
        record = make_intake(NOW)
        await intake_service.record_manual_confirmation(record.id, test_patient.id, db=db_session)

        result = await intake_service.record_sensor_signal("BOX001", 1, signal_time=NOW, db=db_session)

        assert result.outcome == SignalOutcome.NO_CANDIDATE

    @pytest.mark.asyncio
    async def test_skip(self, intake_service, db_session, make_intake, reload, sink, test_patient):
        record = make_intake(NOW)

        result = await intake_service.record_manual_skip(record.id, test_patient.id, reason="Nausea", db=db_session)

        assert result["status"] == "skipped"
        assert result["taken_time"] is None
        assert reload(record).status == IntakeStatus.SKIPPED

        events = sink.events(NotificationEvent.MEDICINE_SKIPPED)
        assert len(events) == 1
        assert events[0].payload["reason"] == "Nausea"

    @pytest.mark.asyncio
    async def test_skip_after_taken_conflicts(self, intake_service, db_session, make_intake, test_patient):
        record = make_intake(NOW, status=IntakeStatus.TAKEN, taken_time=NOW)

        with pytest.raises(IntakeConflictError):
            await intake_service.record_manual_skip(record.id, test_patient.id, db=db_session)
