"""
Intake Service
Correlates confirmation signals (pill box sensor opens, manual taps) with
pending dose occurrences and advances exactly one of them.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Any, Sequence, Union
from datetime import datetime, timedelta
from sqlalchemy.orm import Session

from config import settings
from database import get_db_context
import models
from models import IntakeStatus, SensorEventType, SignalOutcome, is_terminal
from services.exceptions import IntakeConflictError, IntakeNotFoundError
from services.intake_store import IntakeStore, intake_store
from services.medicine_service import MedicineService, medicine_service
from tools.notification_service import (
    NotificationDispatcher,
    NotificationEvent,
    NotificationTarget,
    notification_dispatcher,
)


logger = logging.getLogger(__name__)


MANUAL_NOTE = "Manual entry"


def to_local_naive(value: datetime) -> datetime:
    """Occurrences are stored as naive local times; convert aware device stamps"""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


@dataclass
class CorrelationResult:
    """What happened to one sensor signal"""
    outcome: SignalOutcome
    event_id: Optional[int] = None
    intake_id: Optional[int] = None
    patient_id: Optional[int] = None
    medicine_id: Optional[int] = None
    medicine_name: Optional[str] = None
    taken_time: Optional[datetime] = None

    @property
    def confirmed(self) -> bool:
        return self.outcome == SignalOutcome.CONFIRMED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "event_id": self.event_id,
            "intake_id": self.intake_id,
            "patient_id": self.patient_id,
            "medicine_id": self.medicine_id,
            "taken_time": self.taken_time.isoformat() if self.taken_time else None
        }


def select_candidate(
    candidates: Sequence[models.IntakeRecord],
    signal_time: datetime
) -> Optional[models.IntakeRecord]:
    """
    Pick the occurrence a signal belongs to.

    Smallest absolute distance between scheduled time and signal time wins;
    ties go to the earlier scheduled occurrence.
    """
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda record: (
            abs((record.scheduled_time - signal_time).total_seconds()),
            record.scheduled_time
        )
    )


class IntakeService:
    """
    Service for intake confirmation (sensor and manual)
    """

    def __init__(
        self,
        store: Optional[IntakeStore] = None,
        medicines: Optional[MedicineService] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        tolerance_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.store = store or intake_store
        self.medicines = medicines or medicine_service
        self.dispatcher = dispatcher or notification_dispatcher
        minutes = tolerance_minutes if tolerance_minutes is not None else settings.SENSOR_TOLERANCE_MINUTES
        self.tolerance = timedelta(minutes=minutes)
        self._clock = clock

    # ==================== SENSOR PATH ====================

    async def record_sensor_signal(
        self,
        box_code: str,
        compartment_no: int,
        signal_time: Optional[datetime] = None,
        event_type: Union[SensorEventType, str] = SensorEventType.OPEN,
        sensor_value: Optional[int] = None,
        db: Optional[Session] = None
    ) -> CorrelationResult:
        """
        Ingest one pill box event.

        Every event is written to the audit log. Only an 'open' of a known
        compartment with a pending occurrence inside the tolerance window
        changes state; everything else is informational and never raises.

        Args:
            box_code: Device code of the pill box
            compartment_no: Compartment the event refers to
            signal_time: Device timestamp (default: processing time)
            event_type: 'open' or 'close'
            sensor_value: Raw reading, stored for audit only
            db: Database session

        Returns:
            CorrelationResult with the outcome and the confirmed intake, if any
        """
        now = self._clock()
        signal_time = to_local_naive(signal_time) if signal_time else now
        kind = event_type.value if isinstance(event_type, SensorEventType) else str(event_type)

        async def _record(session: Session) -> CorrelationResult:
            event = models.SensorEvent(
                box_code=box_code,
                compartment_no=compartment_no,
                event_type=kind,
                sensor_value=sensor_value,
                signal_time=signal_time,
                received_at=now
            )
            session.add(event)
            session.commit()
            session.refresh(event)

            result = await self._correlate(session, event, signal_time, now)

            event.outcome = result.outcome
            event.intake_id = result.intake_id
            session.commit()

            if result.confirmed:
                await self._announce_sensor_confirmation(result, box_code, compartment_no)
            return result

        if db:
            return await _record(db)

        with get_db_context() as session:
            return await _record(session)

    async def _correlate(
        self,
        session: Session,
        event: models.SensorEvent,
        signal_time: datetime,
        now: datetime
    ) -> CorrelationResult:
        if event.event_type != SensorEventType.OPEN.value:
            return CorrelationResult(SignalOutcome.IGNORED, event_id=event.id)

        ref = await self.medicines.resolve_compartment(event.box_code, event.compartment_no, db=session)
        if ref is None:
            logger.info(f"Sensor open on unknown compartment {event.box_code}#{event.compartment_no}")
            return CorrelationResult(SignalOutcome.UNKNOWN_DEVICE, event_id=event.id)

        candidates = self.store.find_pending_near(
            session, ref.patient_id, ref.medicine_id, signal_time, self.tolerance
        )
        winner = select_candidate(candidates, signal_time)
        if winner is None:
            logger.info(
                f"No pending intake near {signal_time.isoformat()} for medicine "
                f"{ref.medicine_id} ({event.box_code}#{event.compartment_no})"
            )
            return CorrelationResult(
                SignalOutcome.NO_CANDIDATE,
                event_id=event.id,
                patient_id=ref.patient_id,
                medicine_id=ref.medicine_id
            )

        intake_id = winner.id
        won = self.store.transition(
            session,
            intake_id,
            IntakeStatus.TAKEN,
            taken_time=now,
            sensor_detected=True
        )
        if not won:
            logger.info(f"Intake {intake_id} already recorded; duplicate sensor signal from {event.box_code}")
            return CorrelationResult(
                SignalOutcome.DUPLICATE,
                event_id=event.id,
                intake_id=intake_id,
                patient_id=ref.patient_id,
                medicine_id=ref.medicine_id
            )

        logger.info(f"Sensor confirmed intake {intake_id} for patient {ref.patient_id}")
        return CorrelationResult(
            SignalOutcome.CONFIRMED,
            event_id=event.id,
            intake_id=intake_id,
            patient_id=ref.patient_id,
            medicine_id=ref.medicine_id,
            medicine_name=ref.medicine_name,
            taken_time=now
        )

    async def _announce_sensor_confirmation(
        self,
        result: CorrelationResult,
        box_code: str,
        compartment_no: int
    ):
        await self.dispatcher.push(
            NotificationTarget.PATIENT,
            result.patient_id,
            NotificationEvent.MEDICINE_TAKEN,
            {
                "intake_id": result.intake_id,
                "medicine_name": result.medicine_name,
                "compartment_no": compartment_no,
                "taken_time": result.taken_time.isoformat(),
                "verified_by": "sensor"
            }
        )
        await self.dispatcher.push(
            NotificationTarget.DEVICE,
            box_code,
            NotificationEvent.ALERT_CLEARED,
            {"compartment_no": compartment_no, "alert_cleared": True}
        )

    # ==================== MANUAL PATH ====================

    def _load_owned(self, session: Session, intake_id: int, patient_id: int) -> models.IntakeRecord:
        record = self.store.get(session, intake_id)
        if not record:
            raise IntakeNotFoundError(f"Intake {intake_id} not found")
        if record.patient_id != patient_id:
            raise PermissionError(f"Intake {intake_id} does not belong to patient {patient_id}")
        if is_terminal(record.status):
            raise IntakeConflictError(intake_id, record.status.value)
        return record

    async def _record_manual(
        self,
        intake_id: int,
        patient_id: int,
        target: IntakeStatus,
        note: str,
        event_type: NotificationEvent,
        db: Optional[Session]
    ) -> Dict[str, Any]:
        now = self._clock()

        async def _apply(session: Session) -> Dict[str, Any]:
            record = self._load_owned(session, intake_id, patient_id)
            medicine = record.medicine
            payload = {
                "intake_id": intake_id,
                "medicine_name": medicine.medicine_name,
                "compartment_no": medicine.compartment_no,
                "scheduled_time": record.scheduled_time.isoformat()
            }

            values = {"notes": note}
            if target == IntakeStatus.TAKEN:
                values.update(taken_time=now, sensor_detected=False)

            if not self.store.transition(session, intake_id, target, **values):
                # Lost the race between the read above and the update
                current = self.store.get(session, intake_id)
                logger.info(f"Intake {intake_id} changed concurrently, manual {target.value} rejected")
                raise IntakeConflictError(intake_id, current.status.value if current else "unknown")

            logger.info(f"Patient {patient_id} marked intake {intake_id} as {target.value}")

            if target == IntakeStatus.TAKEN:
                payload.update(taken_time=now.isoformat(), verified_by="manual")
            else:
                payload.update(reason=note)
            await self.dispatcher.push(NotificationTarget.PATIENT, patient_id, event_type, payload)

            return {
                "intake_id": intake_id,
                "status": target.value,
                "taken_time": now.isoformat() if target == IntakeStatus.TAKEN else None,
                "sensor_detected": False,
                "notes": note
            }

        if db:
            return await _apply(db)

        with get_db_context() as session:
            return await _apply(session)

    async def record_manual_confirmation(
        self,
        intake_id: int,
        requesting_patient_id: int,
        note: Optional[str] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Mark an intake as taken on the patient's word.

        Raises:
            IntakeNotFoundError: unknown intake id
            PermissionError: intake belongs to another patient
            IntakeConflictError: intake already taken, missed or skipped
        """
        return await self._record_manual(
            intake_id,
            requesting_patient_id,
            IntakeStatus.TAKEN,
            note or MANUAL_NOTE,
            NotificationEvent.MEDICINE_TAKEN,
            db
        )

    async def record_manual_skip(
        self,
        intake_id: int,
        requesting_patient_id: int,
        reason: Optional[str] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """Mark an intake as deliberately skipped; same rules as confirmation"""
        return await self._record_manual(
            intake_id,
            requesting_patient_id,
            IntakeStatus.SKIPPED,
            reason or "Skipped",
            NotificationEvent.MEDICINE_SKIPPED,
            db
        )

    async def get_sensor_events(
        self,
        box_code: str,
        limit: int = 50,
        db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """Audit trail of a pill box, newest first"""
        def _get(session: Session) -> List[Dict[str, Any]]:
            events = session.query(models.SensorEvent).filter(
                models.SensorEvent.box_code == box_code
            ).order_by(models.SensorEvent.id.desc()).limit(limit).all()
            return [
                {
                    "id": e.id,
                    "compartment_no": e.compartment_no,
                    "event_type": e.event_type,
                    "sensor_value": e.sensor_value,
                    "signal_time": e.signal_time.isoformat() if e.signal_time else None,
                    "outcome": e.outcome.value if e.outcome else None,
                    "intake_id": e.intake_id
                }
                for e in events
            ]

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)


# Singleton instance
intake_service = IntakeService()
