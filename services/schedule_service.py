"""
Schedule Service
Materialises dose occurrences from a medicine's recurring time slots and
serves the schedule-shaped read queries (today, upcoming, history).
"""

import logging
import re
from typing import Callable, Dict, List, Optional, Any, Iterable
from datetime import datetime, date, time, timedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy import and_

from config import settings
from database import get_db_context
import models
from models import IntakeStatus
from services.exceptions import InvalidTimeSlotError, MedicineNotFoundError
from services.intake_store import IntakeStore, intake_store


logger = logging.getLogger(__name__)


_TIME_SLOT_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_time_slot(value: str) -> time:
    """Parse a strict 'HH:MM' local time slot.

    Raises InvalidTimeSlotError for anything else ("8:00", "24:00", "08:00:00").
    """
    if not isinstance(value, str):
        raise InvalidTimeSlotError(f"Time slot must be a string, got {type(value).__name__}")
    match = _TIME_SLOT_PATTERN.match(value.strip())
    if not match:
        raise InvalidTimeSlotError(f"Invalid time slot: {value!r} (expected HH:MM)")
    return time(int(match.group(1)), int(match.group(2)))


def validate_time_slots(values: Iterable[str]) -> List[str]:
    """Validate and normalise a slot list: sorted, de-duplicated 'HH:MM' strings"""
    slots = {parse_time_slot(v) for v in values}
    return [slot.strftime("%H:%M") for slot in sorted(slots)]


def expand_time_slots(
    time_slots: Iterable[str],
    start_date: Optional[date],
    end_date: Optional[date],
    now: datetime,
    horizon_days: int
) -> List[datetime]:
    """
    Expand slots into concrete occurrence timestamps.

    Every (day, slot) pair with day in
    [max(start_date, today), min(end_date, today + horizon_days)] whose
    timestamp is strictly after `now`. Slots are expected to be validated
    already; an empty list yields no occurrences.
    """
    slots = sorted({parse_time_slot(s) for s in time_slots})
    if not slots:
        return []

    today = now.date()
    first_day = max(start_date, today) if start_date else today
    last_day = today + timedelta(days=horizon_days)
    if end_date is not None:
        last_day = min(end_date, last_day)

    occurrences = []
    day = first_day
    while day <= last_day:
        for slot in slots:
            scheduled = datetime.combine(day, slot)
            if scheduled > now:
                occurrences.append(scheduled)
        day += timedelta(days=1)
    return occurrences


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ScheduleService:
    """
    Service for occurrence generation and schedule queries
    """

    def __init__(
        self,
        store: Optional[IntakeStore] = None,
        horizon_days: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.store = store or intake_store
        self.horizon_days = horizon_days if horizon_days is not None else settings.GENERATION_HORIZON_DAYS
        self._clock = clock

    def _load_medicine(self, session: Session, medicine_id: int) -> models.Medicine:
        medicine = session.query(models.Medicine).filter(
            models.Medicine.id == medicine_id
        ).first()
        if not medicine:
            raise MedicineNotFoundError(f"Medicine {medicine_id} not found")
        return medicine

    def _materialise(self, session: Session, medicine: models.Medicine, now: datetime) -> int:
        """Insert the missing occurrences for one medicine; caller commits"""
        if not medicine.is_active:
            return 0

        times = expand_time_slots(
            medicine.time_slots or [],
            medicine.start_date,
            medicine.end_date,
            now,
            self.horizon_days
        )
        if not times:
            return 0

        existing = self.store.existing_times(session, medicine.id, times[0], times[-1])
        missing = [t for t in times if t not in existing]
        if not missing:
            return 0

        return self.store.add_occurrences(
            session,
            patient_id=medicine.box.patient_id,
            medicine_id=medicine.id,
            times=missing
        )

    def _run_generation(
        self,
        session: Session,
        medicine_id: int,
        now: datetime,
        clear_future: bool
    ) -> int:
        # A concurrent generator can insert the same (medicine, time) pair
        # between our read and our flush; the unique constraint rejects it
        # and one retry sees the rows it inserted.
        for attempt in range(2):
            try:
                medicine = self._load_medicine(session, medicine_id)
                removed = 0
                if clear_future:
                    removed = self.store.delete_future_pending(session, medicine_id, now)
                created = self._materialise(session, medicine, now)
                session.commit()
            except IntegrityError:
                session.rollback()
                if attempt:
                    raise
                logger.info(f"Concurrent generation for medicine {medicine_id}, retrying")
                continue

            logger.info(
                f"Medicine {medicine_id}: removed {removed} future pending, "
                f"created {created} occurrences"
            )
            return created
        return 0

    async def generate_occurrences(
        self,
        medicine_id: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> int:
        """
        Materialise future occurrences for a medicine.

        Idempotent: occurrences already present for a (medicine, time) pair
        are left alone, so repeated calls create nothing new.

        Returns:
            Number of occurrences created
        """
        now = now or self._clock()

        def _generate(session: Session) -> int:
            return self._run_generation(session, medicine_id, now, clear_future=False)

        if db:
            return _generate(db)

        with get_db_context() as session:
            return _generate(session)

    async def regenerate_occurrences(
        self,
        medicine_id: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> int:
        """
        Rebuild the future schedule after a medicine edit or deactivation.

        Deletes the medicine's still-pending occurrences scheduled after now,
        then generates again from the current slots and date range. Past and
        terminal occurrences are never touched.
        """
        now = now or self._clock()

        def _regenerate(session: Session) -> int:
            return self._run_generation(session, medicine_id, now, clear_future=True)

        if db:
            return _regenerate(db)

        with get_db_context() as session:
            return _regenerate(session)

    async def clear_future_occurrences(
        self,
        medicine_id: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> int:
        """Delete future pending occurrences without regenerating"""
        now = now or self._clock()

        def _clear(session: Session) -> int:
            removed = self.store.delete_future_pending(session, medicine_id, now)
            session.commit()
            logger.info(f"Medicine {medicine_id}: removed {removed} future pending occurrences")
            return removed

        if db:
            return _clear(db)

        with get_db_context() as session:
            return _clear(session)

    # ==================== READ QUERIES ====================

    @staticmethod
    def _row_to_dict(record: models.IntakeRecord, medicine: models.Medicine, box: models.MedicineBox) -> Dict[str, Any]:
        return {
            "intake_id": record.id,
            "medicine_id": medicine.id,
            "medicine_name": medicine.medicine_name,
            "dosage": medicine.dosage,
            "compartment_no": medicine.compartment_no,
            "box_name": box.box_name,
            "scheduled_time": _iso(record.scheduled_time),
            "status": record.status.value,
            "taken_time": _iso(record.taken_time),
            "sensor_detected": bool(record.sensor_detected),
            "notes": record.notes
        }

    async def get_today_schedule(
        self,
        patient_id: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """All of today's occurrences for a patient, in scheduled order"""
        now = now or self._clock()
        start = datetime.combine(now.date(), time.min)
        end = start + timedelta(days=1)

        def _get(session: Session) -> List[Dict[str, Any]]:
            rows = self.store.records_for_patient(session, patient_id, start=start, end=end)
            return [self._row_to_dict(*row) for row in rows]

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_upcoming_doses(
        self,
        patient_id: int,
        hours: int = 24,
        limit: int = 20,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """Pending doses scheduled in the next few hours"""
        now = now or self._clock()

        def _get(session: Session) -> List[Dict[str, Any]]:
            rows = self.store.records_for_patient(
                session,
                patient_id,
                start=now,
                end=now + timedelta(hours=hours),
                statuses=[IntakeStatus.PENDING],
                limit=limit
            )
            upcoming = []
            for record, medicine, box in rows:
                entry = self._row_to_dict(record, medicine, box)
                entry["minutes_until"] = int((record.scheduled_time - now).total_seconds() // 60)
                upcoming.append(entry)
            return upcoming

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_next_doses_for_device(
        self,
        box_code: str,
        within_minutes: int = 60,
        limit: int = 7,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """Pending doses for a pill box in the next hour, for the box display"""
        now = now or self._clock()

        def _get(session: Session) -> List[Dict[str, Any]]:
            rows = session.query(models.IntakeRecord, models.Medicine).join(
                models.Medicine, models.IntakeRecord.medicine_id == models.Medicine.id
            ).join(
                models.MedicineBox, models.Medicine.box_id == models.MedicineBox.id
            ).filter(
                and_(
                    models.MedicineBox.box_code == box_code,
                    models.IntakeRecord.status == IntakeStatus.PENDING,
                    models.IntakeRecord.scheduled_time >= now,
                    models.IntakeRecord.scheduled_time <= now + timedelta(minutes=within_minutes)
                )
            ).order_by(models.IntakeRecord.scheduled_time).limit(limit).all()

            return [
                {
                    "intake_id": record.id,
                    "compartment_no": medicine.compartment_no,
                    "medicine_name": medicine.medicine_name,
                    "scheduled_time": _iso(record.scheduled_time)
                }
                for record, medicine in rows
            ]

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_intake_history(
        self,
        patient_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 100,
        db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """Intake records between two dates (inclusive), newest first"""
        start = datetime.combine(start_date, time.min) if start_date else None
        end = datetime.combine(end_date + timedelta(days=1), time.min) if end_date else None

        def _get(session: Session) -> List[Dict[str, Any]]:
            rows = self.store.records_for_patient(
                session,
                patient_id,
                start=start,
                end=end,
                newest_first=True,
                limit=limit
            )
            return [self._row_to_dict(*row) for row in rows]

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)


# Singleton instance
schedule_service = ScheduleService()
