"""
Adherence Service
Read-only adherence rollups computed from intake record states.

Adherence rate = taken / (taken + missed). Skipped and still-pending
occurrences carry no outcome and never enter the denominator; an empty
denominator means "no data" (None), never 0%.
"""

import logging
from typing import Callable, Dict, List, Optional, Any, Iterable
from datetime import datetime, date, time, timedelta
from collections import defaultdict, OrderedDict
from sqlalchemy.orm import Session
from sqlalchemy import and_, func

from database import get_db_context
import models
from models import IntakeStatus
from services.intake_store import IntakeStore, IntakeRow, intake_store


logger = logging.getLogger(__name__)


TIME_OF_DAY_BUCKETS = OrderedDict([
    ("night", (0, 6)),
    ("morning", (6, 12)),
    ("afternoon", (12, 18)),
    ("evening", (18, 24)),
])


def adherence_rate(taken: int, missed: int) -> Optional[float]:
    """Percentage rounded to one decimal, or None when nothing has an outcome"""
    denominator = taken + missed
    if denominator == 0:
        return None
    return round(taken * 100.0 / denominator, 1)


def time_of_day_bucket(hour: int) -> str:
    for name, (start, end) in TIME_OF_DAY_BUCKETS.items():
        if start <= hour < end:
            return name
    raise ValueError(f"Hour out of range: {hour}")


def summarise(statuses: Iterable[IntakeStatus]) -> Dict[str, Any]:
    """Count occurrences per state and compute the rate"""
    counts = {status: 0 for status in IntakeStatus}
    for status in statuses:
        counts[status] += 1

    taken = counts[IntakeStatus.TAKEN]
    missed = counts[IntakeStatus.MISSED]
    return {
        "total": sum(counts.values()),
        "taken": taken,
        "missed": missed,
        "skipped": counts[IntakeStatus.SKIPPED],
        "pending": counts[IntakeStatus.PENDING],
        "adherence_rate": adherence_rate(taken, missed)
    }


def _start_of(day: date) -> datetime:
    return datetime.combine(day, time.min)


class AdherenceService:
    """
    Service for adherence statistics
    """

    def __init__(
        self,
        store: Optional[IntakeStore] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.store = store or intake_store
        self._clock = clock

    def _period_rows(
        self,
        session: Session,
        patient_id: int,
        period_days: int,
        now: datetime
    ) -> List[IntakeRow]:
        """Occurrences in [today - period_days, tomorrow)"""
        today = now.date()
        return self.store.records_for_patient(
            session,
            patient_id,
            start=_start_of(today - timedelta(days=period_days)),
            end=_start_of(today + timedelta(days=1))
        )

    async def get_adherence(
        self,
        patient_id: int,
        period_days: int = 7,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Overall adherence for a trailing period

        Args:
            patient_id: Patient ID
            period_days: Number of past days included, plus today
            now: Reference time (default: clock)
            db: Database session

        Returns:
            Dict with per-state counts and adherence_rate (None = no data)
        """
        now = now or self._clock()

        def _get(session: Session) -> Dict[str, Any]:
            rows = self._period_rows(session, patient_id, period_days, now)
            result = {
                "patient_id": patient_id,
                "period_days": period_days,
                "start_date": (now.date() - timedelta(days=period_days)).isoformat(),
                "end_date": now.date().isoformat()
            }
            result.update(summarise(record.status for record, _, _ in rows))
            return result

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_daily_adherence(
        self,
        patient_id: int,
        period_days: int = 7,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """Per-day rollup, newest day first; days without occurrences are omitted"""
        now = now or self._clock()

        def _get(session: Session) -> List[Dict[str, Any]]:
            by_day = defaultdict(list)
            for record, _, _ in self._period_rows(session, patient_id, period_days, now):
                by_day[record.scheduled_time.date()].append(record.status)

            daily = []
            for day in sorted(by_day, reverse=True):
                entry = {"date": day.isoformat()}
                entry.update(summarise(by_day[day]))
                daily.append(entry)
            return daily

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_adherence_by_medicine_type(
        self,
        patient_id: int,
        period_days: int = 30,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """Rollup per medicine type, best adherence first ("no data" last)"""
        now = now or self._clock()

        def _get(session: Session) -> List[Dict[str, Any]]:
            by_type = defaultdict(list)
            medicines = defaultdict(set)
            for record, medicine, _ in self._period_rows(session, patient_id, period_days, now):
                kind = medicine.medicine_type.value if medicine.medicine_type else "unknown"
                by_type[kind].append(record.status)
                medicines[kind].add(medicine.id)

            breakdown = []
            for kind, statuses in by_type.items():
                entry = {"medicine_type": kind, "medicine_count": len(medicines[kind])}
                entry.update(summarise(statuses))
                breakdown.append(entry)

            breakdown.sort(key=lambda e: (e["adherence_rate"] is None, -(e["adherence_rate"] or 0)))
            return breakdown

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_adherence_by_time_of_day(
        self,
        patient_id: int,
        period_days: int = 30,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """Rollup per time-of-day bucket; all four buckets are always returned"""
        now = now or self._clock()

        def _get(session: Session) -> List[Dict[str, Any]]:
            by_bucket = {name: [] for name in TIME_OF_DAY_BUCKETS}
            for record, _, _ in self._period_rows(session, patient_id, period_days, now):
                by_bucket[time_of_day_bucket(record.scheduled_time.hour)].append(record.status)

            result = []
            for name, (start, end) in TIME_OF_DAY_BUCKETS.items():
                entry = {"time_period": name, "start_hour": start, "end_hour": end}
                entry.update(summarise(by_bucket[name]))
                result.append(entry)
            return result

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_monthly_adherence(
        self,
        patient_id: int,
        months: int = 6,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """Per-month trend ("YYYY-MM"), oldest month first"""
        now = now or self._clock()
        today = now.date()

        # First day of the month `months` months back
        year, month = today.year, today.month - months
        while month <= 0:
            month += 12
            year -= 1
        start = datetime(year, month, 1)

        def _get(session: Session) -> List[Dict[str, Any]]:
            rows = self.store.records_for_patient(
                session,
                patient_id,
                start=start,
                end=_start_of(today + timedelta(days=1))
            )
            by_month = defaultdict(list)
            for record, _, _ in rows:
                by_month[record.scheduled_time.strftime("%Y-%m")].append(record.status)

            trend = []
            for key in sorted(by_month):
                entry = {"month": key}
                entry.update(summarise(by_month[key]))
                trend.append(entry)
            return trend

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def get_dashboard(
        self,
        patient_id: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """Home screen summary: today, last week, next dose and inventory"""
        now = now or self._clock()
        today = now.date()

        def _get(session: Session) -> Dict[str, Any]:
            today_rows = self.store.records_for_patient(
                session,
                patient_id,
                start=_start_of(today),
                end=_start_of(today + timedelta(days=1))
            )
            week_rows = self._period_rows(session, patient_id, 7, now)
            week = summarise(record.status for record, _, _ in week_rows)

            upcoming = self.store.records_for_patient(
                session,
                patient_id,
                start=now,
                statuses=[IntakeStatus.PENDING],
                limit=1
            )
            next_intake = None
            if upcoming:
                record, medicine, _ = upcoming[0]
                next_intake = {
                    "intake_id": record.id,
                    "medicine_name": medicine.medicine_name,
                    "compartment_no": medicine.compartment_no,
                    "scheduled_time": record.scheduled_time.isoformat()
                }

            active_boxes = session.query(func.count(models.MedicineBox.id)).filter(
                and_(
                    models.MedicineBox.patient_id == patient_id,
                    models.MedicineBox.is_active == True
                )
            ).scalar() or 0

            active_medicines = session.query(func.count(models.Medicine.id)).join(
                models.MedicineBox, models.Medicine.box_id == models.MedicineBox.id
            ).filter(
                and_(
                    models.MedicineBox.patient_id == patient_id,
                    models.Medicine.is_active == True
                )
            ).scalar() or 0

            return {
                "patient_id": patient_id,
                "today": summarise(record.status for record, _, _ in today_rows),
                "week_adherence_rate": week["adherence_rate"],
                "next_intake": next_intake,
                "active_boxes": active_boxes,
                "active_medicines": active_medicines
            }

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)


# Singleton instance
adherence_service = AdherenceService()
