"""
Intake Store
Storage contract for dose occurrences (intake records) and alert suppressions.

Every state change goes through a conditional update on the current status,
so concurrent writers (sensor signals, manual taps, the sweep loop) never
overwrite each other: the first write wins and the loser sees zero affected
rows. Callers treat zero rows as a benign race loss, not an error.
"""

import logging
from typing import Iterable, List, Optional, Set, Tuple
from datetime import datetime, timedelta
from sqlalchemy import and_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import (
    AlertSuppression,
    AlertType,
    IntakeRecord,
    IntakeStatus,
    Medicine,
    MedicineBox,
    can_transition,
)
from services.exceptions import InvalidTransitionError


logger = logging.getLogger(__name__)


IntakeRow = Tuple[IntakeRecord, Medicine, MedicineBox]


class IntakeStore:
    """
    DB access for intake records. No scheduling or correlation rules here.

    Insert/delete helpers leave the commit to the caller so generation can
    run as one unit; compare-and-set helpers commit themselves so the
    transition is durable before any notification goes out.
    """

    # ==================== READS ====================

    def get(self, session: Session, intake_id: int) -> Optional[IntakeRecord]:
        return session.query(IntakeRecord).filter(IntakeRecord.id == intake_id).first()

    def existing_times(
        self,
        session: Session,
        medicine_id: int,
        start: datetime,
        end: datetime
    ) -> Set[datetime]:
        """Scheduled timestamps already materialised for a medicine in [start, end]"""
        rows = session.query(IntakeRecord.scheduled_time).filter(
            and_(
                IntakeRecord.medicine_id == medicine_id,
                IntakeRecord.scheduled_time >= start,
                IntakeRecord.scheduled_time <= end
            )
        ).all()
        return {row[0] for row in rows}

    def find_pending_near(
        self,
        session: Session,
        patient_id: int,
        medicine_id: int,
        center: datetime,
        tolerance: timedelta
    ) -> List[IntakeRecord]:
        """Pending occurrences scheduled within +/- tolerance of center"""
        return session.query(IntakeRecord).filter(
            and_(
                IntakeRecord.patient_id == patient_id,
                IntakeRecord.medicine_id == medicine_id,
                IntakeRecord.status == IntakeStatus.PENDING,
                IntakeRecord.scheduled_time >= center - tolerance,
                IntakeRecord.scheduled_time <= center + tolerance
            )
        ).order_by(IntakeRecord.scheduled_time).all()

    def find_pending_between(
        self,
        session: Session,
        start: datetime,
        end: datetime
    ) -> List[IntakeRow]:
        """Pending occurrences due in [start, end] across all patients"""
        return session.query(IntakeRecord, Medicine, MedicineBox).join(
            Medicine, IntakeRecord.medicine_id == Medicine.id
        ).join(
            MedicineBox, Medicine.box_id == MedicineBox.id
        ).filter(
            and_(
                IntakeRecord.status == IntakeStatus.PENDING,
                IntakeRecord.scheduled_time >= start,
                IntakeRecord.scheduled_time <= end
            )
        ).order_by(IntakeRecord.scheduled_time).all()

    def records_for_patient(
        self,
        session: Session,
        patient_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        statuses: Optional[Iterable[IntakeStatus]] = None,
        newest_first: bool = False,
        limit: Optional[int] = None
    ) -> List[IntakeRow]:
        """Patient's occurrences in [start, end) joined with medicine and box"""
        query = session.query(IntakeRecord, Medicine, MedicineBox).join(
            Medicine, IntakeRecord.medicine_id == Medicine.id
        ).join(
            MedicineBox, Medicine.box_id == MedicineBox.id
        ).filter(IntakeRecord.patient_id == patient_id)

        if start is not None:
            query = query.filter(IntakeRecord.scheduled_time >= start)
        if end is not None:
            query = query.filter(IntakeRecord.scheduled_time < end)
        if statuses is not None:
            query = query.filter(IntakeRecord.status.in_(list(statuses)))

        order = IntakeRecord.scheduled_time.desc() if newest_first else IntakeRecord.scheduled_time
        query = query.order_by(order)
        if limit:
            query = query.limit(limit)
        return query.all()

    # ==================== GENERATION WRITES ====================

    def add_occurrences(
        self,
        session: Session,
        patient_id: int,
        medicine_id: int,
        times: Iterable[datetime]
    ) -> int:
        records = [
            IntakeRecord(
                patient_id=patient_id,
                medicine_id=medicine_id,
                scheduled_time=scheduled,
                status=IntakeStatus.PENDING,
                sensor_detected=False
            )
            for scheduled in times
        ]
        session.add_all(records)
        session.flush()
        return len(records)

    def delete_future_pending(self, session: Session, medicine_id: int, now: datetime) -> int:
        """Drop still-pending occurrences scheduled after now; history is kept"""
        return session.query(IntakeRecord).filter(
            and_(
                IntakeRecord.medicine_id == medicine_id,
                IntakeRecord.status == IntakeStatus.PENDING,
                IntakeRecord.scheduled_time > now
            )
        ).delete(synchronize_session=False)

    # ==================== COMPARE-AND-SET ====================

    def transition(
        self,
        session: Session,
        intake_id: int,
        target: IntakeStatus,
        expected: IntakeStatus = IntakeStatus.PENDING,
        **values
    ) -> bool:
        """
        Move one occurrence from expected to target.

        Returns False when the row was no longer in the expected state
        (another writer got there first). Raises InvalidTransitionError for
        transitions missing from the state table.
        """
        if not can_transition(expected, target):
            raise InvalidTransitionError(expected.value, target.value)

        result = session.execute(
            update(IntakeRecord)
            .where(
                IntakeRecord.id == intake_id,
                IntakeRecord.status == expected
            )
            .values(status=target, updated_at=datetime.utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        return result.rowcount == 1

    def mark_overdue_missed(self, session: Session, cutoff: datetime) -> int:
        """Bulk pending -> missed for occurrences scheduled before cutoff"""
        if not can_transition(IntakeStatus.PENDING, IntakeStatus.MISSED):
            raise InvalidTransitionError(IntakeStatus.PENDING.value, IntakeStatus.MISSED.value)

        result = session.execute(
            update(IntakeRecord)
            .where(
                IntakeRecord.status == IntakeStatus.PENDING,
                IntakeRecord.scheduled_time < cutoff
            )
            .values(status=IntakeStatus.MISSED, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        session.commit()
        return result.rowcount

    def claim_alert(
        self,
        session: Session,
        intake_id: int,
        alert_type: AlertType,
        now: datetime,
        cooldown: timedelta
    ) -> bool:
        """
        Claim the right to emit one alert for an occurrence.

        An expired suppression record is refreshed in place; a missing one is
        inserted. A live record, or losing the insert race, means the alert
        was already sent inside the cool-down.
        """
        result = session.execute(
            update(AlertSuppression)
            .where(
                AlertSuppression.intake_id == intake_id,
                AlertSuppression.alert_type == alert_type,
                AlertSuppression.alerted_at <= now - cooldown
            )
            .values(alerted_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            session.commit()
            return True

        live = session.query(AlertSuppression.intake_id).filter(
            and_(
                AlertSuppression.intake_id == intake_id,
                AlertSuppression.alert_type == alert_type
            )
        ).first()
        if live:
            session.rollback()
            return False

        session.add(AlertSuppression(intake_id=intake_id, alert_type=alert_type, alerted_at=now))
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            logger.info(f"Alert {alert_type.value} for intake {intake_id} claimed concurrently")
            return False
        return True


# Singleton instance
intake_store = IntakeStore()
