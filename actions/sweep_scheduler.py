"""
Sweep Scheduler
Background loop that reconciles overdue and upcoming intake occurrences.

Each tick runs two independent scans:
- missed sweep: pending occurrences older than the grace window become missed
- upcoming sweep: pending occurrences due within the lookahead window get one
  upcoming-dose alert per cool-down, to the patient and to the pill box

Both scans are idempotent, so a failed or partial tick is simply retried on
the next one.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, ContextManager, Dict, List, Optional, Any

from sqlalchemy.orm import Session

from config import settings
from database import get_db_context
from models import AlertType
from services.intake_store import IntakeStore, intake_store
from tools.notification_service import (
    NotificationDispatcher,
    NotificationEvent,
    NotificationTarget,
    notification_dispatcher,
)


logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Outcome of one tick"""
    ran_at: datetime
    missed: int = 0
    alerted: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class _DueDose:
    intake_id: int
    patient_id: int
    box_code: str
    medicine_name: str
    compartment_no: int
    scheduled_time: datetime


class SweepScheduler:
    """
    Owned background task with a start/stop lifecycle.

    The clock and the session scope are injectable so tests can drive
    run_tick() with logical time instead of waiting on the timer.
    """

    def __init__(
        self,
        interval_seconds: Optional[float] = None,
        grace_minutes: Optional[int] = None,
        lookahead_minutes: Optional[int] = None,
        cooldown_minutes: Optional[int] = None,
        store: Optional[IntakeStore] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        session_scope: Callable[[], ContextManager[Session]] = get_db_context,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.SWEEP_INTERVAL_SECONDS
        self.grace = timedelta(
            minutes=grace_minutes if grace_minutes is not None else settings.MISSED_GRACE_MINUTES
        )
        self.lookahead = timedelta(
            minutes=lookahead_minutes if lookahead_minutes is not None else settings.UPCOMING_LOOKAHEAD_MINUTES
        )
        self.cooldown = timedelta(
            minutes=cooldown_minutes if cooldown_minutes is not None else settings.ALERT_COOLDOWN_MINUTES
        )
        self.store = store or intake_store
        self.dispatcher = dispatcher or notification_dispatcher
        self._session_scope = session_scope
        self._clock = clock

        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.ticks = 0
        self.last_result: Optional[SweepResult] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ==================== LIFECYCLE ====================

    def start(self):
        """Schedule the loop on the running event loop; no-op if already running"""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="intake-sweep")
        logger.info(
            f"Sweep scheduler started (interval {self.interval_seconds}s, "
            f"grace {self.grace}, lookahead {self.lookahead}, cool-down {self.cooldown})"
        )

    async def stop(self, timeout: Optional[float] = None):
        """
        Stop scheduling ticks.

        Waits for the in-flight tick to finish; if timeout elapses first the
        tick is cancelled and abandoned.
        """
        if self._task is None:
            return

        self._stop_event.set()
        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        if not done:
            logger.warning("Sweep tick did not finish in time, cancelling it")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        self._task = None
        logger.info(f"Sweep scheduler stopped after {self.ticks} ticks")

    async def _run(self):
        while not self._stop_event.is_set():
            await self.run_tick()
            # The next wait starts only once the tick has returned
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    # ==================== TICK ====================

    async def run_tick(self, now: Optional[datetime] = None) -> SweepResult:
        """Run both scans once. Never raises."""
        now = now or self._clock()
        result = SweepResult(ran_at=now)

        try:
            result.missed = self._sweep_missed(now)
        except Exception as e:
            logger.exception("Missed sweep failed, retrying next tick")
            result.errors.append(f"missed: {e}")

        try:
            result.alerted = await self._sweep_upcoming(now)
        except Exception as e:
            logger.exception("Upcoming sweep failed, retrying next tick")
            result.errors.append(f"upcoming: {e}")

        self.ticks += 1
        self.last_result = result
        if result.missed or result.alerted:
            logger.info(f"Sweep at {now.isoformat()}: {result.missed} missed, {result.alerted} alerted")
        return result

    def _sweep_missed(self, now: datetime) -> int:
        with self._session_scope() as session:
            return self.store.mark_overdue_missed(session, now - self.grace)

    async def _sweep_upcoming(self, now: datetime) -> int:
        alerted = 0
        with self._session_scope() as session:
            rows = self.store.find_pending_between(session, now, now + self.lookahead)
            # Copy out before the claims commit and expire the ORM objects
            due = [
                _DueDose(
                    intake_id=record.id,
                    patient_id=record.patient_id,
                    box_code=box.box_code,
                    medicine_name=medicine.medicine_name,
                    compartment_no=medicine.compartment_no,
                    scheduled_time=record.scheduled_time
                )
                for record, medicine, box in rows
            ]

            for dose in due:
                if not self.store.claim_alert(session, dose.intake_id, AlertType.UPCOMING, now, self.cooldown):
                    continue
                await self._announce(dose, now)
                alerted += 1
        return alerted

    async def _announce(self, dose: _DueDose, now: datetime):
        minutes_until = max(0, int((dose.scheduled_time - now).total_seconds() // 60))
        await self.dispatcher.push(
            NotificationTarget.PATIENT,
            dose.patient_id,
            NotificationEvent.UPCOMING_DOSE,
            {
                "intake_id": dose.intake_id,
                "medicine_name": dose.medicine_name,
                "compartment_no": dose.compartment_no,
                "scheduled_time": dose.scheduled_time.isoformat(),
                "minutes_until": minutes_until
            }
        )
        await self.dispatcher.push(
            NotificationTarget.DEVICE,
            dose.box_code,
            NotificationEvent.UPCOMING_DOSE,
            {
                "compartment_no": dose.compartment_no,
                "scheduled_time": dose.scheduled_time.isoformat()
            }
        )

    def status(self) -> Dict[str, Any]:
        last = self.last_result
        return {
            "running": self.running,
            "ticks": self.ticks,
            "interval_seconds": self.interval_seconds,
            "last_run": last.ran_at.isoformat() if last else None,
            "last_missed": last.missed if last else None,
            "last_alerted": last.alerted if last else None,
            "last_errors": list(last.errors) if last else []
        }


# Singleton instance
sweep_scheduler = SweepScheduler()
