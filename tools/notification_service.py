"""
Notification Service Tool
Fire-and-forget fan-out of intake state changes to real-time subscribers.

Events are addressed either to a patient (apps, dashboards) or to a device
(the pill box itself, for LED/buzzer cues). Delivery is never guaranteed:
each push gets one bounded attempt and failures are logged and dropped.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from config import settings


logger = logging.getLogger(__name__)


class NotificationTarget(str, Enum):
    """Addressing modes of the sink"""
    PATIENT = "patient"
    DEVICE = "device"


class NotificationEvent(str, Enum):
    """Event names pushed to subscribers"""
    MEDICINE_TAKEN = "medicine-taken"
    MEDICINE_SKIPPED = "medicine-skipped"
    ALERT_CLEARED = "alert-cleared"
    UPCOMING_DOSE = "upcoming-dose"


def room_key(target_kind: Union[NotificationTarget, str], target_id: Any) -> str:
    """Room name shared by the sink and its subscribers, e.g. 'patient-3'"""
    kind = target_kind.value if isinstance(target_kind, NotificationTarget) else str(target_kind)
    return f"{kind}-{target_id}"


class NotificationSink(ABC):
    """Receives engine events. Implementations must not rely on a return value."""

    @abstractmethod
    async def notify(
        self,
        target_kind: NotificationTarget,
        target_id: Union[int, str],
        event_type: NotificationEvent,
        payload: Dict[str, Any]
    ) -> None:
        ...


class LoggingNotificationSink(NotificationSink):
    """Default sink: writes events to the log"""

    async def notify(self, target_kind, target_id, event_type, payload) -> None:
        logger.info(f"[{room_key(target_kind, target_id)}] {event_type.value}: {payload}")


@dataclass
class SentNotification:
    """One event as seen by a RecordingNotificationSink"""
    target_kind: NotificationTarget
    target_id: Union[int, str]
    event_type: NotificationEvent
    payload: Dict[str, Any]
    sent_at: datetime = field(default_factory=datetime.utcnow)


class RecordingNotificationSink(NotificationSink):
    """Keeps every event in memory; used by tests and local tooling"""

    def __init__(self):
        self.sent: List[SentNotification] = []

    async def notify(self, target_kind, target_id, event_type, payload) -> None:
        self.sent.append(SentNotification(target_kind, target_id, event_type, dict(payload)))

    def events(
        self,
        event_type: Optional[NotificationEvent] = None,
        target_kind: Optional[NotificationTarget] = None
    ) -> List[SentNotification]:
        return [
            n for n in self.sent
            if (event_type is None or n.event_type == event_type)
            and (target_kind is None or n.target_kind == target_kind)
        ]

    def clear(self):
        self.sent.clear()


class NotificationDispatcher:
    """
    Bounded, failure-swallowing front for a NotificationSink.

    The engine always commits its state change first and only then calls
    push(); whatever happens inside the sink cannot undo the transition.
    """

    def __init__(
        self,
        sink: Optional[NotificationSink] = None,
        timeout_seconds: Optional[float] = None
    ):
        self._sink = sink or LoggingNotificationSink()
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.NOTIFY_TIMEOUT_SECONDS

    @property
    def sink(self) -> NotificationSink:
        return self._sink

    def set_sink(self, sink: NotificationSink):
        """Swap the sink, e.g. to the websocket hub at startup"""
        self._sink = sink
        logger.info(f"Notification sink set to {type(sink).__name__}")

    async def push(
        self,
        target_kind: NotificationTarget,
        target_id: Union[int, str],
        event_type: NotificationEvent,
        payload: Dict[str, Any]
    ) -> bool:
        """
        Make one attempt to deliver an event.

        Returns:
            True if the sink accepted it in time; False if it timed out or
            raised (the event is dropped, never retried)
        """
        try:
            await asyncio.wait_for(
                self._sink.notify(target_kind, target_id, event_type, payload),
                timeout=self.timeout_seconds
            )
            return True
        except asyncio.TimeoutError:
            logger.warning(
                f"Dropped {event_type.value} for {room_key(target_kind, target_id)}: "
                f"sink timed out after {self.timeout_seconds}s"
            )
        except Exception as e:
            logger.warning(
                f"Dropped {event_type.value} for {room_key(target_kind, target_id)}: {e}"
            )
        return False


# Singleton instance
notification_dispatcher = NotificationDispatcher()
