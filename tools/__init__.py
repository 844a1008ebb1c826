"""
Tools Package
Utility tools for the SmartPillBox engine
"""

from .notification_service import (
    NotificationSink,
    NotificationTarget,
    NotificationEvent,
    NotificationDispatcher,
    LoggingNotificationSink,
    RecordingNotificationSink,
    SentNotification,
    notification_dispatcher,
    room_key
)

__all__ = [
    "NotificationSink",
    "NotificationTarget",
    "NotificationEvent",
    "NotificationDispatcher",
    "LoggingNotificationSink",
    "RecordingNotificationSink",
    "SentNotification",
    "notification_dispatcher",
    "room_key"
]
