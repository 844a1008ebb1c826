"""
Test Tools Package
Tests for the tools module (notification dispatch)
"""

__all__ = [
    "test_notification_service",
]
