"""
Services Module
Business logic layer for the SmartPillBox intake engine
"""

from services.intake_store import IntakeStore, intake_store
from services.schedule_service import ScheduleService, schedule_service
from services.medicine_service import MedicineService, medicine_service
from services.intake_service import IntakeService, intake_service
from services.adherence_service import AdherenceService, adherence_service


__all__ = [
    # Service classes
    "IntakeStore",
    "ScheduleService",
    "MedicineService",
    "IntakeService",
    "AdherenceService",
    # Singleton instances
    "intake_store",
    "schedule_service",
    "medicine_service",
    "intake_service",
    "adherence_service",
]
