"""
API Dependencies
Common dependencies for FastAPI endpoints
"""

from fastapi import Depends, HTTPException, status, Header
from sqlalchemy.orm import Session

# Re-exported so routers and dependency overrides share one callable
from database import get_db


async def get_current_patient_id(
    x_patient_id: int = Header(..., alias="X-Patient-Id"),
    db: Session = Depends(get_db)
) -> int:
    """
    Identify the requesting patient.

    Authentication happens upstream; this only checks that the forwarded
    patient id exists and is active.
    """
    from models import Patient

    patient = db.query(Patient).filter(Patient.id == x_patient_id).first()
    if not patient:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Patient {x_patient_id} not found"
        )

    if not patient.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Patient {x_patient_id} is not active"
        )

    return x_patient_id


class ServiceDependency:
    """
    Dependency injection for services
    """

    @staticmethod
    def get_medicine_service():
        from services.medicine_service import medicine_service
        return medicine_service

    @staticmethod
    def get_schedule_service():
        from services.schedule_service import schedule_service
        return schedule_service

    @staticmethod
    def get_intake_service():
        from services.intake_service import intake_service
        return intake_service

    @staticmethod
    def get_adherence_service():
        from services.adherence_service import adherence_service
        return adherence_service


# Service dependency instances
services = ServiceDependency()
