"""
Intake API Router
Endpoints for manual dose confirmation and schedule reads
"""

from typing import List, Optional
from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import get_db, get_current_patient_id, services
from api.schemas.intake import (
    IntakeConfirm,
    IntakeSkip,
    IntakeEntry,
    IntakeUpdateResponse,
)


router = APIRouter(prefix="/intake", tags=["intake"])


# ==================== MANUAL CONFIRMATION ====================

@router.post("/{intake_id}/confirm", response_model=IntakeUpdateResponse)
async def confirm_intake(
    intake_id: int,
    payload: Optional[IntakeConfirm] = None,
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Mark a dose as taken

    Returns 409 if the dose was already taken, missed or skipped.
    """
    intake_service = services.get_intake_service()

    return await intake_service.record_manual_confirmation(
        intake_id,
        patient_id,
        note=payload.note if payload else None,
        db=db
    )


@router.post("/{intake_id}/skip", response_model=IntakeUpdateResponse)
async def skip_intake(
    intake_id: int,
    payload: Optional[IntakeSkip] = None,
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Mark a dose as deliberately skipped
    """
    intake_service = services.get_intake_service()

    return await intake_service.record_manual_skip(
        intake_id,
        patient_id,
        reason=payload.reason if payload else None,
        db=db
    )


# ==================== SCHEDULE READS ====================

@router.get("/today", response_model=List[IntakeEntry])
async def get_today_schedule(
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Today's doses in scheduled order
    """
    schedule_service = services.get_schedule_service()
    return await schedule_service.get_today_schedule(patient_id, db=db)


@router.get("/upcoming", response_model=List[IntakeEntry])
async def get_upcoming_doses(
    hours: int = Query(24, ge=1, le=168),
    limit: int = Query(20, ge=1, le=100),
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Pending doses due in the next few hours
    """
    schedule_service = services.get_schedule_service()
    return await schedule_service.get_upcoming_doses(patient_id, hours=hours, limit=limit, db=db)


@router.get("/history", response_model=List[IntakeEntry])
async def get_intake_history(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Intake records between two dates (inclusive), newest first
    """
    schedule_service = services.get_schedule_service()
    return await schedule_service.get_intake_history(
        patient_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        db=db
    )
