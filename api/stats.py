"""
Stats API Router
Endpoints for adherence statistics
"""

from typing import List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import get_db, get_current_patient_id, services
from api.schemas.stats import (
    AdherenceSummary,
    DailyAdherence,
    MedicineTypeAdherence,
    TimeOfDayAdherence,
    MonthlyAdherence,
    DashboardResponse,
)


router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("/adherence", response_model=AdherenceSummary)
async def get_adherence(
    period: int = Query(7, ge=1, le=365, description="Number of past days"),
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Adherence rate over a trailing period

    adherence_rate is null when no dose in the period has an outcome yet.
    """
    adherence_service = services.get_adherence_service()
    return await adherence_service.get_adherence(patient_id, period_days=period, db=db)


@router.get("/daily", response_model=List[DailyAdherence])
async def get_daily_adherence(
    period: int = Query(7, ge=1, le=365),
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Per-day adherence, newest first
    """
    adherence_service = services.get_adherence_service()
    return await adherence_service.get_daily_adherence(patient_id, period_days=period, db=db)


@router.get("/by-medicine-type", response_model=List[MedicineTypeAdherence])
async def get_adherence_by_medicine_type(
    period: int = Query(30, ge=1, le=365),
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Adherence per medicine type
    """
    adherence_service = services.get_adherence_service()
    return await adherence_service.get_adherence_by_medicine_type(patient_id, period_days=period, db=db)


@router.get("/by-time-of-day", response_model=List[TimeOfDayAdherence])
async def get_adherence_by_time_of_day(
    period: int = Query(30, ge=1, le=365),
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Adherence per time-of-day bucket (night, morning, afternoon, evening)
    """
    adherence_service = services.get_adherence_service()
    return await adherence_service.get_adherence_by_time_of_day(patient_id, period_days=period, db=db)


@router.get("/monthly", response_model=List[MonthlyAdherence])
async def get_monthly_adherence(
    months: int = Query(6, ge=1, le=24),
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Monthly adherence trend, oldest month first
    """
    adherence_service = services.get_adherence_service()
    return await adherence_service.get_monthly_adherence(patient_id, months=months, db=db)


@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Home screen summary
    """
    adherence_service = services.get_adherence_service()
    return await adherence_service.get_dashboard(patient_id, db=db)
