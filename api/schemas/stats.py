"""
Stats Schemas
Pydantic models for adherence statistics responses
"""

from typing import Optional
from pydantic import BaseModel, Field


class StatusCounts(BaseModel):
    """Occurrence counts per state with the derived rate"""
    total: int = 0
    taken: int = 0
    missed: int = 0
    skipped: int = 0
    pending: int = 0
    adherence_rate: Optional[float] = Field(
        None,
        description="taken / (taken + missed) in percent; null when there is no data"
    )


class AdherenceSummary(StatusCounts):
    """Adherence over a trailing period"""
    patient_id: int
    period_days: int
    start_date: str
    end_date: str


class DailyAdherence(StatusCounts):
    date: str


class MedicineTypeAdherence(StatusCounts):
    medicine_type: str
    medicine_count: int


class TimeOfDayAdherence(StatusCounts):
    time_period: str
    start_hour: int
    end_hour: int


class MonthlyAdherence(StatusCounts):
    month: str


class NextIntake(BaseModel):
    intake_id: int
    medicine_name: str
    compartment_no: int
    scheduled_time: str


class DashboardResponse(BaseModel):
    """Home screen summary"""
    patient_id: int
    today: StatusCounts
    week_adherence_rate: Optional[float] = None
    next_intake: Optional[NextIntake] = None
    active_boxes: int
    active_medicines: int
