"""
Medicine Schemas
Pydantic models for pill box and medicine requests and responses
"""

from typing import Optional, List
from datetime import date
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from models import MedicineType
from services.schedule_service import validate_time_slots


# ==================== BOX SCHEMAS ====================

class BoxCreate(BaseModel):
    """Schema for registering a pill box"""
    box_name: Optional[str] = Field(None, max_length=100)
    box_code: Optional[str] = Field(None, min_length=1, max_length=50)
    compartments: int = Field(default=7, ge=1, le=28)


class BoxResponse(BaseModel):
    """Pill box response"""
    id: int
    patient_id: int
    box_code: str
    box_name: Optional[str] = None
    compartments: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


# ==================== MEDICINE SCHEMAS ====================

class MedicineBase(BaseModel):
    """Base medicine schema"""
    medicine_name: str = Field(..., min_length=1, max_length=200)
    medicine_type: MedicineType = MedicineType.PRESCRIPTION
    dosage: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class MedicineCreate(MedicineBase):
    """Schema for adding a medicine to a compartment"""
    box_id: int
    compartment_no: int = Field(..., ge=1)
    time_slots: List[str] = Field(default_factory=list, description="Local dose times, HH:MM")
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("time_slots")
    @classmethod
    def check_time_slots(cls, value: List[str]) -> List[str]:
        return validate_time_slots(value)

    @model_validator(mode="after")
    def check_date_range(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class MedicineUpdate(BaseModel):
    """Schema for editing a medicine; omitted fields are left unchanged"""
    medicine_name: Optional[str] = Field(None, min_length=1, max_length=200)
    medicine_type: Optional[MedicineType] = None
    dosage: Optional[str] = Field(None, max_length=100)
    compartment_no: Optional[int] = Field(None, ge=1)
    time_slots: Optional[List[str]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None

    @field_validator("time_slots")
    @classmethod
    def check_time_slots(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        return validate_time_slots(value)


class MedicineResponse(MedicineBase):
    """Medicine response"""
    id: int
    box_id: int
    patient_id: int
    compartment_no: int
    time_slots: List[str]
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool
    occurrences_created: Optional[int] = None
    occurrences_removed: Optional[int] = None
