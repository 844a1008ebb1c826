"""
Patient Schemas
Request and response bodies for the patient profile endpoints
"""

from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict


class PatientCreate(BaseModel):
    """Profile of a pill box owner"""
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    # Plain string so fixtures can use reserved test domains
    email: str
    phone: Optional[str] = Field(None, max_length=20)


class PatientResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool
    box_count: int = 0
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
