"""
Intake Schemas
Pydantic models for intake confirmation, schedule reads and device telemetry
"""

from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from models import IntakeStatus, SensorEventType, SignalOutcome


# ==================== REQUEST SCHEMAS ====================

class IntakeConfirm(BaseModel):
    """Manual confirmation of a dose"""
    note: Optional[str] = Field(None, max_length=500)


class IntakeSkip(BaseModel):
    """Deliberate skip of a dose"""
    reason: Optional[str] = Field(None, max_length=500)


class SensorData(BaseModel):
    """Telemetry posted by a pill box"""
    box_code: str = Field(..., min_length=1, max_length=50)
    compartment_no: int = Field(..., ge=1)
    event_type: SensorEventType = SensorEventType.OPEN
    sensor_value: Optional[int] = None
    timestamp: Optional[datetime] = Field(None, description="Device time of the event (local)")


class DeviceStatus(BaseModel):
    """Heartbeat posted by a pill box"""
    box_code: str = Field(..., min_length=1, max_length=50)
    status: str = Field(..., max_length=50)
    ip_address: Optional[str] = None
    firmware_version: Optional[str] = None
    uptime: Optional[int] = Field(None, ge=0)


# ==================== RESPONSE SCHEMAS ====================

class IntakeEntry(BaseModel):
    """One scheduled occurrence"""
    intake_id: int
    medicine_id: int
    medicine_name: str
    dosage: Optional[str] = None
    compartment_no: int
    box_name: Optional[str] = None
    scheduled_time: datetime
    status: IntakeStatus
    taken_time: Optional[datetime] = None
    sensor_detected: bool = False
    notes: Optional[str] = None
    minutes_until: Optional[int] = None


class IntakeUpdateResponse(BaseModel):
    """Result of a manual confirmation or skip"""
    intake_id: int
    status: IntakeStatus
    taken_time: Optional[datetime] = None
    sensor_detected: bool = False
    notes: Optional[str] = None


class SensorDataResponse(BaseModel):
    """What the engine did with a telemetry event"""
    success: bool = True
    outcome: SignalOutcome
    event_id: Optional[int] = None
    intake_id: Optional[int] = None
    patient_id: Optional[int] = None
    medicine_id: Optional[int] = None
    taken_time: Optional[datetime] = None


class DeviceDose(BaseModel):
    """Next dose as shown on the pill box"""
    intake_id: int
    compartment_no: int
    medicine_name: str
    scheduled_time: datetime
