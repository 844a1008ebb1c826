"""
Database Models
SQLAlchemy ORM models for SmartPillBox
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Date, Enum, Index, UniqueConstraint, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import Enum as PyEnum
from typing import Dict, FrozenSet

from config import TableNames
from database import Base


# ==================== ENUMS ====================

class IntakeStatus(str, PyEnum):
    """State of a scheduled dose occurrence"""
    PENDING = "pending"
    TAKEN = "taken"
    MISSED = "missed"
    SKIPPED = "skipped"


# Exhaustive transition table: source state -> allowed target states.
INTAKE_TRANSITIONS: Dict[IntakeStatus, FrozenSet[IntakeStatus]] = {
    IntakeStatus.PENDING: frozenset({IntakeStatus.TAKEN, IntakeStatus.MISSED, IntakeStatus.SKIPPED}),
    IntakeStatus.TAKEN: frozenset(),
    IntakeStatus.MISSED: frozenset(),
    IntakeStatus.SKIPPED: frozenset(),
}


def can_transition(source: IntakeStatus, target: IntakeStatus) -> bool:
    """Check a transition against the table"""
    return target in INTAKE_TRANSITIONS.get(source, frozenset())


def is_terminal(status: IntakeStatus) -> bool:
    return not INTAKE_TRANSITIONS.get(status)


class MedicineType(str, PyEnum):
    """Kinds of medicine kept in a box compartment"""
    PRESCRIPTION = "prescription"
    OTC = "otc"
    VITAMIN = "vitamin"
    SUPPLEMENT = "supplement"


class SensorEventType(str, PyEnum):
    """Compartment lid events reported by the box"""
    OPEN = "open"
    CLOSE = "close"


class SignalOutcome(str, PyEnum):
    """What the correlator did with a sensor signal"""
    CONFIRMED = "confirmed"
    DUPLICATE = "duplicate"
    NO_CANDIDATE = "no_candidate"
    UNKNOWN_DEVICE = "unknown_device"
    IGNORED = "ignored"


class AlertType(str, PyEnum):
    """Alert kinds subject to duplicate suppression"""
    UPCOMING = "upcoming"


# ==================== MODELS ====================

class Patient(Base):
    """Patient owning pill boxes and intake records"""
    __tablename__ = TableNames.PATIENTS

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True)
    phone = Column(String(20))

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    boxes = relationship("MedicineBox", back_populates="patient", cascade="all, delete-orphan")
    # Intake history outlives edits; the foreign key refuses hard deletes
    intake_records = relationship("IntakeRecord", back_populates="patient", passive_deletes="all")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class MedicineBox(Base):
    """Physical pill box; box_code is the device id used by the sensor path"""
    __tablename__ = TableNames.MEDICINE_BOXES

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    box_code = Column(String(50), unique=True, index=True, nullable=False)
    box_name = Column(String(100))
    compartments = Column(Integer, default=7)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    patient = relationship("Patient", back_populates="boxes")
    medicines = relationship("Medicine", back_populates="box", cascade="all, delete-orphan")


class Medicine(Base):
    """Prescription definition stored in one box compartment"""
    __tablename__ = TableNames.MEDICINES

    id = Column(Integer, primary_key=True, index=True)
    box_id = Column(Integer, ForeignKey("medicine_boxes.id"), nullable=False)
    compartment_no = Column(Integer, nullable=False)

    medicine_name = Column(String(200), nullable=False)
    medicine_type = Column(Enum(MedicineType), default=MedicineType.PRESCRIPTION)
    dosage = Column(String(100))

    # Recurrence: local "HH:MM" slots within [start_date, end_date]
    time_slots = Column(JSON, default=list)
    start_date = Column(Date)
    end_date = Column(Date)

    notes = Column(Text)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    box = relationship("MedicineBox", back_populates="medicines")
    intake_records = relationship("IntakeRecord", back_populates="medicine", passive_deletes="all")

    __table_args__ = (
        Index("ix_medicines_box_compartment", "box_id", "compartment_no", "is_active"),
    )

    @property
    def patient_id(self) -> int:
        return self.box.patient_id


class IntakeRecord(Base):
    """One expected dose occurrence and its outcome"""
    __tablename__ = TableNames.INTAKE_RECORDS

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="RESTRICT"), nullable=False)
    medicine_id = Column(Integer, ForeignKey("medicines.id", ondelete="RESTRICT"), nullable=False)

    scheduled_time = Column(DateTime, nullable=False)
    taken_time = Column(DateTime)
    status = Column(Enum(IntakeStatus), default=IntakeStatus.PENDING, nullable=False)

    # Set when the pill box sensor, not a person, confirmed the dose
    sensor_detected = Column(Boolean, default=False, nullable=False)
    notes = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    patient = relationship("Patient", back_populates="intake_records")
    medicine = relationship("Medicine", back_populates="intake_records")

    __table_args__ = (
        UniqueConstraint("medicine_id", "scheduled_time", name="uq_intake_medicine_time"),
        Index("ix_intake_patient_scheduled", "patient_id", "scheduled_time"),
        Index("ix_intake_status_scheduled", "status", "scheduled_time"),
    )


class SensorEvent(Base):
    """Audit log of raw pill box telemetry"""
    __tablename__ = TableNames.SENSOR_EVENTS

    id = Column(Integer, primary_key=True, index=True)
    box_code = Column(String(50), nullable=False, index=True)
    compartment_no = Column(Integer, nullable=False)
    event_type = Column(String(20))
    sensor_value = Column(Integer)

    signal_time = Column(DateTime)
    received_at = Column(DateTime, default=datetime.utcnow, index=True)

    outcome = Column(Enum(SignalOutcome))
    intake_id = Column(Integer, ForeignKey("intake_records.id", ondelete="SET NULL"))


class AlertSuppression(Base):
    """Marks an alert already emitted for an occurrence inside its cool-down"""
    __tablename__ = TableNames.ALERT_SUPPRESSIONS

    intake_id = Column(Integer, ForeignKey("intake_records.id", ondelete="CASCADE"), primary_key=True)
    alert_type = Column(Enum(AlertType), primary_key=True)
    alerted_at = Column(DateTime, nullable=False)
