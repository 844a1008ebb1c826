"""
Medicine Service
Business logic for pill boxes and the medicines stored in their compartments.

Every change to a medicine's recurrence (create, edit, deactivate) is
followed by occurrence generation or regeneration so the intake schedule
always mirrors the current prescription.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from datetime import datetime, date
from sqlalchemy.orm import Session
from sqlalchemy import and_

from database import get_db_context
import models
from models import MedicineType
from services.exceptions import BoxNotFoundError, MedicineNotFoundError
from services.schedule_service import ScheduleService, schedule_service, validate_time_slots


logger = logging.getLogger(__name__)


@dataclass
class CompartmentRef:
    """Result of resolving a (box code, compartment) pair"""
    medicine_id: int
    patient_id: int
    medicine_name: str
    box_code: str
    compartment_no: int


def medicine_to_dict(medicine: models.Medicine) -> Dict[str, Any]:
    return {
        "id": medicine.id,
        "box_id": medicine.box_id,
        "patient_id": medicine.box.patient_id,
        "compartment_no": medicine.compartment_no,
        "medicine_name": medicine.medicine_name,
        "medicine_type": medicine.medicine_type.value if medicine.medicine_type else None,
        "dosage": medicine.dosage,
        "time_slots": list(medicine.time_slots or []),
        "start_date": medicine.start_date.isoformat() if medicine.start_date else None,
        "end_date": medicine.end_date.isoformat() if medicine.end_date else None,
        "notes": medicine.notes,
        "is_active": bool(medicine.is_active)
    }


def box_to_dict(box: models.MedicineBox) -> Dict[str, Any]:
    return {
        "id": box.id,
        "patient_id": box.patient_id,
        "box_code": box.box_code,
        "box_name": box.box_name,
        "compartments": box.compartments,
        "is_active": bool(box.is_active)
    }


class MedicineService:
    """
    Service for pill box and medicine management
    """

    UPDATABLE_FIELDS = {
        "medicine_name", "medicine_type", "dosage", "time_slots",
        "start_date", "end_date", "notes", "compartment_no"
    }

    # Fields an edit may clear by sending null
    NULLABLE_FIELDS = {"dosage", "start_date", "end_date", "notes"}

    def __init__(self, schedule: Optional[ScheduleService] = None):
        self.schedule = schedule or schedule_service

    # ==================== BOXES ====================

    async def create_box(
        self,
        patient_id: int,
        box_name: Optional[str] = None,
        box_code: Optional[str] = None,
        compartments: int = 7,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """Register a pill box for a patient; a code is generated if none is given"""
        def _create(session: Session) -> Dict[str, Any]:
            patient = session.query(models.Patient).filter(
                models.Patient.id == patient_id
            ).first()
            if not patient:
                raise ValueError(f"Patient {patient_id} not found")

            code = box_code or f"BOX{uuid.uuid4().hex[:8].upper()}"
            existing = session.query(models.MedicineBox).filter(
                models.MedicineBox.box_code == code
            ).first()
            if existing:
                raise ValueError(f"Box code {code} is already registered")

            box = models.MedicineBox(
                patient_id=patient_id,
                box_code=code,
                box_name=box_name or "My pill box",
                compartments=compartments,
                is_active=True
            )
            session.add(box)
            session.commit()
            session.refresh(box)

            logger.info(f"Registered box {code} for patient {patient_id}")
            return box_to_dict(box)

        if db:
            return _create(db)

        with get_db_context() as session:
            return _create(session)

    async def list_boxes(
        self,
        patient_id: int,
        db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """Active boxes of a patient, newest first"""
        def _get(session: Session) -> List[Dict[str, Any]]:
            boxes = session.query(models.MedicineBox).filter(
                and_(
                    models.MedicineBox.patient_id == patient_id,
                    models.MedicineBox.is_active == True
                )
            ).order_by(models.MedicineBox.created_at.desc(), models.MedicineBox.id.desc()).all()
            return [box_to_dict(box) for box in boxes]

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def list_medicines(
        self,
        box_id: int,
        patient_id: int,
        db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """Active medicines in one of the patient's boxes, by compartment"""
        def _get(session: Session) -> List[Dict[str, Any]]:
            box = session.get(models.MedicineBox, box_id)
            if box is None:
                raise BoxNotFoundError(f"Box {box_id} not found")
            if box.patient_id != patient_id:
                raise PermissionError(f"Box {box_id} does not belong to patient {patient_id}")

            medicines = session.query(models.Medicine).filter(
                and_(
                    models.Medicine.box_id == box_id,
                    models.Medicine.is_active == True
                )
            ).order_by(models.Medicine.compartment_no).all()
            return [medicine_to_dict(medicine) for medicine in medicines]

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    # ==================== MEDICINES ====================

    def _owned_medicine(self, session: Session, medicine_id: int, patient_id: int) -> models.Medicine:
        medicine = session.query(models.Medicine).filter(
            models.Medicine.id == medicine_id
        ).first()
        if not medicine:
            raise MedicineNotFoundError(f"Medicine {medicine_id} not found")
        if medicine.box.patient_id != patient_id:
            raise PermissionError(f"Medicine {medicine_id} does not belong to patient {patient_id}")
        return medicine

    def _check_compartment(
        self,
        session: Session,
        box: models.MedicineBox,
        compartment_no: int,
        exclude_medicine_id: Optional[int] = None
    ):
        if not 1 <= compartment_no <= (box.compartments or 0):
            raise ValueError(
                f"Compartment {compartment_no} out of range for box {box.box_code} "
                f"(1-{box.compartments})"
            )
        query = session.query(models.Medicine).filter(
            and_(
                models.Medicine.box_id == box.id,
                models.Medicine.compartment_no == compartment_no,
                models.Medicine.is_active == True
            )
        )
        if exclude_medicine_id is not None:
            query = query.filter(models.Medicine.id != exclude_medicine_id)
        if query.first():
            raise ValueError(f"Compartment {compartment_no} of box {box.box_code} is already in use")

    async def get_medicine(
        self,
        medicine_id: int,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """Medicine definition read"""
        def _get(session: Session) -> Dict[str, Any]:
            medicine = session.query(models.Medicine).filter(
                models.Medicine.id == medicine_id
            ).first()
            if not medicine:
                raise MedicineNotFoundError(f"Medicine {medicine_id} not found")
            return medicine_to_dict(medicine)

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def create_medicine(
        self,
        patient_id: int,
        box_id: int,
        compartment_no: int,
        medicine_name: str,
        time_slots: List[str],
        medicine_type: MedicineType = MedicineType.PRESCRIPTION,
        dosage: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Add a medicine to a box compartment and materialise its schedule

        Args:
            patient_id: Requesting patient (must own the box)
            box_id: Target pill box
            compartment_no: 1-based compartment number
            medicine_name: Display name
            time_slots: Local "HH:MM" dose times
            start_date: First day of the prescription (default: today)
            end_date: Last day, None for open-ended
            now: Generation reference time (default: clock)
            db: Database session

        Returns:
            Medicine dict with the number of occurrences created
        """
        slots = validate_time_slots(time_slots)
        if start_date and end_date and end_date < start_date:
            raise ValueError("end_date must not be before start_date")

        async def _create(session: Session) -> Dict[str, Any]:
            box = session.query(models.MedicineBox).filter(
                models.MedicineBox.id == box_id
            ).first()
            if not box or not box.is_active:
                raise ValueError(f"Box {box_id} not found")
            if box.patient_id != patient_id:
                raise PermissionError(f"Box {box_id} does not belong to patient {patient_id}")
            self._check_compartment(session, box, compartment_no)

            medicine = models.Medicine(
                box_id=box.id,
                compartment_no=compartment_no,
                medicine_name=medicine_name,
                medicine_type=medicine_type,
                dosage=dosage,
                time_slots=slots,
                start_date=start_date or (now or datetime.now()).date(),
                end_date=end_date,
                notes=notes,
                is_active=True
            )
            session.add(medicine)
            session.commit()
            session.refresh(medicine)
            logger.info(f"Added medicine {medicine_name} to box {box.box_code}#{compartment_no}")

            created = await self.schedule.generate_occurrences(medicine.id, now=now, db=session)
            result = medicine_to_dict(medicine)
            result["occurrences_created"] = created
            return result

        if db:
            return await _create(db)

        with get_db_context() as session:
            return await _create(session)

    async def update_medicine(
        self,
        medicine_id: int,
        patient_id: int,
        updates: Dict[str, Any],
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """Edit a medicine and rebuild its future schedule"""
        changes = {
            k: v for k, v in updates.items()
            if k in self.UPDATABLE_FIELDS and (v is not None or k in self.NULLABLE_FIELDS)
        }
        if "time_slots" in changes:
            changes["time_slots"] = validate_time_slots(changes["time_slots"] or [])

        async def _update(session: Session) -> Dict[str, Any]:
            medicine = self._owned_medicine(session, medicine_id, patient_id)
            if not medicine.is_active:
                raise ValueError(f"Medicine {medicine_id} is no longer active")

            if "compartment_no" in changes and changes["compartment_no"] != medicine.compartment_no:
                self._check_compartment(
                    session, medicine.box, changes["compartment_no"], exclude_medicine_id=medicine.id
                )

            for field, value in changes.items():
                setattr(medicine, field, value)

            if medicine.start_date and medicine.end_date and medicine.end_date < medicine.start_date:
                session.rollback()
                raise ValueError("end_date must not be before start_date")

            session.commit()
            session.refresh(medicine)

            created = await self.schedule.regenerate_occurrences(medicine.id, now=now, db=session)
            result = medicine_to_dict(medicine)
            result["occurrences_created"] = created
            return result

        if db:
            return await _update(db)

        with get_db_context() as session:
            return await _update(session)

    async def deactivate_medicine(
        self,
        medicine_id: int,
        patient_id: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """Soft-delete a medicine: history stays, future pending doses go"""
        async def _deactivate(session: Session) -> Dict[str, Any]:
            medicine = self._owned_medicine(session, medicine_id, patient_id)
            medicine.is_active = False
            session.commit()

            removed = await self.schedule.clear_future_occurrences(medicine_id, now=now, db=session)
            session.refresh(medicine)
            result = medicine_to_dict(medicine)
            result["occurrences_removed"] = removed
            return result

        if db:
            return await _deactivate(db)

        with get_db_context() as session:
            return await _deactivate(session)

    async def resolve_compartment(
        self,
        box_code: str,
        compartment_no: int,
        db: Optional[Session] = None
    ) -> Optional[CompartmentRef]:
        """Device -> patient resolution used by the sensor ingestion path"""
        def _resolve(session: Session) -> Optional[CompartmentRef]:
            row = session.query(models.Medicine, models.MedicineBox).join(
                models.MedicineBox, models.Medicine.box_id == models.MedicineBox.id
            ).filter(
                and_(
                    models.MedicineBox.box_code == box_code,
                    models.MedicineBox.is_active == True,
                    models.Medicine.compartment_no == compartment_no,
                    models.Medicine.is_active == True
                )
            ).order_by(models.Medicine.id.desc()).first()

            if not row:
                return None
            medicine, box = row
            return CompartmentRef(
                medicine_id=medicine.id,
                patient_id=box.patient_id,
                medicine_name=medicine.medicine_name,
                box_code=box.box_code,
                compartment_no=medicine.compartment_no
            )

        if db:
            return _resolve(db)

        with get_db_context() as session:
            return _resolve(session)


# Singleton instance
medicine_service = MedicineService()
