"""
Patients API Router
Owner profiles for pill boxes; authentication is handled upstream
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from models import Patient
from api.deps import get_db
from api.schemas.patient import PatientCreate, PatientResponse


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/patients", tags=["patients"])


def _to_response(patient: Patient) -> PatientResponse:
    response = PatientResponse.model_validate(patient)
    response.box_count = sum(1 for box in patient.boxes if box.is_active)
    return response


@router.post("/", response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
async def register_patient(body: PatientCreate, db: Session = Depends(get_db)):
    """
    Register a pill box owner. Email addresses are unique.
    """
    if db.query(Patient.id).filter(Patient.email == body.email).first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Patient with email {body.email} already exists"
        )

    patient = Patient(**body.model_dump())
    db.add(patient)
    db.commit()
    db.refresh(patient)
    logger.info(f"Registered patient {patient.id}")
    return _to_response(patient)


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(patient_id: int, db: Session = Depends(get_db)):
    patient = db.get(Patient, patient_id)
    if patient is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Patient {patient_id} not found"
        )
    return _to_response(patient)
