"""
Medicines API Router
Endpoints for pill boxes and the medicines in their compartments
"""

from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from api.deps import get_db, get_current_patient_id, services
from api.schemas.medicine import (
    BoxCreate,
    BoxResponse,
    MedicineCreate,
    MedicineUpdate,
    MedicineResponse,
)


router = APIRouter(prefix="/medicines", tags=["medicines"])


# ==================== BOXES ====================

@router.post("/boxes", response_model=BoxResponse, status_code=status.HTTP_201_CREATED)
async def create_box(
    box_data: BoxCreate,
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Register a pill box for the requesting patient
    """
    medicine_service = services.get_medicine_service()

    return await medicine_service.create_box(
        patient_id=patient_id,
        box_name=box_data.box_name,
        box_code=box_data.box_code,
        compartments=box_data.compartments,
        db=db
    )


@router.get("/boxes", response_model=List[BoxResponse])
async def list_boxes(
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    List the requesting patient's active pill boxes
    """
    medicine_service = services.get_medicine_service()
    return await medicine_service.list_boxes(patient_id, db=db)


@router.get("/boxes/{box_id}", response_model=List[MedicineResponse])
async def list_box_medicines(
    box_id: int,
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Active medicines in a pill box, ordered by compartment
    """
    medicine_service = services.get_medicine_service()
    return await medicine_service.list_medicines(box_id, patient_id, db=db)


# ==================== MEDICINES ====================

@router.post("/", response_model=MedicineResponse, status_code=status.HTTP_201_CREATED)
async def create_medicine(
    medicine_data: MedicineCreate,
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Add a medicine to a compartment and generate its dose schedule

    - **time_slots**: Local dose times as "HH:MM"
    - **start_date** / **end_date**: Active range; open-ended without end_date
    """
    medicine_service = services.get_medicine_service()

    return await medicine_service.create_medicine(
        patient_id=patient_id,
        box_id=medicine_data.box_id,
        compartment_no=medicine_data.compartment_no,
        medicine_name=medicine_data.medicine_name,
        time_slots=medicine_data.time_slots,
        medicine_type=medicine_data.medicine_type,
        dosage=medicine_data.dosage,
        start_date=medicine_data.start_date,
        end_date=medicine_data.end_date,
        notes=medicine_data.notes,
        db=db
    )


@router.get("/{medicine_id}", response_model=MedicineResponse)
async def get_medicine(
    medicine_id: int,
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Get a medicine definition
    """
    medicine_service = services.get_medicine_service()

    medicine = await medicine_service.get_medicine(medicine_id, db=db)
    if medicine["patient_id"] != patient_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Medicine {medicine_id} does not belong to patient {patient_id}"
        )
    return medicine


@router.put("/{medicine_id}", response_model=MedicineResponse)
async def update_medicine(
    medicine_id: int,
    medicine_data: MedicineUpdate,
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Edit a medicine; its future pending doses are regenerated
    """
    medicine_service = services.get_medicine_service()

    updates = medicine_data.model_dump(exclude_unset=True)
    return await medicine_service.update_medicine(medicine_id, patient_id, updates, db=db)


@router.delete("/{medicine_id}", response_model=MedicineResponse)
async def deactivate_medicine(
    medicine_id: int,
    patient_id: int = Depends(get_current_patient_id),
    db: Session = Depends(get_db)
):
    """
    Deactivate a medicine. History is kept; future pending doses are removed.
    """
    medicine_service = services.get_medicine_service()
    return await medicine_service.deactivate_medicine(medicine_id, patient_id, db=db)
