#!/usr/bin/env python
"""
Seed Data
Script to seed the database with a demo patient, pill box and medicines
"""

import sys
import os
import argparse
import asyncio
import logging
import random
from datetime import datetime, timedelta, date
from typing import Dict, List

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import SessionLocal, engine, Base, reset_db
from models import Patient, MedicineBox, Medicine, IntakeRecord, IntakeStatus, MedicineType
from services.medicine_service import medicine_service


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


DEMO_EMAIL = "test@example.com"
DEMO_BOX_CODE = "BOX001"

DEMO_MEDICINES = [
    {
        "compartment_no": 1,
        "medicine_name": "Metformin",
        "medicine_type": MedicineType.PRESCRIPTION,
        "dosage": "500mg",
        "time_slots": ["08:00", "20:00"],
        "adherence": 0.88,
    },
    {
        "compartment_no": 2,
        "medicine_name": "Vitamin D",
        "medicine_type": MedicineType.VITAMIN,
        "dosage": "1000IU",
        "time_slots": ["12:30"],
        "adherence": 0.75,
    },
]


def create_tables():
    """Create all database tables"""
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Tables created successfully")


def seed_demo_patient(db) -> Patient:
    """Create the demo patient"""
    existing = db.query(Patient).filter(Patient.email == DEMO_EMAIL).first()
    if existing:
        logger.info("Demo patient already exists")
        return existing

    patient = Patient(
        first_name="Test",
        last_name="User",
        email=DEMO_EMAIL,
        phone="010-1234-5678"
    )
    db.add(patient)
    db.commit()
    db.refresh(patient)
    logger.info(f"Created demo patient {patient.id}")
    return patient


async def seed_box_and_medicines(db, patient_id: int) -> List[Dict]:
    """Register BOX001 and fill two compartments; schedules are generated on create"""
    box = db.query(MedicineBox).filter(MedicineBox.box_code == DEMO_BOX_CODE).first()
    if box is None:
        box_data = await medicine_service.create_box(
            patient_id, box_name="Kitchen pill box", box_code=DEMO_BOX_CODE, db=db
        )
        box_id = box_data["id"]
    else:
        box_id = box.id

    medicines = []
    for demo in DEMO_MEDICINES:
        existing = db.query(Medicine).filter(
            Medicine.box_id == box_id,
            Medicine.compartment_no == demo["compartment_no"],
            Medicine.is_active == True
        ).first()
        if existing:
            medicines.append({"id": existing.id, "adherence": demo["adherence"], "time_slots": existing.time_slots})
            continue

        created = await medicine_service.create_medicine(
            patient_id=patient_id,
            box_id=box_id,
            compartment_no=demo["compartment_no"],
            medicine_name=demo["medicine_name"],
            medicine_type=demo["medicine_type"],
            dosage=demo["dosage"],
            time_slots=demo["time_slots"],
            start_date=date.today() - timedelta(days=30),
            db=db
        )
        logger.info(f"Added {demo['medicine_name']} with {created['occurrences_created']} upcoming doses")
        medicines.append({"id": created["id"], "adherence": demo["adherence"], "time_slots": created["time_slots"]})
    return medicines


def seed_intake_history(db, patient_id: int, medicines: List[Dict], days: int = 30):
    """Past occurrences with a reproducible taken/missed/skipped mix"""
    random.seed(42)  # For reproducibility

    now = datetime.now()
    created = 0
    for medicine in medicines:
        for day_offset in range(1, days + 1):  # Skip today
            day = (now - timedelta(days=day_offset)).date()
            for slot in medicine["time_slots"]:
                scheduled = datetime.combine(day, datetime.strptime(slot, "%H:%M").time())

                exists = db.query(IntakeRecord.id).filter(
                    IntakeRecord.medicine_id == medicine["id"],
                    IntakeRecord.scheduled_time == scheduled
                ).first()
                if exists:
                    continue

                roll = random.random()
                if roll < medicine["adherence"]:
                    status = IntakeStatus.TAKEN
                    taken_time = scheduled + timedelta(minutes=random.randint(-10, 25))
                elif roll < medicine["adherence"] + 0.03:
                    status = IntakeStatus.SKIPPED
                    taken_time = None
                else:
                    status = IntakeStatus.MISSED
                    taken_time = None

                db.add(IntakeRecord(
                    patient_id=patient_id,
                    medicine_id=medicine["id"],
                    scheduled_time=scheduled,
                    taken_time=taken_time,
                    status=status,
                    sensor_detected=status == IntakeStatus.TAKEN and random.random() < 0.7,
                    notes="seeded"
                ))
                created += 1

    db.flush()
    logger.info(f"Created {created} past intake records")


def seed_all(clear_existing: bool = False, days: int = 30):
    """Run all seed operations"""

    print("\n" + "="*60)
    print("Database Seeding")
    print("="*60)

    if clear_existing:
        logger.info("Clearing existing data...")
        reset_db()
    else:
        create_tables()

    db = SessionLocal()

    try:
        patient = seed_demo_patient(db)
        medicines = asyncio.run(seed_box_and_medicines(db, patient.id))

        seed_intake_history(db, patient.id, medicines, days=days)
        db.commit()

        # Print summary
        print("\n" + "="*60)
        print("Seeding Complete!")
        print("="*60)
        print(f"\nDatabase Statistics:")
        print(f"  Patients: {db.query(Patient).count()}")
        print(f"  Boxes: {db.query(MedicineBox).count()}")
        print(f"  Medicines: {db.query(Medicine).count()}")
        print(f"  Intake Records: {db.query(IntakeRecord).count()}")

        print(f"\nDemo Patient ID: {patient.id} (send as X-Patient-Id)")
        print(f"Demo Box Code: {DEMO_BOX_CODE}")

    except Exception as e:
        db.rollback()
        logger.error(f"Error during seeding: {e}")
        raise
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(
        description="Seed the database with initial data"
    )
    parser.add_argument(
        "--clear",
        action="store_true",
        help="Clear existing data before seeding"
    )
    parser.add_argument(
        "--days",
        type=int,
        default=30,
        help="Days of past intake history to create"
    )

    args = parser.parse_args()

    seed_all(clear_existing=args.clear, days=args.days)


if __name__ == "__main__":
    main()
