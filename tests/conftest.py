"""
Pytest Configuration and Shared Fixtures
========================================

This module provides shared fixtures for all SmartPillBox tests.
Fixtures include database sessions, test clients, engine services wired to a
fixed clock, sample data and a recording notification sink.
"""

import os
import sys
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Generator, Dict, Any

# Test settings must be in place before config is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SWEEP_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker, Session

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, create_db_engine, get_db
from models import (
    Patient, MedicineBox, Medicine, IntakeRecord,
    IntakeStatus, MedicineType
)
from services.schedule_service import ScheduleService
from services.medicine_service import MedicineService
from services.intake_service import IntakeService
from services.adherence_service import AdherenceService
from actions.sweep_scheduler import SweepScheduler
from tools.notification_service import (
    NotificationDispatcher,
    RecordingNotificationSink,
    notification_dispatcher,
)
from app import app


# Logical "now" shared by the engine fixtures: a Monday, 09:00 local time
NOW = datetime(2025, 3, 10, 9, 0)


# ==================== DATABASE FIXTURES ====================

@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite"""
    engine = create_db_engine("sqlite:///:memory:")

    # Create all tables
    Base.metadata.create_all(bind=engine)

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a test database session"""
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_engine
    )

    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def session_scope(db_session: Session) -> Callable:
    """Session scope for the sweep loop that hands out the test session"""
    @contextmanager
    def _scope():
        yield db_session

    return _scope


# ==================== API FIXTURES ====================

@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a FastAPI test client with database override"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def api_sink(client: TestClient) -> Generator[RecordingNotificationSink, None, None]:
    """Capture what the API pushes through the global dispatcher"""
    previous = notification_dispatcher.sink
    sink = RecordingNotificationSink()
    notification_dispatcher.set_sink(sink)
    yield sink
    notification_dispatcher.set_sink(previous)


@pytest.fixture
def auth_headers(test_patient: Patient) -> Dict[str, str]:
    """Headers identifying the test patient"""
    return {"X-Patient-Id": str(test_patient.id)}


# ==================== ENGINE FIXTURES ====================

@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def dispatcher(sink: RecordingNotificationSink) -> NotificationDispatcher:
    return NotificationDispatcher(sink, timeout_seconds=1.0)


@pytest.fixture
def schedule_service() -> ScheduleService:
    return ScheduleService(horizon_days=30, clock=lambda: NOW)


@pytest.fixture
def medicine_service(schedule_service: ScheduleService) -> MedicineService:
    return MedicineService(schedule=schedule_service)


@pytest.fixture
def intake_service(medicine_service: MedicineService, dispatcher: NotificationDispatcher) -> IntakeService:
    return IntakeService(
        medicines=medicine_service,
        dispatcher=dispatcher,
        tolerance_minutes=30,
        clock=lambda: NOW
    )


@pytest.fixture
def adherence_service() -> AdherenceService:
    return AdherenceService(clock=lambda: NOW)


@pytest.fixture
def sweep(dispatcher: NotificationDispatcher, session_scope: Callable) -> SweepScheduler:
    return SweepScheduler(
        interval_seconds=0.01,
        grace_minutes=30,
        lookahead_minutes=5,
        cooldown_minutes=10,
        dispatcher=dispatcher,
        session_scope=session_scope,
        clock=lambda: NOW
    )


# ==================== SAMPLE DATA FIXTURES ====================

@pytest.fixture
def sample_patient_data() -> Dict[str, Any]:
    """Sample patient data for creating test patients"""
    return {
        "first_name": "John",
        "last_name": "Doe",
        "email": "john.doe@example.com",
        "phone": "+1234567890",
        "is_active": True
    }


@pytest.fixture
def test_patient(db_session: Session, sample_patient_data: Dict) -> Patient:
    """Create and return a test patient"""
    patient = Patient(**sample_patient_data)
    db_session.add(patient)
    db_session.commit()
    db_session.refresh(patient)
    return patient


@pytest.fixture
def other_patient(db_session: Session) -> Patient:
    """A second patient, for ownership checks"""
    patient = Patient(first_name="Alice", last_name="Smith", email="alice.smith@example.com")
    db_session.add(patient)
    db_session.commit()
    db_session.refresh(patient)
    return patient


@pytest.fixture
def test_box(db_session: Session, test_patient: Patient) -> MedicineBox:
    """Create and return the test patient's pill box"""
    box = MedicineBox(
        patient_id=test_patient.id,
        box_code="BOX001",
        box_name="Kitchen pill box",
        compartments=7,
        is_active=True
    )
    db_session.add(box)
    db_session.commit()
    db_session.refresh(box)
    return box


@pytest.fixture
def test_medicine(db_session: Session, test_box: MedicineBox) -> Medicine:
    """Metformin in compartment 1, twice a day; no occurrences materialised"""
    medicine = Medicine(
        box_id=test_box.id,
        compartment_no=1,
        medicine_name="Metformin",
        medicine_type=MedicineType.PRESCRIPTION,
        dosage="500mg",
        time_slots=["08:00", "20:00"],
        start_date=NOW.date() - timedelta(days=7),
        is_active=True
    )
    db_session.add(medicine)
    db_session.commit()
    db_session.refresh(medicine)
    return medicine


@pytest.fixture
def make_intake(db_session: Session, test_patient: Patient, test_medicine: Medicine) -> Callable[..., IntakeRecord]:
    """Factory for intake records of the test medicine"""
    def _make(
        scheduled_time: datetime,
        status: IntakeStatus = IntakeStatus.PENDING,
        medicine: Medicine = None,
        **values
    ) -> IntakeRecord:
        record = IntakeRecord(
            patient_id=test_patient.id,
            medicine_id=(medicine or test_medicine).id,
            scheduled_time=scheduled_time,
            status=status,
            **values
        )
        db_session.add(record)
        db_session.commit()
        db_session.refresh(record)
        return record

    return _make


@pytest.fixture
def reload(db_session: Session) -> Callable[[IntakeRecord], IntakeRecord]:
    """Re-read a record after updates issued outside the ORM"""
    def _reload(record: IntakeRecord) -> IntakeRecord:
        db_session.expire_all()
        return db_session.get(IntakeRecord, record.id)

    return _reload


# ==================== PYTEST CONFIGURATION ====================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "api: mark test as an API test")
    config.addinivalue_line("markers", "database: mark test as requiring database")
