"""
SmartPillBox Test Suite
=======================

This package contains all tests for the SmartPillBox intake engine.

Test Structure:
- test_api/: API endpoint tests for FastAPI routes
- test_services/: Generation, correlation, storage and adherence tests
- test_actions/: Sweep scheduler tests
- test_tools/: Notification dispatcher tests
- conftest.py: Shared pytest fixtures

Running Tests:
    # Run all tests
    pytest

    # Run specific test module
    pytest tests/test_services/

    # Run only marked tests
    pytest -m "api"
    pytest -m "database"
"""

# Test configuration
TEST_DATABASE_URL = "sqlite:///:memory:"
TEST_PATIENT_EMAIL = "test.patient@example.com"
TEST_BOX_CODE = "BOX001"

__all__ = [
    "TEST_DATABASE_URL",
    "TEST_PATIENT_EMAIL",
    "TEST_BOX_CODE",
]
