"""
Service Exceptions
Domain errors raised by the intake engine and mapped to HTTP responses in app.py
"""


class InvalidTimeSlotError(ValueError):
    """A time slot string is not a valid HH:MM local time"""


class MedicineNotFoundError(LookupError):
    """Medicine id does not exist"""


class BoxNotFoundError(LookupError):
    """Pill box id does not exist"""


class IntakeNotFoundError(LookupError):
    """Intake record id does not exist"""


class IntakeConflictError(Exception):
    """The intake record already reached a terminal state"""

    def __init__(self, intake_id: int, status: str):
        self.intake_id = intake_id
        self.status = status
        super().__init__(f"Intake {intake_id} already recorded as {status}")


class InvalidTransitionError(Exception):
    """Transition is not in the intake state table"""

    def __init__(self, source: str, target: str):
        self.source = source
        self.target = target
        super().__init__(f"Transition {source} -> {target} is not allowed")
