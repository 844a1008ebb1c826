"""
Actions Module
Background engines driving the intake lifecycle
"""

from .sweep_scheduler import (
    SweepResult,
    SweepScheduler,
    sweep_scheduler
)


__all__ = [
    "SweepResult",
    "SweepScheduler",
    "sweep_scheduler"
]
