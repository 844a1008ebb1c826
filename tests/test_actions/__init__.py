"""
Test Actions Package
Tests for background engines (sweep scheduler)
"""

__all__ = [
    "test_sweep_scheduler",
]
