"""
Pure domain layer.

Value objects and time abstraction with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O
"""

from rental_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from rental_kernel.domain.money import MONEY_DECIMAL_PLACES, fits_money_scale, require_amount
from rental_kernel.domain.workflow import Transition, Workflow

__all__ = [
    "Clock",
    "DeterministicClock",
    "MONEY_DECIMAL_PLACES",
    "SystemClock",
    "Transition",
    "Workflow",
    "fits_money_scale",
    "require_amount",
]
