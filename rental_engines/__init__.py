"""
Module: rental_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines used by
    the payment reconciliation and billing modules.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    MUST NOT import rental_services, rental_modules or rental_ingestion.

Invariants enforced:
    - Purity: engines NEVER read the clock.  Dates are explicit parameters.
    - Decimal-only arithmetic: floats are forbidden.
    - Determinism: identical inputs always produce identical outputs.
"""

from rental_engines.allocation import (
    AllocationEngine,
    AllocationLine,
    AllocationMethod,
    AllocationResult,
    AllocationTarget,
)

__all__ = [
    "AllocationEngine",
    "AllocationLine",
    "AllocationMethod",
    "AllocationResult",
    "AllocationTarget",
]
