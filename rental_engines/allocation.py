"""
Module: rental_engines.allocation
Responsibility:
    Allocate a payment across a tenant's outstanding invoices, greedily and
    in a deterministic order: oldest due date first, priority breaking ties,
    undated targets last.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Conservation: total_allocated + unallocated == source_amount.
    - No over-allocation: no target receives more than its eligible amount.
    - Order: a later target receives money only once every earlier target
      is fully covered.
    - Purity: no clock access, no I/O.

Failure modes:
    - ValueError on a negative source amount or negative eligible amount.
    - ValueError on unknown allocation method.

Audit relevance:
    Allocation lines become PaymentAllocation rows.  The unallocated
    remainder is the tenant's credit; it is never written as a number,
    always re-derived from payments minus allocations.

Usage:
    from rental_engines.allocation import AllocationEngine, AllocationTarget

    engine = AllocationEngine()
    result = engine.allocate_fifo(
        amount=Decimal("6000"),
        targets=[
            AllocationTarget(target_id=inv1, eligible_amount=Decimal("5000"),
                             date=date(2024, 1, 5)),
            AllocationTarget(target_id=inv2, eligible_amount=Decimal("3000"),
                             date=date(2024, 2, 5)),
        ],
    )
    # inv1 receives 5000, inv2 receives 1000, nothing unallocated
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from rental_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

_ZERO = Decimal("0")


class AllocationMethod(str, Enum):
    """Order in which targets are funded."""

    FIFO = "fifo"  # Oldest date first, priority breaks ties


@dataclass(frozen=True)
class AllocationTarget:
    """
    A target that can receive an allocation (an invoice's unpaid balance).

    Guarantees:
        - ``eligible_amount`` is non-negative.
    """

    target_id: str | UUID
    eligible_amount: Decimal
    target_type: str = "invoice"
    date: date | None = None  # For FIFO
    priority: int = 0  # Tie-breaker for FIFO (lower first)

    def __post_init__(self) -> None:
        if self.eligible_amount < _ZERO:
            raise ValueError("Eligible amount cannot be negative")


@dataclass(frozen=True)
class AllocationLine:
    """
    Result of allocation to a single target.

    Guarantees:
        - ``allocated + remaining == eligible_amount`` of the target.
    """

    target_id: str | UUID
    target_type: str
    allocated: Decimal
    remaining: Decimal

    @property
    def is_fully_allocated(self) -> bool:
        return self.remaining == _ZERO


@dataclass(frozen=True)
class AllocationResult:
    """
    Complete allocation result.

    Guarantees:
        - ``total_allocated + unallocated == source_amount``.
    """

    source_amount: Decimal
    method: AllocationMethod
    lines: tuple[AllocationLine, ...]
    total_allocated: Decimal
    unallocated: Decimal

    @property
    def is_fully_allocated(self) -> bool:
        """True if the entire source amount was allocated."""
        return self.unallocated == _ZERO

    @property
    def funded_lines(self) -> tuple[AllocationLine, ...]:
        """Lines that received money, in funding order."""
        return tuple(line for line in self.lines if line.allocated > _ZERO)


class AllocationEngine:
    """
    Allocate amounts across targets in a deterministic order.

    Contract:
        Pure functions.  No I/O, no database access, no rounding: amounts
        are moved as exact Decimals.
    """

    def allocate(
        self,
        amount: Decimal,
        targets: Sequence[AllocationTarget],
        method: AllocationMethod = AllocationMethod.FIFO,
    ) -> AllocationResult:
        """
        Allocate ``amount`` to ``targets`` using ``method``.

        Raises:
            ValueError: negative amount or unknown method.
        """
        if amount < _ZERO:
            raise ValueError(f"Cannot allocate a negative amount: {amount}")

        match method:
            case AllocationMethod.FIFO:
                ordered = sorted(
                    targets,
                    key=lambda t: (t.date or date.max, t.priority, str(t.target_id)),
                )
            case _:
                logger.error("allocation_unknown_method", extra={"method": str(method)})
                raise ValueError(f"Unknown allocation method: {method}")

        return self._allocate_sequential(amount, ordered, method)

    def allocate_fifo(
        self,
        amount: Decimal,
        targets: Sequence[AllocationTarget],
    ) -> AllocationResult:
        """Convenience method for oldest-first allocation."""
        return self.allocate(amount, targets, AllocationMethod.FIFO)

    def _allocate_sequential(
        self,
        amount: Decimal,
        ordered_targets: Sequence[AllocationTarget],
        method: AllocationMethod,
    ) -> AllocationResult:
        """Fund each target up to its eligible amount until money runs out."""
        remaining_to_allocate = amount
        lines: list[AllocationLine] = []

        for target in ordered_targets:
            to_allocate = min(remaining_to_allocate, target.eligible_amount)
            remaining_to_allocate -= to_allocate
            lines.append(
                AllocationLine(
                    target_id=target.target_id,
                    target_type=target.target_type,
                    allocated=to_allocate,
                    remaining=target.eligible_amount - to_allocate,
                )
            )

        total_allocated = amount - remaining_to_allocate

        logger.debug("allocation_sequential_completed", extra={
            "method": method.value,
            "source_amount": str(amount),
            "total_allocated": str(total_allocated),
            "unallocated": str(remaining_to_allocate),
            "targets_funded": sum(1 for line in lines if line.allocated > _ZERO),
            "line_count": len(lines),
        })

        return AllocationResult(
            source_amount=amount,
            method=method,
            lines=tuple(lines),
            total_allocated=total_allocated,
            unallocated=remaining_to_allocate,
        )
