"""
Maintenance Domain Models (``rental_modules.maintenance.models``).

Responsibility
--------------
Frozen value object for maintenance requests and the closed enums for
their priority and lifecycle status.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* ``completed_at`` is set exactly once, on entry to ``completed``.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class MaintenancePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class MaintenanceStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"


def priority_rank(priority: MaintenancePriority) -> int:
    """Queue rank of a priority: urgent first."""
    match priority:
        case MaintenancePriority.URGENT:
            return 0
        case MaintenancePriority.HIGH:
            return 1
        case MaintenancePriority.MEDIUM:
            return 2
        case MaintenancePriority.LOW:
            return 3
        case _:
            raise ValueError(f"Unknown maintenance priority: {priority}")


@dataclass(frozen=True)
class MaintenanceRequest:
    """A repair request raised under a lease."""
    id: UUID
    tenant_id: UUID
    property_id: UUID
    title: str
    description: str
    priority: MaintenancePriority
    submitted_at: datetime
    status: MaintenanceStatus = MaintenanceStatus.PENDING
    unit_id: UUID | None = None
    completed_at: datetime | None = None
    notes: str | None = None
