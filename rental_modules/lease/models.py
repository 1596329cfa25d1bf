"""
Lease Domain Models (``rental_modules.lease.models``).

Responsibility
--------------
Frozen value object for a lease instance.  The persisted name is "tenant"
(one row per lease, not per person): a user who rents twice has two
Tenant records.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* ``lease_start < lease_end``; ``rent_amount > 0``; ``security_deposit >= 0``
  (checked by ``LeaseService`` and by table CHECK constraints).
* ``unit_id is None`` means the lease covers the whole property.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

# Occupancy slot used for a lease on a property without a specific unit.
WHOLE_PROPERTY_SLOT = "*"


def occupancy_slot(unit_id: UUID | None) -> str:
    """Slot key of the (property, unit) pair a lease occupies."""
    return str(unit_id) if unit_id is not None else WHOLE_PROPERTY_SLOT


@dataclass(frozen=True)
class Tenant:
    """A lease of a property (or one of its units) by a user."""
    id: UUID
    user_id: UUID
    property_id: UUID
    lease_start: date
    lease_end: date
    rent_amount: Decimal
    security_deposit: Decimal
    unit_id: UUID | None = None
    is_active: bool = True
    terminated_on: date | None = None

    @property
    def is_whole_property(self) -> bool:
        return self.unit_id is None

    def overlaps(self, period_start: date, period_end: date) -> bool:
        """True if the lease term intersects ``[period_start, period_end)``."""
        return self.lease_start < period_end and period_start < self.lease_end
