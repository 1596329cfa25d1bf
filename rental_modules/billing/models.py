"""
Billing Domain Models (``rental_modules.billing.models``).

Responsibility
--------------
Frozen value objects for invoices and the closed set of invoice statuses.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* ``amount > 0``; ``period_start < period_end``; ``issue_date <= due_date``.
* ``status`` is derived from allocations (see ``status.py``) unless an
  explicit override is recorded, and the next recomputation clears it.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class InvoiceStatus(str, Enum):
    """Payment state of an invoice."""
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    PARTIAL = "partial"


# Statuses that still expect money.
OUTSTANDING_STATUSES: tuple[InvoiceStatus, ...] = (
    InvoiceStatus.PENDING,
    InvoiceStatus.OVERDUE,
    InvoiceStatus.PARTIAL,
)


@dataclass(frozen=True)
class Invoice:
    """Rent owed by a lease for one billing period."""
    id: UUID
    tenant_id: UUID
    amount: Decimal
    period_start: date
    period_end: date
    issue_date: date
    due_date: date
    status: InvoiceStatus = InvoiceStatus.PENDING
    currency_symbol: str = "KSh"
    notes: str | None = None
    status_overridden: bool = False
    override_reason: str | None = None
    overridden_by_id: UUID | None = None
