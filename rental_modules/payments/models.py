"""
Payment Domain Models (``rental_modules.payments.models``).

Responsibility
--------------
Frozen value objects for payments, their allocations to invoices and the
mobile-money gateway transactions that fund them.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* ``amount > 0`` for payments and allocations; ``amount >= 0`` for gateway
  transactions, since failed notifications may carry zero.
* A gateway transaction funds at most one payment.
* Unapplied remainder (tenant credit) = payment amount - its allocations;
  it is never stored.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class PaymentStatus(str, Enum):
    """Application state of a payment (same literal set as invoices)."""
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    PARTIAL = "partial"


class GatewayTransactionType(str, Enum):
    """M-Pesa transaction categories."""
    CUSTOMER_PAYBILL = "customer_paybill"
    CUSTOMER_BUYGOODS = "customer_buygoods"
    BUSINESS_PAYMENT = "business_payment"
    BUSINESS_TRANSFER = "business_transfer"


@dataclass(frozen=True)
class Payment:
    """Money received from a tenant."""
    id: UUID
    tenant_id: UUID
    amount: Decimal
    payment_date: datetime
    payment_method: str
    status: PaymentStatus = PaymentStatus.PENDING
    currency_symbol: str = "KSh"
    gateway_transaction_id: str | None = None
    payment_reference: str | None = None
    notes: str | None = None
    received_by_id: UUID | None = None


@dataclass(frozen=True)
class PaymentAllocation:
    """Part of a payment applied to one invoice."""
    id: UUID
    payment_id: UUID
    invoice_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class GatewayTransaction:
    """A transaction reported by the mobile-money gateway."""
    id: UUID
    transaction_id: str
    transaction_type: GatewayTransactionType
    phone_number: str
    amount: Decimal
    status: str
    transaction_date: datetime
    reference: str | None = None
    description: str | None = None
    response_code: str | None = None
    response_description: str | None = None
    msisdn: str | None = None
    payment_id: UUID | None = None
