"""
Payment ORM Models (``rental_modules.payments.orm``).

Responsibility
--------------
SQLAlchemy persistence models for payments, payment allocations and
gateway transactions.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``rental_kernel.db.base``
and sibling ``models.py``.

Invariants enforced
-------------------
* ``gateway_transactions.transaction_id`` is unique: a replayed
  notification can never create a second row.
* ``gateway_transactions.payment_id`` is unique: a transaction funds at
  most one payment.
* ``payments.gateway_transaction_id`` is unique when set.
* All three tables are append-only (see ``rental_kernel.db.immutability``).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import TrackedBase, UTCDateTime, enum_check
from rental_modules.payments.models import (
    GatewayTransaction,
    GatewayTransactionType,
    Payment,
    PaymentAllocation,
    PaymentStatus,
)


# ---------------------------------------------------------------------------
# 1. PaymentModel
# ---------------------------------------------------------------------------


class PaymentModel(TrackedBase):
    """
    ORM model for tenant payments.

    Guarantees:
        - amount > 0.
        - status is one of PaymentStatus.
        - tenant_id and received_by_id are RESTRICT foreign keys.
    """

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint(
            "gateway_transaction_id", name="uq_payments_gateway_transaction_id"
        ),
        Index("idx_payments_tenant_id", "tenant_id"),
        Index("idx_payments_payment_date", "payment_date"),
        enum_check("status", PaymentStatus, "ck_payments_status"),
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenants.id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency_symbol: Mapped[str] = mapped_column(
        String(10), nullable=False, default="KSh"
    )
    payment_date: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value
    )
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    gateway_transaction_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    payment_reference: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=True
    )

    def to_dto(self) -> Payment:
        """Convert ORM model to frozen dataclass."""
        return Payment(
            id=self.id,
            tenant_id=self.tenant_id,
            amount=self.amount,
            payment_date=self.payment_date,
            payment_method=self.payment_method,
            status=PaymentStatus(self.status),
            currency_symbol=self.currency_symbol,
            gateway_transaction_id=self.gateway_transaction_id,
            payment_reference=self.payment_reference,
            notes=self.notes,
            received_by_id=self.received_by_id,
        )

    @classmethod
    def from_dto(cls, dto: Payment, created_by_id: UUID) -> "PaymentModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            amount=dto.amount,
            currency_symbol=dto.currency_symbol,
            payment_date=dto.payment_date,
            status=dto.status.value,
            payment_method=dto.payment_method,
            gateway_transaction_id=dto.gateway_transaction_id,
            payment_reference=dto.payment_reference,
            notes=dto.notes,
            received_by_id=dto.received_by_id,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<PaymentModel {self.id} amount={self.amount} status={self.status}>"


# ---------------------------------------------------------------------------
# 2. PaymentAllocationModel
# ---------------------------------------------------------------------------


class PaymentAllocationModel(TrackedBase):
    """
    ORM model linking part of a payment to one invoice.

    Guarantees:
        - amount > 0.
        - The sum over an invoice's allocations is the money applied to it.
    """

    __tablename__ = "payment_allocations"

    __table_args__ = (
        Index("idx_payment_allocations_payment_id", "payment_id"),
        Index("idx_payment_allocations_invoice_id", "invoice_id"),
        CheckConstraint("amount > 0", name="ck_payment_allocations_amount_positive"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        ForeignKey("payments.id", ondelete="RESTRICT"), nullable=False
    )
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    def to_dto(self) -> PaymentAllocation:
        """Convert ORM model to frozen dataclass."""
        return PaymentAllocation(
            id=self.id,
            payment_id=self.payment_id,
            invoice_id=self.invoice_id,
            amount=self.amount,
        )

    def __repr__(self) -> str:
        return (
            f"<PaymentAllocationModel payment={self.payment_id} "
            f"invoice={self.invoice_id} amount={self.amount}>"
        )


# ---------------------------------------------------------------------------
# 3. GatewayTransactionModel
# ---------------------------------------------------------------------------


class GatewayTransactionModel(TrackedBase):
    """
    ORM model for mobile-money gateway transactions.

    Guarantees:
        - transaction_id is unique (uq_gateway_transactions_transaction_id).
        - payment_id is unique and set at most once.
        - transaction_type is one of GatewayTransactionType.
        - amount >= 0; only a positive successful transaction funds a payment.
        - Failed and unmatched transactions are kept for audit.
    """

    __tablename__ = "gateway_transactions"

    __table_args__ = (
        UniqueConstraint(
            "transaction_id", name="uq_gateway_transactions_transaction_id"
        ),
        UniqueConstraint("payment_id", name="uq_gateway_transactions_payment_id"),
        Index("idx_gateway_transactions_msisdn", "msisdn"),
        enum_check(
            "transaction_type",
            GatewayTransactionType,
            "ck_gateway_transactions_type",
        ),
        CheckConstraint("amount >= 0", name="ck_gateway_transactions_amount_non_negative"),
    )

    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(40), nullable=False)
    msisdn: Mapped[str | None] = mapped_column(String(20), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payments.id", ondelete="RESTRICT"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    response_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    response_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    transaction_date: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False
    )

    def to_dto(self) -> GatewayTransaction:
        """Convert ORM model to frozen dataclass."""
        return GatewayTransaction(
            id=self.id,
            transaction_id=self.transaction_id,
            transaction_type=GatewayTransactionType(self.transaction_type),
            phone_number=self.phone_number,
            amount=self.amount,
            status=self.status,
            transaction_date=self.transaction_date,
            reference=self.reference,
            description=self.description,
            response_code=self.response_code,
            response_description=self.response_description,
            msisdn=self.msisdn,
            payment_id=self.payment_id,
        )

    @classmethod
    def from_dto(cls, dto: GatewayTransaction, created_by_id: UUID) -> "GatewayTransactionModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            transaction_id=dto.transaction_id,
            transaction_type=dto.transaction_type.value,
            phone_number=dto.phone_number,
            msisdn=dto.msisdn,
            amount=dto.amount,
            reference=dto.reference,
            description=dto.description,
            payment_id=dto.payment_id,
            status=dto.status,
            response_code=dto.response_code,
            response_description=dto.response_description,
            transaction_date=dto.transaction_date,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<GatewayTransactionModel {self.transaction_id} "
            f"amount={self.amount} payment={self.payment_id}>"
        )
