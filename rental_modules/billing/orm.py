"""
Billing ORM Models (``rental_modules.billing.orm``).

Responsibility
--------------
SQLAlchemy persistence model for invoices.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``rental_kernel.db.base``
and sibling ``models.py``.

Invariants enforced
-------------------
* One invoice per lease per billing period: ``uq_invoices_tenant_period``
  on ``(tenant_id, period_start)`` backs ``generate_invoice`` idempotency.
* Invoices are never deleted and their financial fields never change
  (see ``rental_kernel.db.immutability``).
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import TrackedBase, enum_check
from rental_modules.billing.models import Invoice, InvoiceStatus


class InvoiceModel(TrackedBase):
    """
    ORM model for rent invoices.

    Guarantees:
        - status is one of InvoiceStatus (ck_invoices_status).
        - amount > 0, period_end > period_start, due_date >= issue_date.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "period_start", name="uq_invoices_tenant_period"
        ),
        Index("idx_invoices_tenant_id", "tenant_id"),
        Index("idx_invoices_status", "status"),
        Index("idx_invoices_due_date", "due_date"),
        enum_check("status", InvoiceStatus, "ck_invoices_status"),
        CheckConstraint("amount > 0", name="ck_invoices_amount_positive"),
        CheckConstraint("period_end > period_start", name="ck_invoices_period"),
        CheckConstraint("due_date >= issue_date", name="ck_invoices_due_date"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenants.id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency_symbol: Mapped[str] = mapped_column(
        String(10), nullable=False, default="KSh"
    )
    period_start: Mapped[date] = mapped_column(nullable=False)
    period_end: Mapped[date] = mapped_column(nullable=False)
    issue_date: Mapped[date] = mapped_column(nullable=False)
    due_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.PENDING.value
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status_overridden: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    override_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    overridden_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=True
    )

    def to_dto(self) -> Invoice:
        """Convert ORM model to frozen dataclass."""
        return Invoice(
            id=self.id,
            tenant_id=self.tenant_id,
            amount=self.amount,
            period_start=self.period_start,
            period_end=self.period_end,
            issue_date=self.issue_date,
            due_date=self.due_date,
            status=InvoiceStatus(self.status),
            currency_symbol=self.currency_symbol,
            notes=self.notes,
            status_overridden=self.status_overridden,
            override_reason=self.override_reason,
            overridden_by_id=self.overridden_by_id,
        )

    @classmethod
    def from_dto(cls, dto: Invoice, created_by_id: UUID) -> "InvoiceModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            amount=dto.amount,
            currency_symbol=dto.currency_symbol,
            period_start=dto.period_start,
            period_end=dto.period_end,
            issue_date=dto.issue_date,
            due_date=dto.due_date,
            status=dto.status.value,
            notes=dto.notes,
            status_overridden=dto.status_overridden,
            override_reason=dto.override_reason,
            overridden_by_id=dto.overridden_by_id,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<InvoiceModel {self.id} tenant={self.tenant_id} "
            f"period={self.period_start} status={self.status}>"
        )
