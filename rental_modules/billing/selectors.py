"""
Module: rental_modules.billing.selectors
Responsibility: Read-only tenant ledger.  Invoices and payments of one lease
    in date order with a running balance, plus the derived totals.
Architecture position: Modules > Billing > Selectors.  Extends BaseSelector;
    never adds, flushes or commits.

Invariants enforced:
    - No stored balances.  Outstanding balance is recomputed from invoice
      amounts minus allocations; credit from payment amounts minus
      allocations.
    - ``total_invoiced - total_paid == outstanding_balance - credit_balance``.

Failure modes:
    - TenantNotFoundError for an unknown lease id.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select

from rental_kernel.exceptions import TenantNotFoundError
from rental_kernel.selectors.base import BaseSelector
from rental_modules.billing.models import InvoiceStatus
from rental_modules.billing.orm import InvoiceModel
from rental_modules.lease.orm import TenantModel
from rental_modules.payments.models import PaymentStatus
from rental_modules.payments.orm import PaymentAllocationModel, PaymentModel

_ZERO = Decimal("0")


class LedgerEntryKind(str, Enum):
    INVOICE = "invoice"
    PAYMENT = "payment"


@dataclass(frozen=True)
class LedgerEntry:
    """One line of a tenant ledger.  Invoices raise the balance, payments lower it."""

    entry_date: date
    kind: LedgerEntryKind
    reference_id: UUID
    amount: Decimal
    status: str
    running_balance: Decimal


@dataclass(frozen=True)
class TenantLedger:
    tenant_id: UUID
    entries: tuple[LedgerEntry, ...]
    total_invoiced: Decimal
    total_paid: Decimal
    outstanding_balance: Decimal
    credit_balance: Decimal

    @property
    def net_balance(self) -> Decimal:
        """Positive when the tenant owes money, negative when in credit."""
        return self.total_invoiced - self.total_paid


class TenantLedgerSelector(BaseSelector[InvoiceModel]):
    """Ledger view of a lease, derived on every call."""

    def ledger(self, tenant_id: UUID) -> TenantLedger:
        if self.session.get(TenantModel, tenant_id) is None:
            raise TenantNotFoundError(str(tenant_id))

        invoices = self.session.scalars(
            select(InvoiceModel).where(InvoiceModel.tenant_id == tenant_id)
        ).all()
        payments = self.session.scalars(
            select(PaymentModel).where(PaymentModel.tenant_id == tenant_id)
        ).all()

        applied_to_invoice: dict[UUID, Decimal] = {inv.id: _ZERO for inv in invoices}
        applied_from_payment: dict[UUID, Decimal] = {p.id: _ZERO for p in payments}
        if payments:
            rows = self.session.execute(
                select(
                    PaymentAllocationModel.payment_id,
                    PaymentAllocationModel.invoice_id,
                    PaymentAllocationModel.amount,
                ).where(PaymentAllocationModel.payment_id.in_(list(applied_from_payment)))
            ).all()
            for payment_id, invoice_id, amount in rows:
                applied_from_payment[payment_id] += amount
                if invoice_id in applied_to_invoice:
                    applied_to_invoice[invoice_id] += amount

        # (date, invoices before payments on the same day, id)
        raw = [
            (inv.issue_date, 0, str(inv.id), LedgerEntryKind.INVOICE, inv.id,
             inv.amount, InvoiceStatus(inv.status).value)
            for inv in invoices
        ] + [
            (p.payment_date.date(), 1, str(p.id), LedgerEntryKind.PAYMENT, p.id,
             p.amount, PaymentStatus(p.status).value)
            for p in payments
        ]
        raw.sort(key=lambda r: (r[0], r[1], r[2]))

        running = _ZERO
        entries = []
        for entry_date, _, _, kind, ref_id, amount, status in raw:
            running += amount if kind is LedgerEntryKind.INVOICE else -amount
            entries.append(LedgerEntry(
                entry_date=entry_date,
                kind=kind,
                reference_id=ref_id,
                amount=amount,
                status=status,
                running_balance=running,
            ))

        return TenantLedger(
            tenant_id=tenant_id,
            entries=tuple(entries),
            total_invoiced=sum((inv.amount for inv in invoices), _ZERO),
            total_paid=sum((p.amount for p in payments), _ZERO),
            outstanding_balance=sum(
                (inv.amount - applied_to_invoice[inv.id] for inv in invoices), _ZERO
            ),
            credit_balance=sum(
                (p.amount - applied_from_payment[p.id] for p in payments), _ZERO
            ),
        )
