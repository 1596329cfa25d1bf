"""
Billing Service -- invoices and their derived status.

Responsibility:
    Emits one invoice per lease per billing period, keeps every invoice's
    status equal to ``derive_invoice_status`` of the money applied to it,
    and answers the questions other modules ask about a tenant's debt
    (outstanding invoices, overdue invoices, applied amounts).

Architecture position:
    Modules > Billing.  Flush-only (BaseService contract).  Called by the
    lease module (renewal gate), the payments module (status recompute)
    and the ``PropertyManagementService`` facade (billing cycle).

Invariants enforced:
    - Idempotent generation per (tenant_id, period_start): the unique
      constraint backs the existence check, and a lost insert race returns
      the winner's invoice.
    - ``recompute_status`` is the only writer of a derived status; it clears
      any explicit override.

Failure modes:
    - InvalidDateRangeError, NonPositiveAmountError, ValidationError on
      bad input; TenantNotFoundError; LeaseInactiveError for a terminated
      lease with no invoice for the period; InvoiceNotFoundError;
      PermissionDeniedError for an override by an unprivileged actor.

Audit relevance:
    ``invoice_generated``, ``invoice_status_changed`` and
    ``invoice_status_overridden`` trace every status the tenant ever saw.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import case, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rental_kernel.domain.clock import Clock
from rental_kernel.domain.money import require_amount
from rental_kernel.exceptions import (
    InvalidDateRangeError,
    InvoiceNotFoundError,
    LeaseInactiveError,
    PermissionDeniedError,
    TenantNotFoundError,
    ValidationError,
)
from rental_kernel.logging_config import get_logger
from rental_kernel.services.base import BaseService
from rental_modules.billing.models import OUTSTANDING_STATUSES, Invoice, InvoiceStatus
from rental_modules.billing.orm import InvoiceModel
from rental_modules.billing.status import derive_invoice_status, is_past_due
from rental_modules.directory.models import UserRole
from rental_modules.directory.orm import UnitModel, UserModel
from rental_modules.lease.models import Tenant
from rental_modules.lease.orm import TenantModel
from rental_modules.payments.orm import PaymentAllocationModel

logger = get_logger("modules.billing.service")

_ZERO = Decimal("0")


class BillingService(BaseService[InvoiceModel]):
    """
    Invoice generation, status derivation and debt queries.

    Transaction boundary: flush only.  Callers commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        invoice_due_days: int = 5,
        currency_symbol: str = "KSh",
        override_roles: Collection[UserRole] = (UserRole.ADMIN, UserRole.PROPERTY_MANAGER),
    ):
        super().__init__(session, clock)
        self._invoice_due_days = invoice_due_days
        self._currency_symbol = currency_symbol
        self._override_roles = frozenset(UserRole(r) for r in override_roles)

    # =========================================================================
    # Generation
    # =========================================================================

    def generate_invoice(
        self,
        tenant_id: UUID,
        period_start: date,
        period_end: date,
        amount: Decimal,
        actor_id: UUID,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> Invoice:
        """
        Return the invoice for (tenant, period_start), creating it if absent.

        A repeated call returns the existing invoice unchanged; a differing
        amount is logged, not applied.
        """
        if period_end <= period_start:
            raise InvalidDateRangeError("period", str(period_start), str(period_end))
        require_amount("amount", amount)

        tenant = self._lock_tenant(tenant_id)

        existing = self._find_invoice(tenant_id, period_start)
        if existing is not None:
            return self._existing_invoice(existing, amount)

        if not tenant.is_active:
            raise LeaseInactiveError(str(tenant_id))

        today = self.clock.today()
        if due_date is None:
            due_date = max(today, period_start + timedelta(days=self._invoice_due_days))
        elif due_date < today:
            raise ValidationError("due_date", f"{due_date} precedes issue date {today}")

        dto = Invoice(
            id=uuid4(),
            tenant_id=tenant_id,
            amount=amount,
            period_start=period_start,
            period_end=period_end,
            issue_date=today,
            due_date=due_date,
            status=derive_invoice_status(amount, _ZERO, due_date, today),
            currency_symbol=self._currency_symbol,
            notes=notes,
        )
        try:
            with self.session.begin_nested():
                self.session.add(InvoiceModel.from_dto(dto, created_by_id=actor_id))
                self.session.flush()
        except IntegrityError:
            winner = self._find_invoice(tenant_id, period_start)
            if winner is None:
                raise
            return self._existing_invoice(winner, amount)

        logger.info("invoice_generated", extra={
            "invoice_id": str(dto.id),
            "tenant_id": str(tenant_id),
            "period_start": period_start.isoformat(),
            "amount": str(amount),
            "due_date": due_date.isoformat(),
        })
        return dto

    def _existing_invoice(self, model: InvoiceModel, requested_amount: Decimal) -> Invoice:
        if model.amount != requested_amount:
            logger.warning("invoice_amount_mismatch", extra={
                "invoice_id": str(model.id),
                "tenant_id": str(model.tenant_id),
                "existing_amount": str(model.amount),
                "requested_amount": str(requested_amount),
            })
        else:
            logger.info("invoice_already_exists", extra={"invoice_id": str(model.id)})
        return model.to_dto()

    def _lock_tenant(self, tenant_id: UUID) -> TenantModel:
        tenant = self.session.scalars(
            select(TenantModel).where(TenantModel.id == tenant_id).with_for_update()
        ).first()
        if tenant is None:
            raise TenantNotFoundError(str(tenant_id))
        return tenant

    def _find_invoice(self, tenant_id: UUID, period_start: date) -> InvoiceModel | None:
        return self.session.scalars(
            select(InvoiceModel).where(
                InvoiceModel.tenant_id == tenant_id,
                InvoiceModel.period_start == period_start,
            )
        ).first()

    def billable_leases(self, period_start: date, period_end: date) -> list[Tenant]:
        """
        Active leases overlapping ``[period_start, period_end)``, in billing
        order: property, unit number (whole-property leases first),
        lease start, lease id.
        """
        rows = self.session.scalars(
            select(TenantModel)
            .outerjoin(UnitModel, UnitModel.id == TenantModel.unit_id)
            .where(
                TenantModel.is_active.is_(True),
                TenantModel.lease_start < period_end,
                TenantModel.lease_end > period_start,
            )
            .order_by(
                TenantModel.property_id,
                case((TenantModel.unit_id.is_(None), 0), else_=1),
                UnitModel.unit_number,
                TenantModel.lease_start,
                TenantModel.id,
            )
        ).all()
        return [row.to_dto() for row in rows]

    # =========================================================================
    # Status
    # =========================================================================

    def get_invoice_model(self, invoice_id: UUID) -> InvoiceModel:
        model = self.session.get(InvoiceModel, invoice_id)
        if model is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return model

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        return self.get_invoice_model(invoice_id).to_dto()

    def applied_amount(self, invoice_id: UUID) -> Decimal:
        """Money applied to an invoice: the sum of its allocations."""
        return self.applied_amounts([invoice_id]).get(invoice_id, _ZERO)

    def applied_amounts(self, invoice_ids: Iterable[UUID]) -> dict[UUID, Decimal]:
        ids = list(invoice_ids)
        totals: dict[UUID, Decimal] = {i: _ZERO for i in ids}
        if not ids:
            return totals
        rows = self.session.execute(
            select(PaymentAllocationModel.invoice_id, PaymentAllocationModel.amount)
            .where(PaymentAllocationModel.invoice_id.in_(ids))
        ).all()
        # Summed in Python: SQLite's SUM() goes through float.
        for invoice_id, amount in rows:
            totals[invoice_id] += amount
        return totals

    def recompute_status(
        self,
        invoice_id: UUID,
        actor_id: UUID,
        as_of: date | None = None,
    ) -> Invoice:
        """Set the invoice's status from its allocations.  Clears any override."""
        model = self.get_invoice_model(invoice_id)
        self._recompute(model, actor_id, as_of or self.clock.today())
        return model.to_dto()

    def _recompute(self, model: InvoiceModel, actor_id: UUID, as_of: date) -> bool:
        applied = self.applied_amount(model.id)
        new_status = derive_invoice_status(model.amount, applied, model.due_date, as_of)
        changed = model.status != new_status.value or model.status_overridden
        if not changed:
            return False

        old_status = model.status
        model.status = new_status.value
        model.status_overridden = False
        model.override_reason = None
        model.overridden_by_id = None
        model.updated_by_id = actor_id
        self.session.flush()

        logger.info("invoice_status_changed", extra={
            "invoice_id": str(model.id),
            "tenant_id": str(model.tenant_id),
            "old_status": old_status,
            "new_status": new_status.value,
            "applied": str(applied),
            "amount": str(model.amount),
        })
        return True

    def override_invoice_status(
        self,
        invoice_id: UUID,
        status: InvoiceStatus,
        reason: str,
        actor_id: UUID,
    ) -> Invoice:
        """Record an explicit status chosen by a privileged user."""
        status = InvoiceStatus(status)
        if not reason or not reason.strip():
            raise ValidationError("reason", "an override needs a reason")
        actor = self.session.get(UserModel, actor_id)
        if actor is None or UserRole(actor.role) not in self._override_roles:
            raise PermissionDeniedError(
                actor_id=str(actor_id),
                action="override invoice status",
                required_roles=sorted(r.value for r in self._override_roles),
            )

        model = self.get_invoice_model(invoice_id)
        old_status = model.status
        model.status = status.value
        model.status_overridden = True
        model.override_reason = reason.strip()
        model.overridden_by_id = actor_id
        model.updated_by_id = actor_id
        self.session.flush()

        logger.warning("invoice_status_overridden", extra={
            "invoice_id": str(invoice_id),
            "old_status": old_status,
            "new_status": status.value,
            "reason": model.override_reason,
            "actor_id": str(actor_id),
        })
        return model.to_dto()

    def refresh_overdue_statuses(self, actor_id: UUID, as_of: date | None = None) -> list[Invoice]:
        """
        Recompute every unpaid invoice whose due date has passed.

        Returns the invoices whose stored status changed.
        """
        as_of = as_of or self.clock.today()
        candidates = self.session.scalars(
            select(InvoiceModel)
            .where(
                InvoiceModel.status != InvoiceStatus.PAID.value,
                InvoiceModel.due_date < as_of,
            )
            .order_by(InvoiceModel.due_date, InvoiceModel.id)
        ).all()
        changed = [m.to_dto() for m in candidates if self._recompute(m, actor_id, as_of)]

        logger.info("overdue_sweep_completed", extra={
            "as_of": as_of.isoformat(),
            "examined": len(candidates),
            "changed": len(changed),
        })
        return changed

    # =========================================================================
    # Queries
    # =========================================================================

    def outstanding_invoice_models(self, tenant_id: UUID) -> list[InvoiceModel]:
        """Pending/overdue/partial invoices, oldest due first."""
        return list(self.session.scalars(
            select(InvoiceModel)
            .where(
                InvoiceModel.tenant_id == tenant_id,
                InvoiceModel.status.in_([s.value for s in OUTSTANDING_STATUSES]),
            )
            .order_by(InvoiceModel.due_date, InvoiceModel.period_start, InvoiceModel.id)
        ).all())

    def outstanding_invoices(self, tenant_id: UUID) -> list[Invoice]:
        return [m.to_dto() for m in self.outstanding_invoice_models(tenant_id)]

    def overdue_invoices(self, tenant_id: UUID, as_of: date | None = None) -> list[Invoice]:
        """Invoices past due with an unpaid balance, whatever their label."""
        as_of = as_of or self.clock.today()
        models = self.session.scalars(
            select(InvoiceModel)
            .where(InvoiceModel.tenant_id == tenant_id, InvoiceModel.due_date < as_of)
            .order_by(InvoiceModel.due_date, InvoiceModel.period_start, InvoiceModel.id)
        ).all()
        applied = self.applied_amounts(m.id for m in models)
        return [
            m.to_dto()
            for m in models
            if is_past_due(m.amount, applied[m.id], m.due_date, as_of)
        ]

    def invoices_for_tenant(self, tenant_id: UUID) -> list[Invoice]:
        models = self.session.scalars(
            select(InvoiceModel)
            .where(InvoiceModel.tenant_id == tenant_id)
            .order_by(InvoiceModel.period_start, InvoiceModel.id)
        ).all()
        return [m.to_dto() for m in models]
