"""
Payment Service -- the payment reconciliation engine.

Responsibility:
    Records money received from a tenant, allocates it to the tenant's
    outstanding invoices oldest-first, and keeps invoice and payment
    statuses equal to what the allocations say.

Architecture position:
    Modules > Payments.  Flush-only (BaseService contract).  Allocation
    arithmetic is delegated to the pure ``AllocationEngine``; invoice status
    to ``BillingService.recompute_status``.

Invariants enforced:
    - A gateway transaction funds at most one payment.  Replaying the same
      transaction id returns the payment it already funded, untouched.
    - Sum of allocations of a payment never exceeds its amount; sum of
      allocations of an invoice never exceeds its amount.
    - Tenant credit (unapplied remainder) is derived, never stored.
    - Overpayment is never an error.

Failure modes:
    - NonPositiveAmountError, ValidationError (gateway amount mismatch).
    - TenantNotFoundError, GatewayTransactionNotFoundError,
      PaymentNotFoundError.

Audit relevance:
    ``payment_recorded``, ``payment_allocated``, ``payment_replayed`` and
    ``tenant_credit_applied`` reconstruct where every shilling went.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from rental_engines.allocation import AllocationEngine, AllocationTarget
from rental_kernel.domain.clock import Clock
from rental_kernel.domain.money import require_amount
from rental_kernel.exceptions import (
    GatewayTransactionNotFoundError,
    PaymentNotFoundError,
    TenantNotFoundError,
    ValidationError,
)
from rental_kernel.logging_config import get_logger
from rental_kernel.services.base import BaseService
from rental_modules.billing.orm import InvoiceModel
from rental_modules.billing.service import BillingService
from rental_modules.lease.orm import TenantModel
from rental_modules.payments.models import Payment, PaymentAllocation, PaymentStatus
from rental_modules.payments.orm import (
    GatewayTransactionModel,
    PaymentAllocationModel,
    PaymentModel,
)

logger = get_logger("modules.payments.service")

_ZERO = Decimal("0")


class PaymentService(BaseService[PaymentModel]):
    """
    Payment recording and allocation.

    Transaction boundary: flush only.  Callers commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        currency_symbol: str = "KSh",
        billing: BillingService | None = None,
        allocation_engine: AllocationEngine | None = None,
    ):
        super().__init__(session, clock)
        self._currency_symbol = currency_symbol
        self._billing = billing or BillingService(session, self.clock)
        self._engine = allocation_engine or AllocationEngine()

    # =========================================================================
    # Recording
    # =========================================================================

    def record_payment(
        self,
        tenant_id: UUID,
        amount: Decimal,
        payment_method: str,
        actor_id: UUID,
        gateway_transaction_id: str | None = None,
        payment_reference: str | None = None,
        notes: str | None = None,
        received_by_id: UUID | None = None,
    ) -> Payment:
        """
        Record a payment and apply it to the tenant's outstanding invoices.

        Preconditions:
            - ``amount > 0``.
            - If ``gateway_transaction_id`` is given, the gateway transaction
              has been recorded and carries the same amount.

        Postconditions:
            - One PaymentAllocation per invoice that received money.
            - Every touched invoice has its derived status.
        """
        require_amount("amount", amount)
        self._lock_tenant(tenant_id)

        gateway = None
        if gateway_transaction_id is not None:
            gateway = self.get_gateway_transaction_model(gateway_transaction_id, for_update=True)
            if gateway.payment_id is not None:
                existing = self.get_payment_model(gateway.payment_id)
                logger.info("payment_replayed", extra={
                    "transaction_id": gateway_transaction_id,
                    "payment_id": str(existing.id),
                })
                return existing.to_dto()
            if gateway.amount != amount:
                raise ValidationError(
                    "amount",
                    f"payment amount {amount} differs from gateway amount {gateway.amount}",
                )

        payment = PaymentModel.from_dto(
            Payment(
                id=uuid4(),
                tenant_id=tenant_id,
                amount=amount,
                payment_date=self.clock.now(),
                payment_method=payment_method,
                status=PaymentStatus.PENDING,
                currency_symbol=self._currency_symbol,
                gateway_transaction_id=gateway_transaction_id,
                payment_reference=payment_reference,
                notes=notes,
                received_by_id=received_by_id,
            ),
            created_by_id=actor_id,
        )
        self.session.add(payment)
        self.session.flush()

        if gateway is not None:
            gateway.payment_id = payment.id
            gateway.updated_by_id = actor_id
            self.session.flush()

        logger.info("payment_recorded", extra={
            "payment_id": str(payment.id),
            "tenant_id": str(tenant_id),
            "amount": str(amount),
            "payment_method": payment_method,
            "transaction_id": gateway_transaction_id,
        })

        self._allocate(payment, amount, actor_id)
        return payment.to_dto()

    def apply_tenant_credit(self, tenant_id: UUID, actor_id: UUID) -> list[PaymentAllocation]:
        """
        Apply the unapplied remainders of earlier payments to outstanding
        invoices, oldest payment first.
        """
        self._lock_tenant(tenant_id)
        payments = self.session.scalars(
            select(PaymentModel)
            .where(PaymentModel.tenant_id == tenant_id)
            .order_by(PaymentModel.payment_date, PaymentModel.id)
        ).all()
        remainders = self._remainders(payments)

        written: list[PaymentAllocation] = []
        for payment in payments:
            remainder = remainders[payment.id]
            if remainder <= _ZERO:
                continue
            allocations = self._allocate(payment, remainder, actor_id)
            if not allocations:
                break
            written.extend(allocations)

        if written:
            logger.info("tenant_credit_applied", extra={
                "tenant_id": str(tenant_id),
                "allocations": len(written),
                "amount": str(sum((a.amount for a in written), _ZERO)),
            })
        return written

    def _allocate(
        self,
        payment: PaymentModel,
        available: Decimal,
        actor_id: UUID,
    ) -> list[PaymentAllocation]:
        """Spread ``available`` of ``payment`` over outstanding invoices."""
        invoices = self._billing.outstanding_invoice_models(payment.tenant_id)
        applied = self._billing.applied_amounts(inv.id for inv in invoices)
        by_id = {inv.id: inv for inv in invoices}

        targets = [
            AllocationTarget(
                target_id=inv.id,
                eligible_amount=max(inv.amount - applied[inv.id], _ZERO),
                date=inv.due_date,
                priority=index,
            )
            for index, inv in enumerate(invoices)
        ]
        result = self._engine.allocate_fifo(available, targets)

        written: list[PaymentAllocation] = []
        for line in result.funded_lines:
            model = PaymentAllocationModel(
                id=uuid4(),
                payment_id=payment.id,
                invoice_id=line.target_id,
                amount=line.allocated,
                created_by_id=actor_id,
            )
            self.session.add(model)
            written.append(model.to_dto())
        self.session.flush()

        for line in result.funded_lines:
            invoice: InvoiceModel = by_id[line.target_id]
            self._billing.recompute_status(invoice.id, actor_id)

        self._refresh_payment_status(payment, actor_id)

        logger.info("payment_allocated", extra={
            "payment_id": str(payment.id),
            "tenant_id": str(payment.tenant_id),
            "available": str(available),
            "allocated": str(result.total_allocated),
            "unallocated": str(result.unallocated),
            "invoices_funded": len(written),
        })
        return written

    def _refresh_payment_status(self, payment: PaymentModel, actor_id: UUID) -> None:
        remainder = self._remainders([payment])[payment.id]
        status = PaymentStatus.PAID if remainder <= _ZERO else PaymentStatus.PARTIAL
        if payment.status != status.value:
            payment.status = status.value
            payment.updated_by_id = actor_id
            self.session.flush()

    def _remainders(self, payments) -> dict[UUID, Decimal]:
        ids = [p.id for p in payments]
        totals = {p.id: p.amount for p in payments}
        if not ids:
            return totals
        rows = self.session.execute(
            select(PaymentAllocationModel.payment_id, PaymentAllocationModel.amount)
            .where(PaymentAllocationModel.payment_id.in_(ids))
        ).all()
        for payment_id, amount in rows:
            totals[payment_id] -= amount
        return totals

    def _lock_tenant(self, tenant_id: UUID) -> TenantModel:
        tenant = self.session.scalars(
            select(TenantModel).where(TenantModel.id == tenant_id).with_for_update()
        ).first()
        if tenant is None:
            raise TenantNotFoundError(str(tenant_id))
        return tenant

    # =========================================================================
    # Queries
    # =========================================================================

    def tenant_credit_balance(self, tenant_id: UUID) -> Decimal:
        """Sum of the unapplied remainders of the tenant's payments."""
        payments = self.session.scalars(
            select(PaymentModel).where(PaymentModel.tenant_id == tenant_id)
        ).all()
        return sum(self._remainders(payments).values(), _ZERO)

    def get_payment_model(self, payment_id: UUID) -> PaymentModel:
        model = self.session.get(PaymentModel, payment_id)
        if model is None:
            raise PaymentNotFoundError(str(payment_id))
        return model

    def get_payment(self, payment_id: UUID) -> Payment:
        return self.get_payment_model(payment_id).to_dto()

    def payments_for_tenant(self, tenant_id: UUID) -> list[Payment]:
        models = self.session.scalars(
            select(PaymentModel)
            .where(PaymentModel.tenant_id == tenant_id)
            .order_by(PaymentModel.payment_date, PaymentModel.id)
        ).all()
        return [m.to_dto() for m in models]

    def allocations_for_payment(self, payment_id: UUID) -> list[PaymentAllocation]:
        models = self.session.scalars(
            select(PaymentAllocationModel)
            .where(PaymentAllocationModel.payment_id == payment_id)
            .order_by(PaymentAllocationModel.created_at, PaymentAllocationModel.id)
        ).all()
        return [m.to_dto() for m in models]

    def get_gateway_transaction_model(
        self,
        transaction_id: str,
        for_update: bool = False,
    ) -> GatewayTransactionModel:
        stmt = select(GatewayTransactionModel).where(
            GatewayTransactionModel.transaction_id == transaction_id
        )
        if for_update:
            stmt = stmt.with_for_update()
        model = self.session.scalars(stmt).first()
        if model is None:
            raise GatewayTransactionNotFoundError(transaction_id)
        return model
