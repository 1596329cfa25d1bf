"""
PropertyManagementService -- the transactional facade.

Responsibility:
    The single write entrypoint for callers (an API layer, a scheduler, a
    gateway listener).  Every mutating operation runs in exactly one
    database transaction through ``TransactionRunner``: the module services
    flush, this class commits or rolls back.

Architecture position:
    Services -- stateful orchestration over modules, engines and kernel.
    Nothing in ``rental_kernel`` or ``rental_modules`` imports from here.

Invariants enforced:
    - All-or-nothing: a payment, its allocations and the invoice statuses
      land together or not at all.  The same holds for a lease, its unit
      status and its property status.
    - Per-key serialization: lease operations hold ``property:<id>``;
      invoicing, payments and credit hold ``tenant:<id>``; ingestion holds
      ``gateway:<transaction id>`` then ``tenant:<id>``; maintenance holds
      ``maintenance:<id>``.  Row locks back these in the database.
    - Transient store failures are retried with bounded backoff; exhaustion
      raises StoreUnavailableError.

Failure modes:
    - Every typed error of the module services surfaces unchanged after
      rollback, except during gateway ingestion, where bad input is logged
      and dropped.

Audit relevance:
    Each operation binds ``actor_id`` / ``tenant_id`` / ``transaction_id``
    into ``LogContext`` so every log line of the transaction carries them.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from rental_config import get_active_config
from rental_config.schema import RentalConfig
from rental_ingestion.services.gateway_ingestion_service import (
    GatewayIngestionService,
    IngestionOutcome,
    parse_gateway_event,
)
from rental_kernel.db.engine import get_session_factory
from rental_kernel.db.locks import (
    KeyedLockRegistry,
    gateway_key,
    maintenance_key,
    property_key,
    tenant_key,
)
from rental_kernel.db.transaction import TransactionRunner
from rental_kernel.domain.clock import Clock, SystemClock
from rental_kernel.domain.msisdn import normalize_msisdn
from rental_kernel.exceptions import (
    ConflictError,
    InvoiceNotFoundError,
    NotFoundError,
    RentalKernelError,
    TenantNotFoundError,
    ValidationError,
)
from rental_kernel.logging_config import LogContext, get_logger
from rental_kernel.services.base import SYSTEM_ACTOR_ID
from rental_modules.billing.models import Invoice, InvoiceStatus
from rental_modules.billing.orm import InvoiceModel
from rental_modules.billing.selectors import TenantLedger, TenantLedgerSelector
from rental_modules.billing.service import BillingService
from rental_modules.directory.models import (
    Property,
    PropertyStatus,
    PropertyType,
    Unit,
    User,
    UserRole,
)
from rental_modules.directory.selectors import PropertyOccupancy, UnitOccupancySelector
from rental_modules.directory.service import DirectoryService
from rental_modules.lease.models import Tenant
from rental_modules.lease.orm import TenantModel
from rental_modules.lease.service import LeaseService
from rental_modules.maintenance.models import (
    MaintenancePriority,
    MaintenanceRequest,
    MaintenanceStatus,
)
from rental_modules.maintenance.selectors import MaintenanceQueueSelector
from rental_modules.maintenance.service import MaintenanceService
from rental_modules.payments.models import Payment, PaymentAllocation
from rental_modules.payments.service import PaymentService

logger = get_logger("services.property_management")

T = TypeVar("T")


@dataclass(frozen=True)
class BillingCycleFailure:
    tenant_id: UUID
    error_code: str
    message: str


@dataclass(frozen=True)
class BillingCycleResult:
    """Outcome of one billing run.  Each lease was invoiced in its own transaction."""

    period_start: date
    period_end: date
    invoices: tuple[Invoice, ...]
    failures: tuple[BillingCycleFailure, ...]

    @property
    def succeeded(self) -> bool:
        return not self.failures


class PropertyManagementService:
    """
    Transactional facade over the rental modules.

    Thread-safe: each call opens its own session; share one instance (and
    so one lock registry) per process.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        config: RentalConfig | None = None,
        locks: KeyedLockRegistry | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or get_active_config()
        self.clock = clock or SystemClock()
        self._session_factory = session_factory or get_session_factory()
        self.locks = locks or KeyedLockRegistry(self.config.retry.lock_timeout_seconds)
        self._runner = TransactionRunner(
            self._session_factory,
            locks=self.locks,
            max_attempts=self.config.retry.max_attempts,
            base_delay_seconds=self.config.retry.base_delay_seconds,
            max_delay_seconds=self.config.retry.max_delay_seconds,
            sleep=sleep,
        )

    # =========================================================================
    # Plumbing
    # =========================================================================

    def _directory(self, session: Session) -> DirectoryService:
        return DirectoryService(
            session,
            self.clock,
            currency_symbol=self.config.billing.currency_symbol,
            default_country_code=self.config.gateway.country_code,
        )

    def _billing(self, session: Session) -> BillingService:
        return BillingService(
            session,
            self.clock,
            invoice_due_days=self.config.billing.invoice_due_days,
            currency_symbol=self.config.billing.currency_symbol,
            override_roles=self.config.lease.override_roles,
        )

    def _lease(self, session: Session) -> LeaseService:
        return LeaseService(
            session,
            self.clock,
            override_roles=self.config.lease.override_roles,
            directory=self._directory(session),
            billing=self._billing(session),
        )

    def _payments(self, session: Session) -> PaymentService:
        return PaymentService(
            session,
            self.clock,
            currency_symbol=self.config.billing.currency_symbol,
            billing=self._billing(session),
        )

    def _run(
        self,
        operation: str,
        fn: Callable[[Session], T],
        lock_keys: Iterable[str] = (),
        **context: Any,
    ) -> T:
        with LogContext.bind(**context):
            return self._runner.run(operation, fn, lock_keys=tuple(lock_keys))

    def _read(self, fn: Callable[[Session], T]) -> T:
        session = self._session_factory()
        try:
            return fn(session)
        finally:
            session.rollback()
            session.close()

    def _lease_property_id(self, tenant_id: UUID) -> UUID:
        # property_id never changes on a lease, so it is safe to read unlocked.
        def read(session: Session) -> UUID:
            tenant = session.get(TenantModel, tenant_id)
            if tenant is None:
                raise TenantNotFoundError(str(tenant_id))
            return tenant.property_id

        return self._read(read)

    def _invoice_tenant_id(self, invoice_id: UUID) -> UUID:
        def read(session: Session) -> UUID:
            invoice = session.get(InvoiceModel, invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(str(invoice_id))
            return invoice.tenant_id

        return self._read(read)

    # =========================================================================
    # Directory
    # =========================================================================

    def create_user(
        self,
        username: str,
        email: str,
        full_name: str,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        role: UserRole = UserRole.TENANT,
        phone: str | None = None,
    ) -> User:
        return self._run(
            "create_user",
            lambda s: self._directory(s).create_user(
                username, email, full_name, actor_id, role=role, phone=phone
            ),
            actor_id=actor_id,
        )

    def change_user_role(self, user_id: UUID, new_role: UserRole, actor_id: UUID) -> User:
        return self._run(
            "change_user_role",
            lambda s: self._directory(s).change_user_role(user_id, new_role, actor_id),
            actor_id=actor_id,
        )

    def delete_user(self, user_id: UUID, actor_id: UUID) -> None:
        self._run(
            "delete_user",
            lambda s: self._directory(s).delete_user(user_id, actor_id),
            actor_id=actor_id,
        )

    def create_property(
        self,
        name: str,
        address: str,
        city: str,
        county: str,
        property_type: PropertyType,
        price: Decimal,
        owner_id: UUID,
        actor_id: UUID,
        status: PropertyStatus = PropertyStatus.FOR_RENT,
        **details: Any,
    ) -> Property:
        return self._run(
            "create_property",
            lambda s: self._directory(s).create_property(
                name=name,
                address=address,
                city=city,
                county=county,
                type=property_type,
                price=price,
                owner_id=owner_id,
                actor_id=actor_id,
                status=status,
                **details,
            ),
            actor_id=actor_id,
        )

    def add_unit(
        self,
        property_id: UUID,
        unit_number: str,
        bedrooms: int,
        bathrooms: Decimal,
        square_feet: Decimal,
        rent: Decimal,
        actor_id: UUID,
    ) -> Unit:
        return self._run(
            "add_unit",
            lambda s: self._directory(s).add_unit(
                property_id, unit_number, bedrooms, bathrooms, square_feet, rent, actor_id
            ),
            lock_keys=[property_key(property_id)],
            actor_id=actor_id,
        )

    def set_property_status(
        self,
        property_id: UUID,
        status: PropertyStatus,
        actor_id: UUID,
    ) -> Property:
        return self._run(
            "set_property_status",
            lambda s: self._directory(s).set_property_status(property_id, status, actor_id),
            lock_keys=[property_key(property_id)],
            actor_id=actor_id,
        )

    def delete_property(self, property_id: UUID, actor_id: UUID) -> None:
        self._run(
            "delete_property",
            lambda s: self._directory(s).delete_property(property_id, actor_id),
            lock_keys=[property_key(property_id)],
            actor_id=actor_id,
        )

    def delete_unit(self, unit_id: UUID, property_id: UUID, actor_id: UUID) -> None:
        self._run(
            "delete_unit",
            lambda s: self._directory(s).delete_unit(unit_id, actor_id),
            lock_keys=[property_key(property_id)],
            actor_id=actor_id,
        )

    def get_user(self, user_id: UUID) -> User:
        return self._read(lambda s: self._directory(s).get_user(user_id))

    def get_property(self, property_id: UUID) -> Property:
        return self._read(lambda s: self._directory(s).get_property(property_id))

    def get_unit(self, unit_id: UUID) -> Unit:
        return self._read(lambda s: self._directory(s).get_unit(unit_id))

    # =========================================================================
    # Leases
    # =========================================================================

    def create_lease(
        self,
        user_id: UUID,
        property_id: UUID,
        lease_start: date,
        lease_end: date,
        rent_amount: Decimal,
        security_deposit: Decimal,
        actor_id: UUID,
        unit_id: UUID | None = None,
    ) -> Tenant:
        return self._run(
            "create_lease",
            lambda s: self._lease(s).create_lease(
                user_id=user_id,
                property_id=property_id,
                lease_start=lease_start,
                lease_end=lease_end,
                rent_amount=rent_amount,
                security_deposit=security_deposit,
                actor_id=actor_id,
                unit_id=unit_id,
            ),
            lock_keys=[property_key(property_id)],
            actor_id=actor_id,
        )

    def terminate_lease(self, tenant_id: UUID, effective_date: date, actor_id: UUID) -> Tenant:
        property_id = self._lease_property_id(tenant_id)
        return self._run(
            "terminate_lease",
            lambda s: self._lease(s).terminate_lease(tenant_id, effective_date, actor_id),
            lock_keys=[property_key(property_id)],
            actor_id=actor_id,
            tenant_id=tenant_id,
        )

    def renew_lease(
        self,
        tenant_id: UUID,
        new_lease_end: date,
        actor_id: UUID,
        rent_amount: Decimal | None = None,
        override: bool = False,
    ) -> Tenant:
        property_id = self._lease_property_id(tenant_id)
        return self._run(
            "renew_lease",
            lambda s: self._lease(s).renew_lease(
                tenant_id, new_lease_end, actor_id, rent_amount=rent_amount, override=override
            ),
            lock_keys=[property_key(property_id), tenant_key(tenant_id)],
            actor_id=actor_id,
            tenant_id=tenant_id,
        )

    def get_tenant(self, tenant_id: UUID) -> Tenant:
        return self._read(lambda s: self._lease(s).get_tenant(tenant_id))

    # =========================================================================
    # Billing
    # =========================================================================

    def _generate_and_apply(
        self,
        session: Session,
        tenant_id: UUID,
        period_start: date,
        period_end: date,
        amount: Decimal,
        actor_id: UUID,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> Invoice:
        billing = self._billing(session)
        invoice = billing.generate_invoice(
            tenant_id, period_start, period_end, amount, actor_id,
            due_date=due_date, notes=notes,
        )
        if self.config.billing.auto_apply_credit:
            if self._payments(session).apply_tenant_credit(tenant_id, actor_id):
                invoice = billing.get_invoice(invoice.id)
        return invoice

    def generate_invoice(
        self,
        tenant_id: UUID,
        period_start: date,
        period_end: date,
        amount: Decimal,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> Invoice:
        return self._run(
            "generate_invoice",
            lambda s: self._generate_and_apply(
                s, tenant_id, period_start, period_end, amount, actor_id, due_date, notes
            ),
            lock_keys=[tenant_key(tenant_id)],
            actor_id=actor_id,
            tenant_id=tenant_id,
        )

    def run_billing_cycle(
        self,
        period_start: date,
        period_end: date,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> BillingCycleResult:
        """
        Invoice every active lease overlapping the period at its rent.

        Each lease is invoiced in its own transaction; one failure does not
        stop the run.  Re-running the same period is harmless.
        """
        if period_end <= period_start:
            raise ValidationError("period", f"{period_end} is not after {period_start}")
        leases = self._read(lambda s: self._billing(s).billable_leases(period_start, period_end))

        invoices: list[Invoice] = []
        failures: list[BillingCycleFailure] = []
        for lease in leases:
            try:
                invoices.append(self.generate_invoice(
                    lease.id, period_start, period_end, lease.rent_amount, actor_id
                ))
            except RentalKernelError as exc:
                logger.warning("billing_cycle_lease_failed", extra={
                    "tenant_id": str(lease.id),
                    "error_code": exc.code,
                    "error": str(exc),
                })
                failures.append(BillingCycleFailure(lease.id, exc.code, str(exc)))

        logger.info("billing_cycle_completed", extra={
            "period_start": period_start.isoformat(),
            "period_end": period_end.isoformat(),
            "leases": len(leases),
            "invoices": len(invoices),
            "failures": len(failures),
        })
        return BillingCycleResult(period_start, period_end, tuple(invoices), tuple(failures))

    def recompute_status(self, invoice_id: UUID, actor_id: UUID = SYSTEM_ACTOR_ID) -> Invoice:
        tenant_id = self._invoice_tenant_id(invoice_id)
        return self._run(
            "recompute_status",
            lambda s: self._billing(s).recompute_status(invoice_id, actor_id),
            lock_keys=[tenant_key(tenant_id)],
            actor_id=actor_id,
            tenant_id=tenant_id,
        )

    def override_invoice_status(
        self,
        invoice_id: UUID,
        status: InvoiceStatus,
        reason: str,
        actor_id: UUID,
    ) -> Invoice:
        tenant_id = self._invoice_tenant_id(invoice_id)
        return self._run(
            "override_invoice_status",
            lambda s: self._billing(s).override_invoice_status(invoice_id, status, reason, actor_id),
            lock_keys=[tenant_key(tenant_id)],
            actor_id=actor_id,
            tenant_id=tenant_id,
        )

    def refresh_overdue_statuses(
        self,
        as_of: date | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> list[Invoice]:
        return self._run(
            "refresh_overdue_statuses",
            lambda s: self._billing(s).refresh_overdue_statuses(actor_id, as_of),
            actor_id=actor_id,
        )

    def outstanding_invoices(self, tenant_id: UUID) -> list[Invoice]:
        return self._read(lambda s: self._billing(s).outstanding_invoices(tenant_id))

    def overdue_invoices(self, tenant_id: UUID, as_of: date | None = None) -> list[Invoice]:
        return self._read(lambda s: self._billing(s).overdue_invoices(tenant_id, as_of))

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        return self._read(lambda s: self._billing(s).get_invoice(invoice_id))

    # =========================================================================
    # Payments
    # =========================================================================

    def record_payment(
        self,
        tenant_id: UUID,
        amount: Decimal,
        payment_method: str,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        gateway_transaction_id: str | None = None,
        payment_reference: str | None = None,
        notes: str | None = None,
        received_by_id: UUID | None = None,
    ) -> Payment:
        keys = [tenant_key(tenant_id)]
        if gateway_transaction_id is not None:
            keys.append(gateway_key(gateway_transaction_id))
        return self._run(
            "record_payment",
            lambda s: self._payments(s).record_payment(
                tenant_id,
                amount,
                payment_method,
                actor_id,
                gateway_transaction_id=gateway_transaction_id,
                payment_reference=payment_reference,
                notes=notes,
                received_by_id=received_by_id,
            ),
            lock_keys=keys,
            actor_id=actor_id,
            tenant_id=tenant_id,
            transaction_id=gateway_transaction_id,
        )

    def apply_tenant_credit(
        self,
        tenant_id: UUID,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> list[PaymentAllocation]:
        return self._run(
            "apply_tenant_credit",
            lambda s: self._payments(s).apply_tenant_credit(tenant_id, actor_id),
            lock_keys=[tenant_key(tenant_id)],
            actor_id=actor_id,
            tenant_id=tenant_id,
        )

    def tenant_credit_balance(self, tenant_id: UUID) -> Decimal:
        return self._read(lambda s: self._payments(s).tenant_credit_balance(tenant_id))

    def get_payment(self, payment_id: UUID) -> Payment:
        return self._read(lambda s: self._payments(s).get_payment(payment_id))

    def payments_for_tenant(self, tenant_id: UUID) -> list[Payment]:
        return self._read(lambda s: self._payments(s).payments_for_tenant(tenant_id))

    # =========================================================================
    # Gateway
    # =========================================================================

    def ingest_gateway_event(self, event: Any) -> Payment | None:
        """
        Accept one gateway notification.

        Returns the payment the transaction funds, or None when the event is
        malformed, failed, a conflicting replay, or cannot be matched to a
        lease.  Never raises for bad input.
        """
        parsed = parse_gateway_event(event)
        if parsed is None:
            return None
        actor_id = SYSTEM_ACTOR_ID

        # Tenant key is taken before the transaction opens.  The resolution
        # inside the transaction is authoritative; the hint only picks locks.
        payer_hint = self._read(
            lambda s: GatewayIngestionService(s, self.clock, self.config.gateway).resolve_payer(
                parsed.reference,
                normalize_msisdn(parsed.phone_number, self.config.gateway.country_code),
            )
        )
        lock_keys = [gateway_key(parsed.transaction_id)]
        if payer_hint is not None:
            lock_keys.append(tenant_key(payer_hint))

        def work(session: Session) -> Payment | None:
            ingestion = GatewayIngestionService(session, self.clock, self.config.gateway)
            result = ingestion.prepare(parsed, actor_id)
            match result.outcome:
                case IngestionOutcome.READY:
                    with self.locks.hold(tenant_key(result.tenant_id)):
                        return self._payments(session).record_payment(
                            result.tenant_id,
                            parsed.amount,
                            self.config.gateway.payment_method,
                            actor_id,
                            gateway_transaction_id=parsed.transaction_id,
                            payment_reference=parsed.reference,
                        )
                case IngestionOutcome.ALREADY_APPLIED:
                    return self._payments(session).get_payment(result.transaction.payment_id)
                case (
                    IngestionOutcome.FAILED
                    | IngestionOutcome.UNMATCHED
                    | IngestionOutcome.PAYLOAD_MISMATCH
                ):
                    return None
                case _:
                    raise ValueError(f"Unknown ingestion outcome: {result.outcome}")

        try:
            return self._run(
                "ingest_gateway_event",
                work,
                lock_keys=lock_keys,
                actor_id=actor_id,
                transaction_id=parsed.transaction_id,
            )
        except (ValidationError, ConflictError, NotFoundError) as exc:
            logger.warning("gateway_event_rejected", extra={
                "transaction_id": parsed.transaction_id,
                "error_code": exc.code,
                "error": str(exc),
            })
            return None

    def reconcile_gateway_transaction(
        self,
        transaction_id: str,
        tenant_id: UUID,
        actor_id: UUID,
    ) -> Payment:
        """Link an unmatched (successful) gateway transaction to a lease by hand."""

        def work(session: Session) -> Payment:
            gateway = GatewayIngestionService(
                session, self.clock, self.config.gateway
            ).require_reconcilable(transaction_id)
            payment = self._payments(session).record_payment(
                tenant_id,
                gateway.amount,
                self.config.gateway.payment_method,
                actor_id,
                gateway_transaction_id=transaction_id,
                payment_reference=gateway.reference,
                received_by_id=actor_id,
            )
            logger.info("gateway_transaction_reconciled", extra={
                "transaction_id": transaction_id,
                "tenant_id": str(tenant_id),
                "payment_id": str(payment.id),
            })
            return payment

        return self._run(
            "reconcile_gateway_transaction",
            work,
            lock_keys=[gateway_key(transaction_id), tenant_key(tenant_id)],
            actor_id=actor_id,
            tenant_id=tenant_id,
            transaction_id=transaction_id,
        )

    # =========================================================================
    # Maintenance
    # =========================================================================

    def submit_maintenance_request(
        self,
        tenant_id: UUID,
        title: str,
        description: str,
        actor_id: UUID,
        priority: MaintenancePriority = MaintenancePriority.MEDIUM,
        unit_id: UUID | None = None,
        notes: str | None = None,
    ) -> MaintenanceRequest:
        return self._run(
            "submit_maintenance_request",
            lambda s: MaintenanceService(s, self.clock).submit_request(
                tenant_id, title, description, actor_id,
                priority=priority, unit_id=unit_id, notes=notes,
            ),
            actor_id=actor_id,
            tenant_id=tenant_id,
        )

    def transition_maintenance_request(
        self,
        request_id: UUID,
        to_status: MaintenanceStatus,
        actor_id: UUID,
        notes: str | None = None,
    ) -> MaintenanceRequest:
        return self._run(
            "transition_maintenance_request",
            lambda s: MaintenanceService(s, self.clock).transition(
                request_id, to_status, actor_id, notes
            ),
            lock_keys=[maintenance_key(request_id)],
            actor_id=actor_id,
        )

    def start_maintenance(self, request_id: UUID, actor_id: UUID) -> MaintenanceRequest:
        return self.transition_maintenance_request(request_id, MaintenanceStatus.IN_PROGRESS, actor_id)

    def complete_maintenance(self, request_id: UUID, actor_id: UUID) -> MaintenanceRequest:
        return self.transition_maintenance_request(request_id, MaintenanceStatus.COMPLETED, actor_id)

    def cancel_maintenance(self, request_id: UUID, actor_id: UUID) -> MaintenanceRequest:
        return self.transition_maintenance_request(request_id, MaintenanceStatus.CANCELED, actor_id)

    def get_maintenance_request(self, request_id: UUID) -> MaintenanceRequest:
        return self._read(lambda s: MaintenanceService(s, self.clock).get_request(request_id))

    # =========================================================================
    # Queries
    # =========================================================================

    def tenant_ledger(self, tenant_id: UUID) -> TenantLedger:
        return self._read(lambda s: TenantLedgerSelector(s).ledger(tenant_id))

    def unit_occupancy(self, property_id: UUID) -> PropertyOccupancy:
        return self._read(lambda s: UnitOccupancySelector(s).occupancy(property_id))

    def maintenance_queue(
        self,
        statuses: Iterable[MaintenanceStatus] = (
            MaintenanceStatus.PENDING,
            MaintenanceStatus.IN_PROGRESS,
        ),
        property_id: UUID | None = None,
    ) -> list[MaintenanceRequest]:
        return self._read(
            lambda s: MaintenanceQueueSelector(s).queue(statuses, property_id=property_id)
        )
