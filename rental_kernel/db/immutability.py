"""
ORM-Level Protection of Lease and Financial History.

===============================================================================
WHY THIS EXISTS
===============================================================================

Invoices, payments, allocations and gateway transactions are the evidence
behind every balance a tenant is shown.  They must never be silently
rewritten or removed, and the users, properties and units they point at
must outlive them.

SQLAlchemy fires events before UPDATE/DELETE statements reach the database.
We register listeners that intercept them and check the rules below:

    session.flush()
         |
         v
    [before_flush]  --> deletions: append-only? referenced? --> error
         |
         v
    [before_update] --> frozen fields changed? -------------> error
         |
         v
    SQL sent to database (only if checks pass)

The RESTRICT foreign keys on the tables are the second layer: raw SQL that
bypasses the ORM is still refused by the database.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | Rule
---------------------|-------------------------------------------------------
Tenant (lease)       | Never deleted.  Parties, slot and start date frozen;
                     | is_active only goes True -> False; terminated_on set once
Invoice              | Never deleted.  Tenant, amount, period, issue date frozen
Payment              | Never deleted.  Tenant, amount, date, method, gateway
                     | transaction id frozen
PaymentAllocation    | Never updated, never deleted
GatewayTransaction   | Never deleted.  Only payment_id may change, once,
                     | from None to a value
MaintenanceRequest   | completed_at set once
User/Property/Unit   | Deletion refused while lease, invoice, payment or
                     | maintenance history references them

updated_at/updated_by_id may always change: they are audit metadata, not
history.

===============================================================================
USAGE
===============================================================================

Registered by ``init_engine_from_url``.  Registration is idempotent.

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session

from rental_kernel.exceptions import ImmutabilityViolationError, ReferencedEntityError
from rental_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_MISSING = object()


def _old_new(target, name: str) -> tuple[object, object] | None:
    """(old, new) if attribute ``name`` is being changed, else None."""
    history = inspect(target).attrs[name].history
    if not history.added:
        return None
    new = history.added[0]
    old = history.deleted[0] if history.deleted else _MISSING
    if old is not _MISSING and old == new:
        return None
    return old, new


def _reject(entity_type: str, target, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_frozen_fields(entity_type: str, target, fields: tuple[str, ...]) -> None:
    for name in fields:
        if _old_new(target, name) is not None:
            _reject(entity_type, target, "UPDATE", f"{name} cannot change")


# ---------------------------------------------------------------------------
# before_update listeners
# ---------------------------------------------------------------------------


def _check_tenant_update(mapper, connection, target):
    """Lease parties and slot are fixed; a lease is never reactivated."""
    _check_frozen_fields(
        "Tenant",
        target,
        ("user_id", "property_id", "unit_id", "occupancy_slot", "lease_start"),
    )
    change = _old_new(target, "is_active")
    if change is not None and change[1]:
        _reject("Tenant", target, "UPDATE", "terminated lease cannot be reactivated")
    change = _old_new(target, "terminated_on")
    if change is not None and change[0] not in (None, _MISSING):
        _reject("Tenant", target, "UPDATE", "terminated_on is already set")


def _check_invoice_update(mapper, connection, target):
    _check_frozen_fields(
        "Invoice",
        target,
        ("tenant_id", "amount", "period_start", "period_end", "issue_date", "currency_symbol"),
    )


def _check_payment_update(mapper, connection, target):
    _check_frozen_fields(
        "Payment",
        target,
        (
            "tenant_id",
            "amount",
            "payment_date",
            "payment_method",
            "gateway_transaction_id",
            "currency_symbol",
        ),
    )


def _check_allocation_update(mapper, connection, target):
    _check_frozen_fields(
        "PaymentAllocation", target, ("payment_id", "invoice_id", "amount")
    )


def _check_gateway_transaction_update(mapper, connection, target):
    """Gateway transactions are immutable except the one-time payment link."""
    _check_frozen_fields(
        "GatewayTransaction",
        target,
        (
            "transaction_id",
            "transaction_type",
            "phone_number",
            "msisdn",
            "amount",
            "reference",
            "description",
            "status",
            "response_code",
            "response_description",
            "transaction_date",
        ),
    )
    change = _old_new(target, "payment_id")
    if change is not None and (change[0] not in (None, _MISSING) or change[1] is None):
        _reject(
            "GatewayTransaction",
            target,
            "UPDATE",
            "payment link can only be set once",
        )


def _check_maintenance_update(mapper, connection, target):
    change = _old_new(target, "completed_at")
    if change is not None and change[0] not in (None, _MISSING):
        _reject("MaintenanceRequest", target, "UPDATE", "completed_at is already set")


# ---------------------------------------------------------------------------
# Deletion rules (before_flush)
# ---------------------------------------------------------------------------


def _reference_rules() -> dict[type, list[tuple[str, object]]]:
    """Map of restricted entity class -> [(label, referencing column)]."""
    from rental_modules.billing.orm import InvoiceModel
    from rental_modules.directory.orm import PropertyModel, UnitModel, UserModel
    from rental_modules.lease.orm import TenantModel
    from rental_modules.maintenance.orm import MaintenanceRequestModel
    from rental_modules.payments.orm import PaymentModel

    return {
        UserModel: [
            ("tenants.user_id", TenantModel.user_id),
            ("properties.owner_id", PropertyModel.owner_id),
            ("properties.manager_id", PropertyModel.manager_id),
            ("properties.listing_agent_id", PropertyModel.listing_agent_id),
            ("payments.received_by_id", PaymentModel.received_by_id),
            ("invoices.overridden_by_id", InvoiceModel.overridden_by_id),
        ],
        PropertyModel: [
            ("tenants.property_id", TenantModel.property_id),
            ("maintenance_requests.property_id", MaintenanceRequestModel.property_id),
        ],
        UnitModel: [
            ("tenants.unit_id", TenantModel.unit_id),
            ("maintenance_requests.unit_id", MaintenanceRequestModel.unit_id),
        ],
    }


def _append_only_types() -> dict[type, str]:
    from rental_modules.billing.orm import InvoiceModel
    from rental_modules.lease.orm import TenantModel
    from rental_modules.payments.orm import (
        GatewayTransactionModel,
        PaymentAllocationModel,
        PaymentModel,
    )

    return {
        TenantModel: "Tenant",
        InvoiceModel: "Invoice",
        PaymentModel: "Payment",
        PaymentAllocationModel: "PaymentAllocation",
        GatewayTransactionModel: "GatewayTransaction",
    }


def first_reference(session: Session, obj) -> str | None:
    """Label of the first history row referencing ``obj``, or None.

    Used by services before deleting a user, property or unit, and by the
    before_flush listener as the backstop.
    """
    rules = _reference_rules().get(type(obj))
    if not rules:
        return None
    with session.no_autoflush:
        for label, column in rules:
            hit = session.scalar(select(column).where(column == obj.id).limit(1))
            if hit is not None:
                return label
    return None


def _check_deletions_before_flush(session, flush_context, instances):
    """
    Refuse deletion of append-only rows and of referenced directory rows.

    Runs in SessionEvents.before_flush, before the flush plan is finalized.
    """
    if not session.deleted:
        return
    append_only = _append_only_types()
    for obj in list(session.deleted):
        entity_type = append_only.get(type(obj))
        if entity_type is not None:
            _reject(entity_type, obj, "DELETE", f"{entity_type} records cannot be deleted")

        referenced_by = first_reference(session, obj)
        if referenced_by is not None:
            entity_type = type(obj).__name__.removesuffix("Model")
            logger.error(
                "restricted_delete_blocked",
                extra={
                    "entity_type": entity_type,
                    "entity_id": str(obj.id),
                    "referenced_by": referenced_by,
                },
            )
            raise ReferencedEntityError(
                entity_type=entity_type,
                entity_id=str(obj.id),
                referenced_by=referenced_by,
            )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def _mapper_listeners() -> list[tuple[type, str, object]]:
    from rental_modules.billing.orm import InvoiceModel
    from rental_modules.lease.orm import TenantModel
    from rental_modules.maintenance.orm import MaintenanceRequestModel
    from rental_modules.payments.orm import (
        GatewayTransactionModel,
        PaymentAllocationModel,
        PaymentModel,
    )

    return [
        (TenantModel, "before_update", _check_tenant_update),
        (InvoiceModel, "before_update", _check_invoice_update),
        (PaymentModel, "before_update", _check_payment_update),
        (PaymentAllocationModel, "before_update", _check_allocation_update),
        (GatewayTransactionModel, "before_update", _check_gateway_transaction_update),
        (MaintenanceRequestModel, "before_update", _check_maintenance_update),
    ]


def register_immutability_listeners():
    """
    Register all history-protection event listeners (idempotent).

    Call this after the module ORM models are importable and before any
    database writes.
    """
    if not event.contains(Session, "before_flush", _check_deletions_before_flush):
        event.listen(Session, "before_flush", _check_deletions_before_flush)
    for target, event_name, listener_fn in _mapper_listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove history-protection event listeners.

    WARNING: Only use this in tests that must bypass the rules on purpose.
    """
    _safe_remove_listener(Session, "before_flush", _check_deletions_before_flush)
    for target, event_name, listener_fn in _mapper_listeners():
        _safe_remove_listener(target, event_name, listener_fn)
