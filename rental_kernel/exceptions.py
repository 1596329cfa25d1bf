"""
Typed Exception Hierarchy for the Rental Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the tenancy and billing core must be able to react to errors
precisely.  Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA (not just a message string)

Example:
    try:
        management.create_lease(...)
    except UnitOccupiedError as e:
        api_response(code=e.code, unit=e.unit_id, tenant=e.existing_tenant_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RentalKernelError (base)
    |
    +-- ValidationError                 malformed / out-of-range input
    |   +-- InvalidDateRangeError
    |   +-- NonPositiveAmountError
    |   +-- MalformedGatewayEventError
    |
    +-- ConflictError                   invariant violation
    |   +-- UnitOccupiedError
    |   +-- DuplicateUserError
    |   +-- RenewalBlockedError
    |   +-- ReferencedEntityError
    |   +-- PropertyStatusConflictError
    |   +-- LeaseInactiveError
    |
    +-- NotFoundError                   referenced entity absent
    |   +-- UserNotFoundError
    |   +-- PropertyNotFoundError
    |   +-- UnitNotFoundError
    |   +-- TenantNotFoundError
    |   +-- ActiveLeaseNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- GatewayTransactionNotFoundError
    |   +-- MaintenanceRequestNotFoundError
    |
    +-- InvalidTransitionError          illegal state-machine move
    +-- PermissionDeniedError           role not allowed to perform action
    +-- ImmutabilityViolationError      write to an append-only record
    +-- LockTimeoutError                transient, retried by TransactionRunner
    +-- StoreUnavailableError           transient failures exhausted retries

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Bad input (amount, dates, fields)
                | INVALID_DATE_RANGE          | end <= start
                | NON_POSITIVE_AMOUNT         | amount <= 0
                | MALFORMED_GATEWAY_EVENT     | Gateway event failed parsing
----------------|-----------------------------|-----------------------------------------
Conflict        | CONFLICT                    | Invariant would be violated
                | UNIT_OCCUPIED               | Active lease already on the slot
                | DUPLICATE_USER              | Username / email taken
                | RENEWAL_BLOCKED             | Overdue invoices outstanding
                | ENTITY_REFERENCED           | Delete would orphan lease history
                | PROPERTY_STATUS_CONFLICT    | Status inconsistent with tenancy
                | LEASE_INACTIVE              | Billing an inactive lease
----------------|-----------------------------|-----------------------------------------
Not found       | NOT_FOUND (+ entity codes)  | Referenced entity absent
----------------|-----------------------------|-----------------------------------------
Workflow        | INVALID_TRANSITION          | Backward / skip-forward move
Authorization   | PERMISSION_DENIED           | Role not allowed
Immutability    | IMMUTABILITY_VIOLATION      | Financial history modified
Store           | LOCK_TIMEOUT                | Keyed lock not acquired in time
                | STORE_UNAVAILABLE           | Retries exhausted

===============================================================================
HANDLING PATTERNS
===============================================================================

* ValidationError, ConflictError, NotFoundError and InvalidTransitionError are
  surfaced to the caller and never retried automatically.
* LockTimeoutError and SQLAlchemy operational errors are retried at the
  transaction boundary; exhaustion surfaces as StoreUnavailableError.
* Gateway ingestion never raises to the notifier: failures are logged.
"""

from __future__ import annotations


class RentalKernelError(Exception):
    """
    Base exception for all rental kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "RENTAL_KERNEL_ERROR"


# Validation


class ValidationError(RentalKernelError):
    """Malformed or out-of-range input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class InvalidDateRangeError(ValidationError):
    """End date does not fall after start date."""

    code: str = "INVALID_DATE_RANGE"

    def __init__(self, field: str, start: str, end: str):
        self.start = start
        self.end = end
        super().__init__(field, f"end {end} must be after start {start}")


class NonPositiveAmountError(ValidationError):
    """Amount must be strictly positive."""

    code: str = "NON_POSITIVE_AMOUNT"

    def __init__(self, field: str, amount: str):
        self.amount = amount
        super().__init__(field, f"must be greater than zero, got {amount}")


class MalformedGatewayEventError(ValidationError):
    """Inbound gateway event could not be parsed."""

    code: str = "MALFORMED_GATEWAY_EVENT"

    def __init__(self, transaction_id: str | None, field_errors: list[dict]):
        self.transaction_id = transaction_id
        self.field_errors = field_errors
        fields = ", ".join(e["field"] for e in field_errors)
        super().__init__("gateway_event", f"{len(field_errors)} error(s) in {fields}")


# Conflicts


class ConflictError(RentalKernelError):
    """Operation would violate a tenancy or billing invariant."""

    code: str = "CONFLICT"


class UnitOccupiedError(ConflictError):
    """An active lease already occupies the requested property / unit slot."""

    code: str = "UNIT_OCCUPIED"

    def __init__(self, property_id: str, unit_id: str | None, existing_tenant_id: str):
        self.property_id = property_id
        self.unit_id = unit_id
        self.existing_tenant_id = existing_tenant_id
        target = f"unit {unit_id}" if unit_id else "whole property"
        super().__init__(
            f"Property {property_id} ({target}) already has active lease "
            f"{existing_tenant_id}"
        )


class DuplicateUserError(ConflictError):
    """Username or email already registered."""

    code: str = "DUPLICATE_USER"

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"User with {field} '{value}' already exists")


class RenewalBlockedError(ConflictError):
    """Lease renewal refused while overdue invoices are outstanding."""

    code: str = "RENEWAL_BLOCKED"

    def __init__(self, tenant_id: str, overdue_invoice_ids: list[str]):
        self.tenant_id = tenant_id
        self.overdue_invoice_ids = overdue_invoice_ids
        super().__init__(
            f"Lease {tenant_id} has {len(overdue_invoice_ids)} overdue invoice(s)"
        )


class ReferencedEntityError(ConflictError):
    """Deletion rejected: the entity is referenced by lease or financial history."""

    code: str = "ENTITY_REFERENCED"

    def __init__(self, entity_type: str, entity_id: str, referenced_by: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.referenced_by = referenced_by
        super().__init__(
            f"{entity_type} {entity_id} is referenced by {referenced_by} "
            f"and cannot be deleted"
        )


class PropertyStatusConflictError(ConflictError):
    """Requested property status is inconsistent with its active leases."""

    code: str = "PROPERTY_STATUS_CONFLICT"

    def __init__(self, property_id: str, requested_status: str, reason: str):
        self.property_id = property_id
        self.requested_status = requested_status
        self.reason = reason
        super().__init__(
            f"Property {property_id} cannot be '{requested_status}': {reason}"
        )


class LeaseInactiveError(ConflictError):
    """Operation requires an active lease."""

    code: str = "LEASE_INACTIVE"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Lease {tenant_id} is not active")


# Not found


class NotFoundError(RentalKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class UserNotFoundError(NotFoundError):
    code: str = "USER_NOT_FOUND"
    entity_type: str = "User"


class PropertyNotFoundError(NotFoundError):
    code: str = "PROPERTY_NOT_FOUND"
    entity_type: str = "Property"


class UnitNotFoundError(NotFoundError):
    code: str = "UNIT_NOT_FOUND"
    entity_type: str = "Unit"


class TenantNotFoundError(NotFoundError):
    code: str = "TENANT_NOT_FOUND"
    entity_type: str = "Tenant"


class ActiveLeaseNotFoundError(NotFoundError):
    """Lease is missing or no longer active."""

    code: str = "ACTIVE_LEASE_NOT_FOUND"
    entity_type: str = "Active lease"


class InvoiceNotFoundError(NotFoundError):
    code: str = "INVOICE_NOT_FOUND"
    entity_type: str = "Invoice"


class PaymentNotFoundError(NotFoundError):
    code: str = "PAYMENT_NOT_FOUND"
    entity_type: str = "Payment"


class GatewayTransactionNotFoundError(NotFoundError):
    code: str = "GATEWAY_TRANSACTION_NOT_FOUND"
    entity_type: str = "GatewayTransaction"


class MaintenanceRequestNotFoundError(NotFoundError):
    code: str = "MAINTENANCE_REQUEST_NOT_FOUND"
    entity_type: str = "MaintenanceRequest"


# Workflow


class InvalidTransitionError(RentalKernelError):
    """State machine move not permitted from the current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, from_state: str, to_state: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"{entity_type} {entity_id}: transition {from_state} -> {to_state} "
            f"is not allowed"
        )


# Authorization


class PermissionDeniedError(RentalKernelError):
    """Actor's role does not allow the requested action."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: str, action: str, required_roles: list[str]):
        self.actor_id = actor_id
        self.action = action
        self.required_roles = required_roles
        super().__init__(
            f"Actor {actor_id} may not {action}; requires one of {required_roles}"
        )


# Immutability


class ImmutabilityViolationError(RentalKernelError):
    """Attempt to modify or delete append-only history."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )


# Store


class LockTimeoutError(RentalKernelError):
    """Keyed lock could not be acquired within the configured timeout."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, key: str, timeout_seconds: float):
        self.key = key
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Timed out after {timeout_seconds}s waiting for lock '{key}'")


class StoreUnavailableError(RentalKernelError):
    """Transient store failures persisted past the retry budget."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, attempts: int, last_error: str):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Store unavailable for {operation} after {attempts} attempt(s): "
            f"{last_error}"
        )
