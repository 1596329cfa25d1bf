"""
rental_services -- transactional orchestration over the rental modules.

``PropertyManagementService`` is the write entrypoint: it owns commit and
rollback, per-key locking and bounded retry for every mutating operation.
"""

from rental_services.property_management import (
    BillingCycleFailure,
    BillingCycleResult,
    PropertyManagementService,
)

__all__ = ["BillingCycleFailure", "BillingCycleResult", "PropertyManagementService"]
