"""
Lease Module.

Lease creation, termination and renewal.  One Tenant record per lease.
"""

from rental_modules.lease.models import WHOLE_PROPERTY_SLOT, Tenant, occupancy_slot

__all__ = ["WHOLE_PROPERTY_SLOT", "Tenant", "occupancy_slot"]
