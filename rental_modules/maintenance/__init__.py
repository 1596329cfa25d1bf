"""
Maintenance Module.

Repair requests raised under a lease and their lifecycle.
"""

from rental_modules.maintenance.models import (
    MaintenancePriority,
    MaintenanceRequest,
    MaintenanceStatus,
)
from rental_modules.maintenance.workflows import MAINTENANCE_WORKFLOW

__all__ = [
    "MAINTENANCE_WORKFLOW",
    "MaintenancePriority",
    "MaintenanceRequest",
    "MaintenanceStatus",
]
