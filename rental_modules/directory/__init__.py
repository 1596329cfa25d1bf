"""
Directory Module.

Users, properties and units: the entities every lease hangs off.
"""

from rental_modules.directory.models import (
    Property,
    PropertyStatus,
    PropertyType,
    Unit,
    UnitStatus,
    User,
    UserRole,
)

__all__ = [
    "Property",
    "PropertyStatus",
    "PropertyType",
    "Unit",
    "UnitStatus",
    "User",
    "UserRole",
]
