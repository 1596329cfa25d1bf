"""
Directory Domain Models (``rental_modules.directory.models``).

Responsibility
--------------
Frozen dataclass value objects and closed enums for the nouns every other
module refers to: users, properties and units.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Returned by
``DirectoryService`` and consumed by the lease, billing and maintenance
modules.

Invariants enforced
-------------------
* All models are ``frozen=True`` (immutable after construction).
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* Enumerations are closed: an unknown literal raises ``ValueError``.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID


class UserRole(str, Enum):
    """Roles a user may hold."""
    ADMIN = "admin"
    PROPERTY_MANAGER = "property_manager"
    LANDLORD = "landlord"
    REALTOR = "realtor"
    TENANT = "tenant"


class PropertyType(str, Enum):
    APARTMENT = "apartment"
    HOUSE = "house"
    CONDO = "condo"
    COMMERCIAL = "commercial"


class PropertyStatus(str, Enum):
    """Listing status of a property."""
    FOR_RENT = "for_rent"
    FOR_SALE = "for_sale"
    RENTED = "rented"
    SOLD = "sold"


class UnitStatus(str, Enum):
    VACANT = "vacant"
    OCCUPIED = "occupied"


@dataclass(frozen=True)
class User:
    """A person known to the system.  Credentials live outside this core."""
    id: UUID
    username: str
    email: str
    full_name: str
    role: UserRole = UserRole.TENANT
    phone: str | None = None
    msisdn: str | None = None  # normalized phone used for gateway matching


@dataclass(frozen=True)
class Property:
    """A rentable or saleable property."""
    id: UUID
    name: str
    address: str
    city: str
    county: str
    type: PropertyType
    status: PropertyStatus
    price: Decimal
    owner_id: UUID
    currency_symbol: str = "KSh"
    description: str | None = None
    postal_code: str | None = None
    neighborhood: str | None = None
    bedrooms: int | None = None
    bathrooms: int | None = None
    square_meters: Decimal | None = None
    year_built: int | None = None
    features: str | None = None
    image_url: str | None = None
    additional_images: tuple[str, ...] = ()
    manager_id: UUID | None = None
    listing_agent_id: UUID | None = None


@dataclass(frozen=True)
class Unit:
    """A leasable unit inside a multi-unit property."""
    id: UUID
    property_id: UUID
    unit_number: str
    bedrooms: int
    bathrooms: Decimal
    square_feet: Decimal
    rent: Decimal
    status: UnitStatus = UnitStatus.VACANT
