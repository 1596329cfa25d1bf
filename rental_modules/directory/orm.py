"""
Directory ORM Models (``rental_modules.directory.orm``).

Responsibility
--------------
SQLAlchemy persistence models for users, properties and units.  Maps the
frozen domain dataclasses from ``models.py`` to database tables.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``rental_kernel.db.base``
and sibling ``models.py``.  MUST NOT be imported by ``rental_kernel`` at
module load time.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import TrackedBase, enum_check
from rental_modules.directory.models import (
    Property,
    PropertyStatus,
    PropertyType,
    Unit,
    UnitStatus,
    User,
    UserRole,
)


# ---------------------------------------------------------------------------
# 1. UserModel
# ---------------------------------------------------------------------------


class UserModel(TrackedBase):
    """
    ORM model for users.

    Guarantees:
        - username and email are unique.
        - role is one of UserRole (ck_users_role).
        - msisdn holds the normalized phone number used for gateway matching.
    """

    __tablename__ = "users"

    __table_args__ = (
        UniqueConstraint("username", name="uq_users_username"),
        UniqueConstraint("email", name="uq_users_email"),
        Index("idx_users_msisdn", "msisdn"),
        enum_check("role", UserRole, "ck_users_role"),
    )

    username: Mapped[str] = mapped_column(String(150), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(30), nullable=False, default=UserRole.TENANT.value
    )
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    msisdn: Mapped[str | None] = mapped_column(String(20), nullable=True)

    def to_dto(self) -> User:
        """Convert ORM model to frozen dataclass."""
        return User(
            id=self.id,
            username=self.username,
            email=self.email,
            full_name=self.full_name,
            role=UserRole(self.role),
            phone=self.phone,
            msisdn=self.msisdn,
        )

    @classmethod
    def from_dto(cls, dto: User, created_by_id: UUID) -> "UserModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            username=dto.username,
            email=dto.email,
            full_name=dto.full_name,
            role=dto.role.value,
            phone=dto.phone,
            msisdn=dto.msisdn,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<UserModel {self.username} role={self.role}>"


# ---------------------------------------------------------------------------
# 2. PropertyModel
# ---------------------------------------------------------------------------


class PropertyModel(TrackedBase):
    """
    ORM model for properties.

    Guarantees:
        - owner_id is required; owner, manager and listing agent are RESTRICT
          foreign keys to users.
        - type and status are constrained to their enums.
        - price and square_meters are Decimal (Numeric(38,9)).
    """

    __tablename__ = "properties"

    __table_args__ = (
        Index("idx_properties_owner_id", "owner_id"),
        Index("idx_properties_status", "status"),
        enum_check("type", PropertyType, "ck_properties_type"),
        enum_check("status", PropertyStatus, "ck_properties_status"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    county: Mapped[str] = mapped_column(String(100), nullable=False)
    postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    neighborhood: Mapped[str | None] = mapped_column(String(100), nullable=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    price: Mapped[Decimal] = mapped_column(nullable=False)
    currency_symbol: Mapped[str] = mapped_column(
        String(10), nullable=False, default="KSh"
    )
    bedrooms: Mapped[int | None] = mapped_column(nullable=True)
    bathrooms: Mapped[int | None] = mapped_column(nullable=True)
    square_meters: Mapped[Decimal | None] = mapped_column(nullable=True)
    year_built: Mapped[int | None] = mapped_column(nullable=True)
    features: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    additional_images: Mapped[list | None] = mapped_column(JSON, nullable=True)
    owner_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    manager_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=True
    )
    listing_agent_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=True
    )

    def to_dto(self) -> Property:
        """Convert ORM model to frozen dataclass."""
        return Property(
            id=self.id,
            name=self.name,
            address=self.address,
            city=self.city,
            county=self.county,
            type=PropertyType(self.type),
            status=PropertyStatus(self.status),
            price=self.price,
            owner_id=self.owner_id,
            currency_symbol=self.currency_symbol,
            description=self.description,
            postal_code=self.postal_code,
            neighborhood=self.neighborhood,
            bedrooms=self.bedrooms,
            bathrooms=self.bathrooms,
            square_meters=self.square_meters,
            year_built=self.year_built,
            features=self.features,
            image_url=self.image_url,
            additional_images=tuple(self.additional_images or ()),
            manager_id=self.manager_id,
            listing_agent_id=self.listing_agent_id,
        )

    @classmethod
    def from_dto(cls, dto: Property, created_by_id: UUID) -> "PropertyModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            name=dto.name,
            description=dto.description,
            address=dto.address,
            city=dto.city,
            county=dto.county,
            postal_code=dto.postal_code,
            neighborhood=dto.neighborhood,
            type=dto.type.value,
            status=dto.status.value,
            price=dto.price,
            currency_symbol=dto.currency_symbol,
            bedrooms=dto.bedrooms,
            bathrooms=dto.bathrooms,
            square_meters=dto.square_meters,
            year_built=dto.year_built,
            features=dto.features,
            image_url=dto.image_url,
            additional_images=list(dto.additional_images),
            owner_id=dto.owner_id,
            manager_id=dto.manager_id,
            listing_agent_id=dto.listing_agent_id,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<PropertyModel {self.name} status={self.status}>"


# ---------------------------------------------------------------------------
# 3. UnitModel
# ---------------------------------------------------------------------------


class UnitModel(TrackedBase):
    """
    ORM model for units of a multi-unit property.

    Guarantees:
        - unit_number is unique per property (uq_units_property_number).
        - property_id cascades at the database level; the service and the
          restrict listener refuse to delete units with lease history first.
    """

    __tablename__ = "units"

    __table_args__ = (
        UniqueConstraint(
            "property_id", "unit_number", name="uq_units_property_number"
        ),
        Index("idx_units_property_id", "property_id"),
        enum_check("status", UnitStatus, "ck_units_status"),
    )

    property_id: Mapped[UUID] = mapped_column(
        ForeignKey("properties.id", ondelete="CASCADE"), nullable=False
    )
    unit_number: Mapped[str] = mapped_column(String(50), nullable=False)
    bedrooms: Mapped[int] = mapped_column(nullable=False)
    bathrooms: Mapped[Decimal] = mapped_column(nullable=False)
    square_feet: Mapped[Decimal] = mapped_column(nullable=False)
    rent: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UnitStatus.VACANT.value
    )

    def to_dto(self) -> Unit:
        """Convert ORM model to frozen dataclass."""
        return Unit(
            id=self.id,
            property_id=self.property_id,
            unit_number=self.unit_number,
            bedrooms=self.bedrooms,
            bathrooms=self.bathrooms,
            square_feet=self.square_feet,
            rent=self.rent,
            status=UnitStatus(self.status),
        )

    @classmethod
    def from_dto(cls, dto: Unit, created_by_id: UUID) -> "UnitModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            property_id=dto.property_id,
            unit_number=dto.unit_number,
            bedrooms=dto.bedrooms,
            bathrooms=dto.bathrooms,
            square_feet=dto.square_feet,
            rent=dto.rent,
            status=dto.status.value,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<UnitModel {self.unit_number} status={self.status}>"
