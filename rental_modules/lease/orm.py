"""
Lease ORM Models (``rental_modules.lease.orm``).

Responsibility
--------------
SQLAlchemy persistence model for leases (the ``tenants`` table).

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``rental_kernel.db.base``
and sibling ``models.py``.

Invariants enforced
-------------------
* At most one active lease per (property, occupancy slot): partial unique
  index ``uq_tenants_active_slot`` on ``(property_id, occupancy_slot)``
  WHERE ``is_active``.  This is the last line of defence behind the
  property row lock taken by ``LeaseService.create_lease``.
* User, property and unit are RESTRICT foreign keys: lease history keeps
  them alive.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import TrackedBase
from rental_modules.lease.models import Tenant, occupancy_slot


class TenantModel(TrackedBase):
    """
    ORM model for a lease instance.

    Guarantees:
        - occupancy_slot is the unit id, or "*" for a whole-property lease.
        - Dates and amounts are checked at the table level.
        - Rows are never deleted (see rental_kernel.db.immutability).
    """

    __tablename__ = "tenants"

    __table_args__ = (
        Index(
            "uq_tenants_active_slot",
            "property_id",
            "occupancy_slot",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
        Index("idx_tenants_user_id", "user_id"),
        Index("idx_tenants_property_id", "property_id"),
        Index("idx_tenants_unit_id", "unit_id"),
        CheckConstraint("lease_end > lease_start", name="ck_tenants_lease_dates"),
        CheckConstraint("rent_amount > 0", name="ck_tenants_rent_positive"),
        CheckConstraint(
            "security_deposit >= 0", name="ck_tenants_deposit_non_negative"
        ),
    )

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    property_id: Mapped[UUID] = mapped_column(
        ForeignKey("properties.id", ondelete="RESTRICT"), nullable=False
    )
    unit_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("units.id", ondelete="RESTRICT"), nullable=True
    )
    occupancy_slot: Mapped[str] = mapped_column(String(36), nullable=False)
    lease_start: Mapped[date] = mapped_column(nullable=False)
    lease_end: Mapped[date] = mapped_column(nullable=False)
    rent_amount: Mapped[Decimal] = mapped_column(nullable=False)
    security_deposit: Mapped[Decimal] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    terminated_on: Mapped[date | None] = mapped_column(nullable=True)

    def to_dto(self) -> Tenant:
        """Convert ORM model to frozen dataclass."""
        return Tenant(
            id=self.id,
            user_id=self.user_id,
            property_id=self.property_id,
            unit_id=self.unit_id,
            lease_start=self.lease_start,
            lease_end=self.lease_end,
            rent_amount=self.rent_amount,
            security_deposit=self.security_deposit,
            is_active=self.is_active,
            terminated_on=self.terminated_on,
        )

    @classmethod
    def from_dto(cls, dto: Tenant, created_by_id: UUID) -> "TenantModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            user_id=dto.user_id,
            property_id=dto.property_id,
            unit_id=dto.unit_id,
            occupancy_slot=occupancy_slot(dto.unit_id),
            lease_start=dto.lease_start,
            lease_end=dto.lease_end,
            rent_amount=dto.rent_amount,
            security_deposit=dto.security_deposit,
            is_active=dto.is_active,
            terminated_on=dto.terminated_on,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<TenantModel {self.id} property={self.property_id} "
            f"slot={self.occupancy_slot} active={self.is_active}>"
        )
