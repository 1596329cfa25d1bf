"""
Maintenance ORM Models (``rental_modules.maintenance.orm``).

Responsibility
--------------
SQLAlchemy persistence model for maintenance requests.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``rental_kernel.db.base``
and sibling ``models.py``.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import TrackedBase, UTCDateTime, enum_check
from rental_modules.maintenance.models import (
    MaintenancePriority,
    MaintenanceRequest,
    MaintenanceStatus,
)


class MaintenanceRequestModel(TrackedBase):
    """
    ORM model for maintenance requests.

    Guarantees:
        - priority and status are constrained to their enums.
        - tenant, property and unit are RESTRICT foreign keys.
        - completed_at never changes once set (ORM listener).
    """

    __tablename__ = "maintenance_requests"

    __table_args__ = (
        Index("idx_maintenance_requests_tenant_id", "tenant_id"),
        Index("idx_maintenance_requests_property_id", "property_id"),
        Index("idx_maintenance_requests_status", "status"),
        enum_check("priority", MaintenancePriority, "ck_maintenance_requests_priority"),
        enum_check("status", MaintenanceStatus, "ck_maintenance_requests_status"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenants.id", ondelete="RESTRICT"), nullable=False
    )
    property_id: Mapped[UUID] = mapped_column(
        ForeignKey("properties.id", ondelete="RESTRICT"), nullable=False
    )
    unit_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("units.id", ondelete="RESTRICT"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MaintenanceStatus.PENDING.value
    )
    submitted_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> MaintenanceRequest:
        """Convert ORM model to frozen dataclass."""
        return MaintenanceRequest(
            id=self.id,
            tenant_id=self.tenant_id,
            property_id=self.property_id,
            unit_id=self.unit_id,
            title=self.title,
            description=self.description,
            priority=MaintenancePriority(self.priority),
            status=MaintenanceStatus(self.status),
            submitted_at=self.submitted_at,
            completed_at=self.completed_at,
            notes=self.notes,
        )

    @classmethod
    def from_dto(cls, dto: MaintenanceRequest, created_by_id: UUID) -> "MaintenanceRequestModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            property_id=dto.property_id,
            unit_id=dto.unit_id,
            title=dto.title,
            description=dto.description,
            priority=dto.priority.value,
            status=dto.status.value,
            submitted_at=dto.submitted_at,
            completed_at=dto.completed_at,
            notes=dto.notes,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<MaintenanceRequestModel {self.title} status={self.status}>"
