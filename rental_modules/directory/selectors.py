"""
Module: rental_modules.directory.selectors
Responsibility: Read-only unit occupancy per property.
Architecture position: Modules > Directory > Selectors.  Extends
    BaseSelector; returns frozen DTOs.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from rental_kernel.exceptions import PropertyNotFoundError
from rental_kernel.selectors.base import BaseSelector
from rental_modules.directory.models import UnitStatus
from rental_modules.directory.orm import PropertyModel, UnitModel
from rental_modules.lease.orm import TenantModel


@dataclass(frozen=True)
class UnitOccupancy:
    unit_id: UUID
    unit_number: str
    status: UnitStatus
    rent: Decimal
    active_tenant_id: UUID | None


@dataclass(frozen=True)
class PropertyOccupancy:
    property_id: UUID
    property_status: str
    units: tuple[UnitOccupancy, ...]
    whole_property_tenant_id: UUID | None

    @property
    def vacant_units(self) -> tuple[UnitOccupancy, ...]:
        return tuple(u for u in self.units if u.active_tenant_id is None)


class UnitOccupancySelector(BaseSelector[UnitModel]):
    """Units of a property with their status and active lease."""

    def occupancy(self, property_id: UUID) -> PropertyOccupancy:
        prop = self.session.get(PropertyModel, property_id)
        if prop is None:
            raise PropertyNotFoundError(str(property_id))

        active = self.session.scalars(
            select(TenantModel).where(
                TenantModel.property_id == property_id,
                TenantModel.is_active.is_(True),
            )
        ).all()
        by_unit = {t.unit_id: t.id for t in active if t.unit_id is not None}
        whole = next((t.id for t in active if t.unit_id is None), None)

        units = self.session.scalars(
            select(UnitModel)
            .where(UnitModel.property_id == property_id)
            .order_by(UnitModel.unit_number, UnitModel.id)
        ).all()
        return PropertyOccupancy(
            property_id=property_id,
            property_status=prop.status,
            units=tuple(
                UnitOccupancy(
                    unit_id=u.id,
                    unit_number=u.unit_number,
                    status=UnitStatus(u.status),
                    rent=u.rent,
                    active_tenant_id=by_unit.get(u.id),
                )
                for u in units
            ),
            whole_property_tenant_id=whole,
        )
