"""
Module: rental_modules.maintenance.selectors
Responsibility: Read-only maintenance queue, urgent first, then oldest
    submission first.
Architecture position: Modules > Maintenance > Selectors.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select

from rental_kernel.selectors.base import BaseSelector
from rental_modules.maintenance.models import (
    MaintenancePriority,
    MaintenanceRequest,
    MaintenanceStatus,
    priority_rank,
)
from rental_modules.maintenance.orm import MaintenanceRequestModel

_OPEN_STATUSES = (MaintenanceStatus.PENDING, MaintenanceStatus.IN_PROGRESS)


class MaintenanceQueueSelector(BaseSelector[MaintenanceRequestModel]):

    def queue(
        self,
        statuses: Iterable[MaintenanceStatus] = _OPEN_STATUSES,
        property_id: UUID | None = None,
    ) -> list[MaintenanceRequest]:
        """Requests in the given statuses (open ones by default)."""
        stmt = select(MaintenanceRequestModel).where(
            MaintenanceRequestModel.status.in_([MaintenanceStatus(s).value for s in statuses])
        )
        if property_id is not None:
            stmt = stmt.where(MaintenanceRequestModel.property_id == property_id)
        requests = [m.to_dto() for m in self.session.scalars(stmt).all()]
        # Priority rank is not lexical; order in Python.
        requests.sort(key=lambda r: (priority_rank(MaintenancePriority(r.priority)), r.submitted_at, str(r.id)))
        return requests
