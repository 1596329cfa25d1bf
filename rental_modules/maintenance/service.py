"""
Maintenance Service -- repair requests and their lifecycle.

Responsibility:
    Accepts maintenance requests raised under a lease and moves them
    through ``MAINTENANCE_WORKFLOW``.

Architecture position:
    Modules > Maintenance.  Flush-only (BaseService contract).

Invariants enforced:
    - Only transitions declared by the workflow are applied; anything else
      raises InvalidTransitionError and leaves the status unchanged.
    - ``completed_at`` is stamped exactly once, on entry to ``completed``.
    - The property is taken from the lease; an inactive lease may still
      submit.

Failure modes:
    - TenantNotFoundError, UnitNotFoundError, MaintenanceRequestNotFoundError.
    - ValidationError for blank title/description or a foreign unit.
    - InvalidTransitionError.
"""

from uuid import UUID, uuid4

from sqlalchemy import select

from rental_kernel.exceptions import (
    InvalidTransitionError,
    MaintenanceRequestNotFoundError,
    TenantNotFoundError,
    UnitNotFoundError,
    ValidationError,
)
from rental_kernel.logging_config import get_logger
from rental_kernel.services.base import BaseService
from rental_modules.directory.orm import UnitModel
from rental_modules.lease.orm import TenantModel
from rental_modules.maintenance.models import (
    MaintenancePriority,
    MaintenanceRequest,
    MaintenanceStatus,
)
from rental_modules.maintenance.orm import MaintenanceRequestModel
from rental_modules.maintenance.workflows import MAINTENANCE_WORKFLOW

logger = get_logger("modules.maintenance.service")


class MaintenanceService(BaseService[MaintenanceRequestModel]):
    """Submission and state transitions of maintenance requests."""

    def submit_request(
        self,
        tenant_id: UUID,
        title: str,
        description: str,
        actor_id: UUID,
        priority: MaintenancePriority = MaintenancePriority.MEDIUM,
        unit_id: UUID | None = None,
        notes: str | None = None,
    ) -> MaintenanceRequest:
        tenant = self.session.get(TenantModel, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(str(tenant_id))
        if not title or not title.strip():
            raise ValidationError("title", "must not be blank")
        if not description or not description.strip():
            raise ValidationError("description", "must not be blank")
        priority = MaintenancePriority(priority)

        if unit_id is None:
            unit_id = tenant.unit_id
        else:
            unit = self.session.get(UnitModel, unit_id)
            if unit is None:
                raise UnitNotFoundError(str(unit_id))
            if unit.property_id != tenant.property_id:
                raise ValidationError(
                    "unit_id", f"unit {unit_id} is not part of the leased property"
                )

        dto = MaintenanceRequest(
            id=uuid4(),
            tenant_id=tenant_id,
            property_id=tenant.property_id,
            unit_id=unit_id,
            title=title.strip(),
            description=description.strip(),
            priority=priority,
            submitted_at=self.clock.now(),
            notes=notes,
        )
        self.session.add(MaintenanceRequestModel.from_dto(dto, created_by_id=actor_id))
        self.session.flush()

        logger.info("maintenance_request_submitted", extra={
            "request_id": str(dto.id),
            "tenant_id": str(tenant_id),
            "property_id": str(tenant.property_id),
            "priority": priority.value,
            "lease_active": tenant.is_active,
        })
        return dto

    def get_request_model(self, request_id: UUID, for_update: bool = False) -> MaintenanceRequestModel:
        stmt = select(MaintenanceRequestModel).where(MaintenanceRequestModel.id == request_id)
        if for_update:
            stmt = stmt.with_for_update()
        model = self.session.scalars(stmt).first()
        if model is None:
            raise MaintenanceRequestNotFoundError(str(request_id))
        return model

    def get_request(self, request_id: UUID) -> MaintenanceRequest:
        return self.get_request_model(request_id).to_dto()

    def transition(
        self,
        request_id: UUID,
        to_status: MaintenanceStatus,
        actor_id: UUID,
        notes: str | None = None,
    ) -> MaintenanceRequest:
        """
        Move a request to ``to_status``.

        Raises:
            InvalidTransitionError: the workflow declares no such move.
        """
        to_status = MaintenanceStatus(to_status)
        model = self.get_request_model(request_id, for_update=True)
        from_status = model.status

        if MAINTENANCE_WORKFLOW.find_transition(from_status, to_status.value) is None:
            logger.warning("maintenance_transition_rejected", extra={
                "request_id": str(request_id),
                "from_status": from_status,
                "to_status": to_status.value,
            })
            raise InvalidTransitionError(
                entity_type="MaintenanceRequest",
                entity_id=str(request_id),
                from_state=from_status,
                to_state=to_status.value,
            )

        model.status = to_status.value
        if to_status is MaintenanceStatus.COMPLETED:
            model.completed_at = self.clock.now()
        if notes is not None:
            model.notes = notes
        model.updated_by_id = actor_id
        self.session.flush()

        logger.info("maintenance_status_changed", extra={
            "request_id": str(request_id),
            "from_status": from_status,
            "to_status": to_status.value,
        })
        return model.to_dto()

    def start_work(self, request_id: UUID, actor_id: UUID, notes: str | None = None) -> MaintenanceRequest:
        return self.transition(request_id, MaintenanceStatus.IN_PROGRESS, actor_id, notes)

    def complete(self, request_id: UUID, actor_id: UUID, notes: str | None = None) -> MaintenanceRequest:
        return self.transition(request_id, MaintenanceStatus.COMPLETED, actor_id, notes)

    def cancel(self, request_id: UUID, actor_id: UUID, notes: str | None = None) -> MaintenanceRequest:
        return self.transition(request_id, MaintenanceStatus.CANCELED, actor_id, notes)
