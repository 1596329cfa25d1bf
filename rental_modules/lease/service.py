"""
Lease Service -- the lease lifecycle manager.

Responsibility:
    Creates, terminates and renews leases (Tenant records) and keeps the
    occupied unit and the property status aligned with them.

Architecture position:
    Modules > Lease.  Flush-only (BaseService contract).  Reads the billing
    module's overdue query to gate renewal; writes unit and property status
    through ``DirectoryService``.

Invariants enforced:
    - At most one active lease per (property, unit) pair.  The property row
      is locked before the conflict check, and the partial unique index
      ``uq_tenants_active_slot`` turns a lost race into UnitOccupiedError.
    - A whole-property lease conflicts with every active lease on the
      property; a unit lease conflicts with an active whole-property lease.
    - A terminated lease is never reactivated.  Renewal extends the active
      lease in place.

Failure modes:
    - ValidationError / InvalidDateRangeError / NonPositiveAmountError.
    - UserNotFoundError, PropertyNotFoundError, UnitNotFoundError,
      TenantNotFoundError, ActiveLeaseNotFoundError.
    - UnitOccupiedError, PropertyStatusConflictError (sold property),
      RenewalBlockedError, PermissionDeniedError.

Audit relevance:
    ``lease_created``, ``lease_terminated``, ``lease_renewed`` and
    ``lease_renewal_overridden`` carry the actor and the lease id.
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rental_kernel.domain.clock import Clock
from rental_kernel.domain.money import require_amount
from rental_kernel.exceptions import (
    ActiveLeaseNotFoundError,
    InvalidDateRangeError,
    PermissionDeniedError,
    PropertyStatusConflictError,
    RenewalBlockedError,
    TenantNotFoundError,
    UnitOccupiedError,
    UserNotFoundError,
    ValidationError,
)
from rental_kernel.logging_config import get_logger
from rental_kernel.services.base import BaseService
from rental_modules.billing.service import BillingService
from rental_modules.directory.models import PropertyStatus, UnitStatus, UserRole
from rental_modules.directory.orm import UserModel
from rental_modules.directory.service import DirectoryService
from rental_modules.lease.models import Tenant
from rental_modules.lease.orm import TenantModel

logger = get_logger("modules.lease.service")


class LeaseService(BaseService[TenantModel]):
    """
    Lease lifecycle: create, terminate, renew.

    Transaction boundary: flush only.  Callers commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        override_roles: Collection[UserRole] = (UserRole.ADMIN, UserRole.PROPERTY_MANAGER),
        directory: DirectoryService | None = None,
        billing: BillingService | None = None,
    ):
        super().__init__(session, clock)
        self._override_roles = frozenset(UserRole(r) for r in override_roles)
        self._directory = directory or DirectoryService(session, self.clock)
        self._billing = billing or BillingService(session, self.clock)

    # =========================================================================
    # Create
    # =========================================================================

    def create_lease(
        self,
        user_id: UUID,
        property_id: UUID,
        lease_start: date,
        lease_end: date,
        rent_amount: Decimal,
        security_deposit: Decimal,
        actor_id: UUID,
        unit_id: UUID | None = None,
    ) -> Tenant:
        """
        Open a lease on a property, or on one of its units.

        Postconditions:
            - The new lease is active; its unit (if any) is occupied.
            - The property's for_rent/rented status matches its occupancy.
        """
        if lease_end <= lease_start:
            raise InvalidDateRangeError("lease", str(lease_start), str(lease_end))
        require_amount("rent_amount", rent_amount)
        require_amount("security_deposit", security_deposit, allow_zero=True)

        if self.session.get(UserModel, user_id) is None:
            raise UserNotFoundError(str(user_id))

        property_model = self._directory.get_property_model(property_id, for_update=True)
        if PropertyStatus(property_model.status) is PropertyStatus.SOLD:
            raise PropertyStatusConflictError(
                str(property_id), PropertyStatus.SOLD.value, "a sold property cannot be leased"
            )
        if unit_id is not None:
            unit = self._directory.get_unit_model(unit_id)
            if unit.property_id != property_id:
                raise ValidationError(
                    "unit_id", f"unit {unit_id} does not belong to property {property_id}"
                )

        existing = self._conflicting_lease(property_id, unit_id)
        if existing is not None:
            self._raise_occupied(property_id, unit_id, existing.id)

        dto = Tenant(
            id=uuid4(),
            user_id=user_id,
            property_id=property_id,
            unit_id=unit_id,
            lease_start=lease_start,
            lease_end=lease_end,
            rent_amount=rent_amount,
            security_deposit=security_deposit,
        )
        try:
            with self.session.begin_nested():
                self.session.add(TenantModel.from_dto(dto, created_by_id=actor_id))
                self.session.flush()
        except IntegrityError:
            winner = self._conflicting_lease(property_id, unit_id)
            if winner is None:
                raise
            self._raise_occupied(property_id, unit_id, winner.id)

        if unit_id is not None:
            self._directory.set_unit_status(unit_id, UnitStatus.OCCUPIED, actor_id)
        self._directory.rederive_property_status(property_model, actor_id)

        logger.info("lease_created", extra={
            "tenant_id": str(dto.id),
            "user_id": str(user_id),
            "property_id": str(property_id),
            "unit_id": str(unit_id) if unit_id else None,
            "lease_start": lease_start.isoformat(),
            "lease_end": lease_end.isoformat(),
            "rent_amount": str(rent_amount),
        })
        return dto

    def _conflicting_lease(self, property_id: UUID, unit_id: UUID | None) -> TenantModel | None:
        stmt = select(TenantModel).where(
            TenantModel.property_id == property_id,
            TenantModel.is_active.is_(True),
        )
        if unit_id is not None:
            stmt = stmt.where(
                or_(TenantModel.unit_id == unit_id, TenantModel.unit_id.is_(None))
            )
        return self.session.scalars(stmt.order_by(TenantModel.id).limit(1)).first()

    def _raise_occupied(self, property_id: UUID, unit_id: UUID | None, existing_id: UUID):
        logger.warning("lease_conflict_rejected", extra={
            "property_id": str(property_id),
            "unit_id": str(unit_id) if unit_id else None,
            "existing_tenant_id": str(existing_id),
        })
        raise UnitOccupiedError(
            property_id=str(property_id),
            unit_id=str(unit_id) if unit_id else None,
            existing_tenant_id=str(existing_id),
        )

    # =========================================================================
    # Terminate / renew
    # =========================================================================

    def _active_lease(self, tenant_id: UUID) -> TenantModel:
        model = self.session.get(TenantModel, tenant_id)
        if model is None or not model.is_active:
            raise ActiveLeaseNotFoundError(str(tenant_id))
        return model

    def terminate_lease(self, tenant_id: UUID, effective_date: date, actor_id: UUID) -> Tenant:
        """End an active lease and release its unit."""
        model = self._active_lease(tenant_id)
        property_model = self._directory.get_property_model(model.property_id, for_update=True)
        # Re-read under the property lock: a concurrent terminate may have won.
        self.session.refresh(model)
        if not model.is_active:
            raise ActiveLeaseNotFoundError(str(tenant_id))
        if effective_date < model.lease_start:
            raise ValidationError(
                "effective_date",
                f"{effective_date} precedes lease start {model.lease_start}",
            )

        model.is_active = False
        model.terminated_on = effective_date
        model.updated_by_id = actor_id
        self.session.flush()

        if model.unit_id is not None:
            self._directory.set_unit_status(model.unit_id, UnitStatus.VACANT, actor_id)
        self._directory.rederive_property_status(property_model, actor_id)

        logger.info("lease_terminated", extra={
            "tenant_id": str(tenant_id),
            "property_id": str(model.property_id),
            "unit_id": str(model.unit_id) if model.unit_id else None,
            "effective_date": effective_date.isoformat(),
        })
        return model.to_dto()

    def renew_lease(
        self,
        tenant_id: UUID,
        new_lease_end: date,
        actor_id: UUID,
        rent_amount: Decimal | None = None,
        override: bool = False,
    ) -> Tenant:
        """
        Extend an active lease, optionally at a new rent.

        Blocked while the tenant has a past-due unpaid invoice, unless a
        privileged actor passes ``override=True``.
        """
        model = self._active_lease(tenant_id)
        self._directory.get_property_model(model.property_id, for_update=True)
        self.session.refresh(model)
        if not model.is_active:
            raise ActiveLeaseNotFoundError(str(tenant_id))
        if new_lease_end <= model.lease_end:
            raise InvalidDateRangeError("lease_end", str(model.lease_end), str(new_lease_end))
        if rent_amount is not None:
            require_amount("rent_amount", rent_amount)

        overdue = self._billing.overdue_invoices(tenant_id, self.clock.today())
        if overdue:
            overdue_ids = [str(inv.id) for inv in overdue]
            if not override:
                logger.warning("lease_renewal_blocked", extra={
                    "tenant_id": str(tenant_id),
                    "overdue_invoice_ids": overdue_ids,
                })
                raise RenewalBlockedError(str(tenant_id), overdue_ids)
            self._require_override_role(actor_id)
            logger.warning("lease_renewal_overridden", extra={
                "tenant_id": str(tenant_id),
                "overdue_invoice_ids": overdue_ids,
                "actor_id": str(actor_id),
            })

        old_end = model.lease_end
        model.lease_end = new_lease_end
        if rent_amount is not None:
            model.rent_amount = rent_amount
        model.updated_by_id = actor_id
        self.session.flush()

        logger.info("lease_renewed", extra={
            "tenant_id": str(tenant_id),
            "old_lease_end": old_end.isoformat(),
            "new_lease_end": new_lease_end.isoformat(),
            "rent_amount": str(model.rent_amount),
        })
        return model.to_dto()

    def _require_override_role(self, actor_id: UUID) -> None:
        actor = self.session.get(UserModel, actor_id)
        if actor is None or UserRole(actor.role) not in self._override_roles:
            raise PermissionDeniedError(
                actor_id=str(actor_id),
                action="override renewal block",
                required_roles=sorted(r.value for r in self._override_roles),
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_tenant_model(self, tenant_id: UUID, for_update: bool = False) -> TenantModel:
        stmt = select(TenantModel).where(TenantModel.id == tenant_id)
        if for_update:
            stmt = stmt.with_for_update()
        model = self.session.scalars(stmt).first()
        if model is None:
            raise TenantNotFoundError(str(tenant_id))
        return model

    def get_tenant(self, tenant_id: UUID) -> Tenant:
        return self.get_tenant_model(tenant_id).to_dto()

    def active_leases_for_property(self, property_id: UUID) -> list[Tenant]:
        models = self.session.scalars(
            select(TenantModel)
            .where(TenantModel.property_id == property_id, TenantModel.is_active.is_(True))
            .order_by(TenantModel.occupancy_slot, TenantModel.id)
        ).all()
        return [m.to_dto() for m in models]
