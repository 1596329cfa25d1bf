"""
Directory Service -- users, properties and units.

Responsibility:
    CRUD over the entities every lease hangs off, plus the two rules that
    keep the directory consistent with tenancy:
      * a property's status never contradicts its active leases;
      * users, properties and units with lease or financial history are
        never deleted.

Architecture position:
    Modules > Directory.  Flush-only (BaseService contract); the
    ``PropertyManagementService`` facade owns the transaction.

Invariants enforced:
    - Username and email are unique (service check plus unique constraints).
    - Role changes require an admin actor.
    - ``rented`` needs at least one active lease, ``for_rent`` needs a vacancy,
      ``sold`` needs zero active leases.  ``for_sale`` is always allowed.
    - Deleting a referenced user, property or unit raises ReferencedEntityError.

Failure modes:
    - DuplicateUserError, PermissionDeniedError, ReferencedEntityError,
      PropertyStatusConflictError, NotFoundError subclasses, ValidationError.

Audit relevance:
    Every create/update/delete logs a structured event with the actor.
"""

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rental_kernel.db.immutability import first_reference
from rental_kernel.domain.clock import Clock
from rental_kernel.domain.money import require_amount
from rental_kernel.domain.msisdn import normalize_msisdn
from rental_kernel.exceptions import (
    ConflictError,
    DuplicateUserError,
    PermissionDeniedError,
    PropertyNotFoundError,
    PropertyStatusConflictError,
    ReferencedEntityError,
    UnitNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from rental_kernel.logging_config import get_logger
from rental_kernel.services.base import BaseService
from rental_modules.directory.models import (
    Property,
    PropertyStatus,
    PropertyType,
    Unit,
    UnitStatus,
    User,
    UserRole,
)
from rental_modules.directory.orm import PropertyModel, UnitModel, UserModel
from rental_modules.lease.orm import TenantModel

logger = get_logger("modules.directory.service")


def _require_text(field: str, value: str | None) -> str:
    if value is None or not value.strip():
        raise ValidationError(field, "must not be blank")
    return value.strip()


class DirectoryService(BaseService[UserModel]):
    """
    Entity store for users, properties and units.

    Transaction boundary: flush only.  Callers commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        currency_symbol: str = "KSh",
        default_country_code: str = "254",
    ):
        super().__init__(session, clock)
        self._currency_symbol = currency_symbol
        self._country_code = default_country_code

    # =========================================================================
    # Users
    # =========================================================================

    def create_user(
        self,
        username: str,
        email: str,
        full_name: str,
        actor_id: UUID,
        role: UserRole = UserRole.TENANT,
        phone: str | None = None,
    ) -> User:
        """Register a user.  Raises DuplicateUserError on a taken username/email."""
        username = _require_text("username", username)
        email = _require_text("email", email).lower()
        full_name = _require_text("full_name", full_name)
        role = UserRole(role)

        self._check_user_unique(username, email)

        dto = User(
            id=uuid4(),
            username=username,
            email=email,
            full_name=full_name,
            role=role,
            phone=phone,
            msisdn=normalize_msisdn(phone, self._country_code),
        )
        try:
            with self.session.begin_nested():
                self.session.add(UserModel.from_dto(dto, created_by_id=actor_id))
                self.session.flush()
        except IntegrityError:
            # A concurrent insert won the race between the check and the flush.
            self._check_user_unique(username, email)
            raise

        logger.info("user_created", extra={
            "user_id": str(dto.id),
            "username": username,
            "role": role.value,
        })
        return dto

    def _check_user_unique(self, username: str, email: str) -> None:
        if self.session.scalar(
            select(UserModel.id).where(UserModel.username == username)
        ) is not None:
            raise DuplicateUserError("username", username)
        if self.session.scalar(
            select(UserModel.id).where(UserModel.email == email)
        ) is not None:
            raise DuplicateUserError("email", email)

    def _get_user_model(self, user_id: UUID) -> UserModel:
        model = self.session.get(UserModel, user_id)
        if model is None:
            raise UserNotFoundError(str(user_id))
        return model

    def get_user(self, user_id: UUID) -> User:
        return self._get_user_model(user_id).to_dto()

    def users_by_msisdn(self, msisdn: str) -> list[User]:
        """Users whose normalized phone number equals ``msisdn``."""
        models = self.session.scalars(
            select(UserModel).where(UserModel.msisdn == msisdn).order_by(UserModel.id)
        ).all()
        return [m.to_dto() for m in models]

    def actor_role(self, actor_id: UUID) -> UserRole | None:
        """Role of ``actor_id`` if it is a known user."""
        model = self.session.get(UserModel, actor_id)
        return UserRole(model.role) if model is not None else None

    def change_user_role(self, user_id: UUID, new_role: UserRole, actor_id: UUID) -> User:
        """Change a user's role.  Only an admin actor may do so."""
        new_role = UserRole(new_role)
        if self.actor_role(actor_id) is not UserRole.ADMIN:
            logger.warning("user_role_change_denied", extra={
                "user_id": str(user_id),
                "actor_id": str(actor_id),
            })
            raise PermissionDeniedError(
                actor_id=str(actor_id),
                action="change user role",
                required_roles=[UserRole.ADMIN.value],
            )

        model = self._get_user_model(user_id)
        old_role = model.role
        model.role = new_role.value
        model.updated_by_id = actor_id
        self.session.flush()

        logger.info("user_role_changed", extra={
            "user_id": str(user_id),
            "old_role": old_role,
            "new_role": new_role.value,
        })
        return model.to_dto()

    def delete_user(self, user_id: UUID, actor_id: UUID) -> None:
        """Delete a user with no lease, property or payment history."""
        model = self._get_user_model(user_id)
        self._delete_unreferenced("User", model)
        logger.info("user_deleted", extra={"user_id": str(user_id), "actor_id": str(actor_id)})

    # =========================================================================
    # Properties
    # =========================================================================

    def create_property(
        self,
        name: str,
        address: str,
        city: str,
        county: str,
        type: PropertyType,
        price: Decimal,
        owner_id: UUID,
        actor_id: UUID,
        status: PropertyStatus = PropertyStatus.FOR_RENT,
        description: str | None = None,
        postal_code: str | None = None,
        neighborhood: str | None = None,
        bedrooms: int | None = None,
        bathrooms: int | None = None,
        square_meters: Decimal | None = None,
        year_built: int | None = None,
        features: str | None = None,
        image_url: str | None = None,
        additional_images: tuple[str, ...] = (),
        manager_id: UUID | None = None,
        listing_agent_id: UUID | None = None,
        currency_symbol: str | None = None,
    ) -> Property:
        """Create a property.  A new property has no leases, so it cannot start ``rented``."""
        require_amount("price", price)
        status = PropertyStatus(status)
        self._get_user_model(owner_id)
        for related in (manager_id, listing_agent_id):
            if related is not None:
                self._get_user_model(related)

        dto = Property(
            id=uuid4(),
            name=_require_text("name", name),
            address=_require_text("address", address),
            city=_require_text("city", city),
            county=_require_text("county", county),
            type=PropertyType(type),
            status=status,
            price=price,
            owner_id=owner_id,
            currency_symbol=currency_symbol or self._currency_symbol,
            description=description,
            postal_code=postal_code,
            neighborhood=neighborhood,
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            square_meters=square_meters,
            year_built=year_built,
            features=features,
            image_url=image_url,
            additional_images=tuple(additional_images),
            manager_id=manager_id,
            listing_agent_id=listing_agent_id,
        )
        if status is PropertyStatus.RENTED:
            raise PropertyStatusConflictError(
                str(dto.id), status.value, "a new property has no active leases"
            )

        self.session.add(PropertyModel.from_dto(dto, created_by_id=actor_id))
        self.session.flush()

        logger.info("property_created", extra={
            "property_id": str(dto.id),
            "owner_id": str(owner_id),
            "type": dto.type.value,
            "status": status.value,
        })
        return dto

    def get_property_model(self, property_id: UUID, for_update: bool = False) -> PropertyModel:
        """Load a property row, optionally locking it (SELECT ... FOR UPDATE)."""
        stmt = select(PropertyModel).where(PropertyModel.id == property_id)
        if for_update:
            stmt = stmt.with_for_update()
        model = self.session.scalars(stmt).first()
        if model is None:
            raise PropertyNotFoundError(str(property_id))
        return model

    def get_property(self, property_id: UUID) -> Property:
        return self.get_property_model(property_id).to_dto()

    def set_property_status(
        self,
        property_id: UUID,
        status: PropertyStatus,
        actor_id: UUID,
    ) -> Property:
        """Externally driven status change, validated against active leases."""
        status = PropertyStatus(status)
        model = self.get_property_model(property_id, for_update=True)
        active = self.active_lease_count(property_id)

        match status:
            case PropertyStatus.RENTED:
                if active == 0:
                    raise PropertyStatusConflictError(
                        str(property_id), status.value, "no active leases"
                    )
            case PropertyStatus.FOR_RENT:
                if self.is_fully_occupied(property_id):
                    raise PropertyStatusConflictError(
                        str(property_id), status.value, "property is fully occupied"
                    )
            case PropertyStatus.SOLD:
                if active > 0:
                    raise PropertyStatusConflictError(
                        str(property_id),
                        status.value,
                        f"{active} active lease(s) must be terminated first",
                    )
            case PropertyStatus.FOR_SALE:
                pass
            case _:
                raise ValueError(f"Unknown property status: {status}")

        old_status = model.status
        model.status = status.value
        model.updated_by_id = actor_id
        self.session.flush()

        logger.info("property_status_changed", extra={
            "property_id": str(property_id),
            "old_status": old_status,
            "new_status": status.value,
            "active_leases": active,
        })
        return model.to_dto()

    def rederive_property_status(self, model: PropertyModel, actor_id: UUID) -> None:
        """
        Re-align a for_rent/rented property with its leases after a lease change.

        ``rented`` with no active lease becomes ``for_rent``; ``for_rent`` while
        fully occupied becomes ``rented``.  ``for_sale`` and ``sold`` are owned
        by callers and never touched here.
        """
        current = PropertyStatus(model.status)
        new_status = current
        if current is PropertyStatus.RENTED and self.active_lease_count(model.id) == 0:
            new_status = PropertyStatus.FOR_RENT
        elif current is PropertyStatus.FOR_RENT and self.is_fully_occupied(model.id):
            new_status = PropertyStatus.RENTED

        if new_status is not current:
            model.status = new_status.value
            model.updated_by_id = actor_id
            self.session.flush()
            logger.info("property_status_rederived", extra={
                "property_id": str(model.id),
                "old_status": current.value,
                "new_status": new_status.value,
            })

    def active_lease_count(self, property_id: UUID) -> int:
        return self.session.scalar(
            select(func.count(TenantModel.id)).where(
                TenantModel.property_id == property_id,
                TenantModel.is_active.is_(True),
            )
        ) or 0

    def is_fully_occupied(self, property_id: UUID) -> bool:
        """
        Whole-property lease active, or every unit of a multi-unit property
        occupied.
        """
        whole = self.session.scalar(
            select(TenantModel.id).where(
                TenantModel.property_id == property_id,
                TenantModel.unit_id.is_(None),
                TenantModel.is_active.is_(True),
            ).limit(1)
        )
        if whole is not None:
            return True
        unit_count = self.session.scalar(
            select(func.count(UnitModel.id)).where(UnitModel.property_id == property_id)
        ) or 0
        if unit_count == 0:
            return False
        occupied_units = self.session.scalar(
            select(func.count(func.distinct(TenantModel.unit_id))).where(
                TenantModel.property_id == property_id,
                TenantModel.unit_id.is_not(None),
                TenantModel.is_active.is_(True),
            )
        ) or 0
        return occupied_units >= unit_count

    def delete_property(self, property_id: UUID, actor_id: UUID) -> None:
        """Delete a property and its units, unless any has lease history."""
        model = self.get_property_model(property_id, for_update=True)
        units = self.session.scalars(
            select(UnitModel).where(UnitModel.property_id == property_id)
        ).all()
        self._raise_if_referenced("Property", model)
        for unit in units:
            self._raise_if_referenced("Unit", unit)

        for unit in units:
            self.session.delete(unit)
        self.session.flush()
        self.session.delete(model)
        self.session.flush()

        logger.info("property_deleted", extra={
            "property_id": str(property_id),
            "units_deleted": len(units),
            "actor_id": str(actor_id),
        })

    # =========================================================================
    # Units
    # =========================================================================

    def add_unit(
        self,
        property_id: UUID,
        unit_number: str,
        bedrooms: int,
        bathrooms: Decimal,
        square_feet: Decimal,
        rent: Decimal,
        actor_id: UUID,
    ) -> Unit:
        """Add a vacant unit.  Unit numbers are unique within a property."""
        unit_number = _require_text("unit_number", unit_number)
        require_amount("rent", rent)
        if bedrooms < 0:
            raise ValidationError("bedrooms", "must not be negative")
        if bathrooms < 0 or square_feet < 0:
            raise ValidationError("bathrooms/square_feet", "must not be negative")

        self.get_property_model(property_id, for_update=True)
        existing = self.session.scalar(
            select(UnitModel.id).where(
                UnitModel.property_id == property_id,
                UnitModel.unit_number == unit_number,
            )
        )
        if existing is not None:
            raise ConflictError(
                f"Unit {unit_number} already exists on property {property_id}"
            )

        dto = Unit(
            id=uuid4(),
            property_id=property_id,
            unit_number=unit_number,
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            square_feet=square_feet,
            rent=rent,
            status=UnitStatus.VACANT,
        )
        self.session.add(UnitModel.from_dto(dto, created_by_id=actor_id))
        self.session.flush()

        logger.info("unit_added", extra={
            "unit_id": str(dto.id),
            "property_id": str(property_id),
            "unit_number": unit_number,
        })
        return dto

    def get_unit_model(self, unit_id: UUID) -> UnitModel:
        model = self.session.get(UnitModel, unit_id)
        if model is None:
            raise UnitNotFoundError(str(unit_id))
        return model

    def get_unit(self, unit_id: UUID) -> Unit:
        return self.get_unit_model(unit_id).to_dto()

    def list_units(self, property_id: UUID) -> list[Unit]:
        models = self.session.scalars(
            select(UnitModel)
            .where(UnitModel.property_id == property_id)
            .order_by(UnitModel.unit_number, UnitModel.id)
        ).all()
        return [m.to_dto() for m in models]

    def set_unit_status(self, unit_id: UUID, status: UnitStatus, actor_id: UUID) -> None:
        model = self.get_unit_model(unit_id)
        if model.status != status.value:
            model.status = status.value
            model.updated_by_id = actor_id
            self.session.flush()

    def delete_unit(self, unit_id: UUID, actor_id: UUID) -> None:
        """Delete a unit with no lease or maintenance history."""
        model = self.get_unit_model(unit_id)
        property_model = self.get_property_model(model.property_id, for_update=True)
        self._delete_unreferenced("Unit", model)
        self.rederive_property_status(property_model, actor_id)
        logger.info("unit_deleted", extra={"unit_id": str(unit_id), "actor_id": str(actor_id)})

    # =========================================================================
    # Helpers
    # =========================================================================

    def _raise_if_referenced(self, entity_type: str, model) -> None:
        referenced_by = first_reference(self.session, model)
        if referenced_by is not None:
            logger.warning("restricted_delete_rejected", extra={
                "entity_type": entity_type,
                "entity_id": str(model.id),
                "referenced_by": referenced_by,
            })
            raise ReferencedEntityError(
                entity_type=entity_type,
                entity_id=str(model.id),
                referenced_by=referenced_by,
            )

    def _delete_unreferenced(self, entity_type: str, model) -> None:
        self._raise_if_referenced(entity_type, model)
        self.session.delete(model)
        self.session.flush()
