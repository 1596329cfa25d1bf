"""
Pytest fixtures for the rental kernel test suite.

Provides:
- A fresh database per test (SQLite file under tmp_path by default)
- Module services bound to one uncommitted session
- The transactional facade (``PropertyManagementService``) over the same
  database, for tests that need real commits
- Data factories for users, properties, units and leases

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL).  Tables are
  dropped and recreated for every test.

Do not mix the ``session`` fixture with the facade in one test: on SQLite a
writing session holds the database lock until it ends.
"""

import json
import logging
import os
from collections.abc import Generator
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from rental_config.schema import RentalConfig, RetryConfig
from rental_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from rental_kernel.domain.clock import DeterministicClock
from rental_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from rental_modules.billing.service import BillingService
from rental_modules.directory.models import PropertyStatus, PropertyType, UserRole
from rental_modules.directory.service import DirectoryService
from rental_modules.lease.service import LeaseService
from rental_modules.maintenance.service import MaintenanceService
from rental_modules.payments.service import PaymentService
from rental_services.property_management import PropertyManagementService

LEASE_START = date(2024, 1, 1)
LEASE_END = date(2024, 12, 31)


# ---------------------------------------------------------------------------
# Logging fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture rental_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, pms):
            pms.record_payment(...)
            logs = captured_logs()
            assert any(r["message"] == "payment_recorded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("rental_kernel")
    old_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(old_level)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


def get_database_url(tmp_path) -> str:
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'rental_test.db'}"


@pytest.fixture
def db_engine(tmp_path):
    """Initialize the engine on a fresh schema; dispose it afterwards."""
    url = get_database_url(tmp_path)
    engine = init_engine_from_url(url, pool_size=10, max_overflow=10)
    if not url.startswith("sqlite"):
        drop_tables()
    create_tables()
    yield engine
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """A session that is rolled back at teardown.  Services only flush."""
    s = get_session()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def test_actor_id() -> UUID:
    return uuid4()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def rental_config() -> RentalConfig:
    return RentalConfig(
        config_id="test",
        version=1,
        retry=RetryConfig(max_attempts=3, base_delay_seconds=0.0, max_delay_seconds=0.0),
    )


# ---------------------------------------------------------------------------
# Service fixtures (one uncommitted session)
# ---------------------------------------------------------------------------


@pytest.fixture
def directory_service(session, deterministic_clock) -> DirectoryService:
    return DirectoryService(session, deterministic_clock)


@pytest.fixture
def billing_service(session, deterministic_clock) -> BillingService:
    return BillingService(session, deterministic_clock)


@pytest.fixture
def lease_service(session, deterministic_clock, directory_service, billing_service) -> LeaseService:
    return LeaseService(
        session,
        deterministic_clock,
        directory=directory_service,
        billing=billing_service,
    )


@pytest.fixture
def payment_service(session, deterministic_clock, billing_service) -> PaymentService:
    return PaymentService(session, deterministic_clock, billing=billing_service)


@pytest.fixture
def maintenance_service(session, deterministic_clock) -> MaintenanceService:
    return MaintenanceService(session, deterministic_clock)


# ---------------------------------------------------------------------------
# Data factories (session)
# ---------------------------------------------------------------------------


@pytest.fixture
def create_user(directory_service, test_actor_id):
    """Factory: create_user(role=UserRole.TENANT, phone=None) -> User."""

    def _create(role: UserRole = UserRole.TENANT, phone: str | None = None, username: str | None = None):
        name = username or f"user-{uuid4().hex[:8]}"
        return directory_service.create_user(
            username=name,
            email=f"{name}@example.com",
            full_name=name.title(),
            actor_id=test_actor_id,
            role=role,
            phone=phone,
        )

    return _create


@pytest.fixture
def create_property(directory_service, create_user, test_actor_id):
    """Factory: create_property(owner_id=None, status=FOR_RENT) -> Property."""

    def _create(owner_id: UUID | None = None, status: PropertyStatus = PropertyStatus.FOR_RENT, name: str = "Kilimani Court"):
        if owner_id is None:
            owner_id = create_user(role=UserRole.LANDLORD).id
        return directory_service.create_property(
            name=name,
            address="12 Argwings Kodhek Rd",
            city="Nairobi",
            county="Nairobi",
            type=PropertyType.APARTMENT,
            price=Decimal("25000000"),
            owner_id=owner_id,
            actor_id=test_actor_id,
            status=status,
        )

    return _create


@pytest.fixture
def create_unit(directory_service, test_actor_id):
    """Factory: create_unit(property_id, unit_number="A1", rent=5000) -> Unit."""

    def _create(property_id: UUID, unit_number: str = "A1", rent: Decimal = Decimal("5000")):
        return directory_service.add_unit(
            property_id=property_id,
            unit_number=unit_number,
            bedrooms=2,
            bathrooms=Decimal("1"),
            square_feet=Decimal("850"),
            rent=rent,
            actor_id=test_actor_id,
        )

    return _create


@pytest.fixture
def create_lease(lease_service, create_user, create_property, test_actor_id):
    """
    Factory: create_lease(property_id=None, unit_id=None, user_id=None,
    rent=5000, phone=None) -> Tenant.  Missing parties are created.
    """

    def _create(
        property_id: UUID | None = None,
        unit_id: UUID | None = None,
        user_id: UUID | None = None,
        rent: Decimal = Decimal("5000"),
        phone: str | None = None,
        lease_start: date = LEASE_START,
        lease_end: date = LEASE_END,
    ):
        if property_id is None:
            property_id = create_property().id
        if user_id is None:
            user_id = create_user(phone=phone).id
        return lease_service.create_lease(
            user_id=user_id,
            property_id=property_id,
            lease_start=lease_start,
            lease_end=lease_end,
            rent_amount=rent,
            security_deposit=rent,
            actor_id=test_actor_id,
            unit_id=unit_id,
        )

    return _create


# ---------------------------------------------------------------------------
# Facade fixtures (real commits)
# ---------------------------------------------------------------------------


@pytest.fixture
def pms(db_engine, deterministic_clock, rental_config) -> PropertyManagementService:
    return PropertyManagementService(
        session_factory=get_session_factory(),
        clock=deterministic_clock,
        config=rental_config,
        sleep=lambda _seconds: None,
    )


@pytest.fixture
def pms_lease(pms, test_actor_id):
    """
    Factory: pms_lease(rent=5000, phone=None, property_id=None, unit_id=None)
    -> Tenant, committed through the facade.
    """

    def _create(
        rent: Decimal = Decimal("5000"),
        phone: str | None = None,
        property_id: UUID | None = None,
        unit_id: UUID | None = None,
    ):
        if property_id is None:
            owner = pms.create_user(
                f"owner-{uuid4().hex[:8]}", f"owner-{uuid4().hex[:8]}@example.com",
                "Owner", test_actor_id, role=UserRole.LANDLORD,
            )
            property_id = pms.create_property(
                "Riverside Flats", "4 Riverside Dr", "Nairobi", "Nairobi",
                PropertyType.APARTMENT, Decimal("18000000"), owner.id, test_actor_id,
            ).id
        name = f"tenant-{uuid4().hex[:8]}"
        user = pms.create_user(name, f"{name}@example.com", "Tenant", test_actor_id, phone=phone)
        return pms.create_lease(
            user.id, property_id, LEASE_START, LEASE_END, rent, rent, test_actor_id,
            unit_id=unit_id,
        )

    return _create
