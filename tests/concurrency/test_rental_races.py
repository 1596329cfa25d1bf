"""
Race tests for the transactional facade.

Each thread gets its own PropertyManagementService (and so its own keyed
lock registry), so only the database serializes them, as it would across
processes.  Runs on SQLite by default and on PostgreSQL with DATABASE_URL.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from threading import Barrier

import pytest

from rental_kernel.db.engine import get_session_factory
from rental_kernel.exceptions import UnitOccupiedError
from rental_modules.billing.models import InvoiceStatus
from rental_modules.directory.models import PropertyType, UnitStatus, UserRole
from rental_services.property_management import PropertyManagementService

pytestmark = pytest.mark.slow_locks

JAN = (date(2024, 1, 1), date(2024, 2, 1))
FEB = (date(2024, 2, 1), date(2024, 3, 1))


@pytest.fixture
def new_facade(db_engine, deterministic_clock, rental_config):
    def _make() -> PropertyManagementService:
        return PropertyManagementService(
            session_factory=get_session_factory(),
            clock=deterministic_clock,
            config=rental_config,
            sleep=lambda _seconds: None,
        )

    return _make


def _run_together(num_threads, work):
    """Run ``work(i)`` on ``num_threads`` threads released by one barrier."""
    barrier = Barrier(num_threads, timeout=30)

    def _worker(i):
        barrier.wait()
        try:
            return work(i), None
        except Exception as exc:
            return None, exc

    with ThreadPoolExecutor(max_workers=num_threads) as executor:
        return list(executor.map(_worker, range(num_threads)))


class TestLeaseRaces:
    def test_one_lease_wins_a_unit(self, pms, new_facade, test_actor_id):
        owner = pms.create_user("owner", "owner@example.com", "Owner", test_actor_id, role=UserRole.LANDLORD)
        prop = pms.create_property(
            "Kileleshwa Heights", "9 Mandera Rd", "Nairobi", "Nairobi",
            PropertyType.APARTMENT, Decimal("30000000"), owner.id, test_actor_id,
        )
        unit = pms.add_unit(prop.id, "B2", 2, Decimal("1"), Decimal("900"), Decimal("45000"), test_actor_id)
        users = [
            pms.create_user(f"applicant{i}", f"applicant{i}@example.com", "Applicant", test_actor_id)
            for i in range(5)
        ]

        results = _run_together(5, lambda i: new_facade().create_lease(
            users[i].id, prop.id, JAN[0], date(2024, 12, 31),
            Decimal("45000"), Decimal("45000"), test_actor_id, unit_id=unit.id,
        ))

        winners = [lease for lease, exc in results if exc is None]
        losers = [exc for _, exc in results if exc is not None]
        assert len(winners) == 1
        assert all(isinstance(exc, UnitOccupiedError) for exc in losers)
        assert pms.unit_occupancy(prop.id).units[0].active_tenant_id == winners[0].id
        assert pms.get_unit(unit.id).status == UnitStatus.OCCUPIED

    def test_whole_property_and_unit_leases_exclude_each_other(self, pms, new_facade, test_actor_id):
        owner = pms.create_user("owner", "owner@example.com", "Owner", test_actor_id, role=UserRole.LANDLORD)
        prop = pms.create_property(
            "Runda Mews", "2 Runda Rd", "Nairobi", "Nairobi",
            PropertyType.HOUSE, Decimal("60000000"), owner.id, test_actor_id,
        )
        unit = pms.add_unit(prop.id, "1", 4, Decimal("3"), Decimal("2500"), Decimal("150000"), test_actor_id)
        users = [
            pms.create_user(f"applicant{i}", f"applicant{i}@example.com", "Applicant", test_actor_id)
            for i in range(4)
        ]

        results = _run_together(4, lambda i: new_facade().create_lease(
            users[i].id, prop.id, JAN[0], date(2024, 12, 31),
            Decimal("150000"), Decimal("0"), test_actor_id,
            unit_id=unit.id if i % 2 else None,
        ))

        assert len([lease for lease, exc in results if exc is None]) == 1
        occupancy = pms.unit_occupancy(prop.id)
        active = [u.active_tenant_id for u in occupancy.units if u.active_tenant_id]
        if occupancy.whole_property_tenant_id is not None:
            assert active == []
        else:
            assert len(active) == 1


class TestPaymentRaces:
    def test_concurrent_payments_never_over_allocate(self, pms, pms_lease, new_facade, test_actor_id):
        lease = pms_lease()
        jan = pms.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)
        feb = pms.generate_invoice(lease.id, *FEB, Decimal("3000"), test_actor_id, due_date=date(2024, 2, 6))

        results = _run_together(5, lambda i: new_facade().record_payment(
            lease.id, Decimal("2000"), "cash", test_actor_id,
        ))

        assert all(exc is None for _, exc in results)
        assert pms.get_invoice(jan.id).status == InvoiceStatus.PAID
        assert pms.get_invoice(feb.id).status == InvoiceStatus.PAID
        assert pms.tenant_credit_balance(lease.id) == Decimal("2000")
        ledger = pms.tenant_ledger(lease.id)
        assert ledger.total_paid == Decimal("10000")
        assert ledger.outstanding_balance == Decimal("0")

    def test_same_gateway_event_from_many_threads(self, pms, pms_lease, new_facade, test_actor_id):
        lease = pms_lease(phone="0712345678")
        pms.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)
        event = {
            "transactionId": "QKX81HJ2TB",
            "transactionType": "customer_paybill",
            "phoneNumber": "254712345678",
            "amount": "5000",
            "status": "completed",
            "transactionDate": "20240101120500",
        }

        results = _run_together(6, lambda i: new_facade().ingest_gateway_event(dict(event)))

        assert all(exc is None for _, exc in results)
        payment_ids = {payment.id for payment, _ in results}
        assert len(payment_ids) == 1
        assert len(pms.payments_for_tenant(lease.id)) == 1
        assert pms.tenant_credit_balance(lease.id) == Decimal("0")

    def test_billing_cycle_races_manual_invoice(self, pms, pms_lease, new_facade, test_actor_id):
        lease = pms_lease()

        def work(i):
            facade = new_facade()
            if i % 2:
                return facade.generate_invoice(lease.id, *JAN, lease.rent_amount, test_actor_id).id
            return facade.run_billing_cycle(*JAN, actor_id=test_actor_id).invoices[0].id

        results = _run_together(4, work)

        assert all(exc is None for _, exc in results)
        assert len({invoice_id for invoice_id, _ in results}) == 1
        assert len(pms.outstanding_invoices(lease.id)) == 1
