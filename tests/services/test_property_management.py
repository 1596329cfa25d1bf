"""
Tests for PropertyManagementService, the transactional facade.

Every call here commits (or rolls back) a real transaction.

Covers:
- Lease, invoice and payment flow end to end
- Credit applied automatically to newly generated invoices
- Billing cycle over all active leases, safe to re-run
- Rollback leaves no partial state
- Log lines carry the operation context
- Maintenance lifecycle and the read projections
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from rental_config.schema import BillingConfig, RentalConfig
from rental_kernel.db.engine import get_session_factory
from rental_kernel.exceptions import (
    InvalidTransitionError,
    InvoiceNotFoundError,
    NonPositiveAmountError,
    ReferencedEntityError,
    RenewalBlockedError,
    TenantNotFoundError,
    UnitOccupiedError,
    ValidationError,
)
from rental_modules.billing.models import InvoiceStatus
from rental_modules.directory.models import PropertyStatus, PropertyType, UnitStatus, UserRole
from rental_modules.maintenance.models import MaintenancePriority, MaintenanceStatus
from rental_modules.payments.models import PaymentStatus
from rental_services.property_management import PropertyManagementService

JAN = (date(2024, 1, 1), date(2024, 2, 1))
FEB = (date(2024, 2, 1), date(2024, 3, 1))


class TestLeaseFlow:
    def test_lease_invoice_payment(self, pms, pms_lease, test_actor_id):
        lease = pms_lease()
        jan = pms.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)
        feb = pms.generate_invoice(lease.id, *FEB, Decimal("3000"), test_actor_id, due_date=date(2024, 2, 6))

        payment = pms.record_payment(lease.id, Decimal("6000"), "cash", test_actor_id)

        assert payment.status == PaymentStatus.PAID
        assert pms.get_invoice(jan.id).status == InvoiceStatus.PAID
        assert pms.get_invoice(feb.id).status == InvoiceStatus.PARTIAL
        assert [inv.id for inv in pms.outstanding_invoices(lease.id)] == [feb.id]

    def test_overpayment_credit_applied_to_next_invoice(self, pms, pms_lease, test_actor_id):
        lease = pms_lease()
        pms.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)
        pms.record_payment(lease.id, Decimal("7000"), "cash", test_actor_id)
        assert pms.tenant_credit_balance(lease.id) == Decimal("2000")

        feb = pms.generate_invoice(lease.id, *FEB, Decimal("5000"), test_actor_id)

        assert feb.status == InvoiceStatus.PARTIAL
        assert pms.tenant_credit_balance(lease.id) == Decimal("0")

    def test_credit_left_alone_when_auto_apply_off(self, db_engine, deterministic_clock, pms_lease, test_actor_id):
        pms = PropertyManagementService(
            session_factory=get_session_factory(),
            clock=deterministic_clock,
            config=RentalConfig(config_id="test", version=1, billing=BillingConfig(auto_apply_credit=False)),
            sleep=lambda _seconds: None,
        )
        lease = pms_lease()
        pms.record_payment(lease.id, Decimal("1000"), "cash", test_actor_id)

        invoice = pms.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)

        assert invoice.status == InvoiceStatus.PENDING
        assert len(pms.apply_tenant_credit(lease.id, test_actor_id)) == 1
        assert pms.get_invoice(invoice.id).status == InvoiceStatus.PARTIAL

    def test_failed_payment_rolls_back(self, pms, pms_lease, test_actor_id):
        lease = pms_lease()

        with pytest.raises(NonPositiveAmountError):
            pms.record_payment(lease.id, Decimal("-5"), "cash", test_actor_id)

        assert pms.payments_for_tenant(lease.id) == []

    def test_conflicting_lease_leaves_no_trace(self, pms, pms_lease, test_actor_id):
        first = pms_lease()

        with pytest.raises(UnitOccupiedError):
            pms_lease(property_id=first.property_id)

        assert pms.unit_occupancy(first.property_id).whole_property_tenant_id == first.id

    def test_terminate_and_release_unit(self, pms, pms_lease, test_actor_id):
        owner = pms.create_user("mwangi", "mwangi@example.com", "Mwangi", test_actor_id, role=UserRole.LANDLORD)
        prop = pms.create_property(
            "Lavington Villas", "1 James Gichuru Rd", "Nairobi", "Nairobi",
            PropertyType.CONDO, Decimal("40000000"), owner.id, test_actor_id,
            bedrooms=3, neighborhood="Lavington",
        )
        unit = pms.add_unit(prop.id, "C3", 3, Decimal("2"), Decimal("1400"), Decimal("85000"), test_actor_id)
        lease = pms_lease(property_id=prop.id, unit_id=unit.id)
        assert pms.get_unit(unit.id).status == UnitStatus.OCCUPIED
        assert pms.get_property(prop.id).status == PropertyStatus.RENTED

        pms.terminate_lease(lease.id, date(2024, 5, 31), test_actor_id)

        assert pms.get_unit(unit.id).status == UnitStatus.VACANT
        assert pms.get_property(prop.id).status == PropertyStatus.FOR_RENT
        assert not pms.get_tenant(lease.id).is_active

    def test_renewal_blocked_then_overridden(self, pms, pms_lease, deterministic_clock, test_actor_id):
        admin = pms.create_user("admin", "admin@example.com", "Admin", test_actor_id, role=UserRole.ADMIN)
        lease = pms_lease()
        pms.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)
        deterministic_clock.advance_days(20)

        with pytest.raises(RenewalBlockedError):
            pms.renew_lease(lease.id, date(2025, 12, 31), test_actor_id)

        renewed = pms.renew_lease(lease.id, date(2025, 12, 31), admin.id, override=True)
        assert renewed.lease_end == date(2025, 12, 31)

    def test_renewal_allowed_once_paid(self, pms, pms_lease, deterministic_clock, test_actor_id):
        lease = pms_lease()
        pms.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)
        deterministic_clock.advance_days(20)
        pms.record_payment(lease.id, Decimal("5000"), "cash", test_actor_id)

        assert pms.renew_lease(lease.id, date(2025, 12, 31), test_actor_id).lease_end == date(2025, 12, 31)

    def test_unknown_lease(self, pms):
        with pytest.raises(TenantNotFoundError):
            pms.terminate_lease(uuid4(), date(2024, 5, 31), uuid4())

    def test_property_with_history_not_deleted(self, pms, pms_lease, test_actor_id):
        lease = pms_lease()
        pms.terminate_lease(lease.id, date(2024, 5, 31), test_actor_id)

        with pytest.raises(ReferencedEntityError):
            pms.delete_property(lease.property_id, test_actor_id)
        assert pms.get_property(lease.property_id).id == lease.property_id


class TestBillingCycle:
    def test_invoices_every_active_lease(self, pms, pms_lease, test_actor_id):
        first = pms_lease(rent=Decimal("5000"))
        second = pms_lease(rent=Decimal("8000"))

        result = pms.run_billing_cycle(*JAN, actor_id=test_actor_id)

        assert result.succeeded
        by_lease = {inv.tenant_id: inv.amount for inv in result.invoices}
        assert by_lease == {first.id: Decimal("5000"), second.id: Decimal("8000")}

    def test_rerun_returns_same_invoices(self, pms, pms_lease, test_actor_id):
        pms_lease()
        pms_lease()

        first = pms.run_billing_cycle(*JAN, actor_id=test_actor_id)
        second = pms.run_billing_cycle(*JAN, actor_id=test_actor_id)

        assert sorted(inv.id for inv in first.invoices) == sorted(inv.id for inv in second.invoices)

    def test_terminated_lease_skipped(self, pms, pms_lease, test_actor_id, captured_logs):
        active = pms_lease()
        ended = pms_lease()
        pms.terminate_lease(ended.id, date(2024, 1, 20), test_actor_id)

        result = pms.run_billing_cycle(*FEB, actor_id=test_actor_id)

        assert [inv.tenant_id for inv in result.invoices] == [active.id]
        done = [r for r in captured_logs() if r["message"] == "billing_cycle_completed"]
        assert done[0]["invoices"] == 1

    def test_bad_period_rejected(self, pms):
        with pytest.raises(ValidationError):
            pms.run_billing_cycle(JAN[1], JAN[0])


class TestInvoiceAdministration:
    def test_overdue_sweep_and_query(self, pms, pms_lease, deterministic_clock, test_actor_id):
        lease = pms_lease()
        invoice = pms.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)
        deterministic_clock.advance_days(10)

        changed = pms.refresh_overdue_statuses(actor_id=test_actor_id)

        assert [inv.id for inv in changed] == [invoice.id]
        assert pms.get_invoice(invoice.id).status == InvoiceStatus.OVERDUE
        assert [inv.id for inv in pms.overdue_invoices(lease.id)] == [invoice.id]

    def test_override_and_recompute(self, pms, pms_lease, test_actor_id):
        manager = pms.create_user("pm", "pm@example.com", "PM", test_actor_id, role=UserRole.PROPERTY_MANAGER)
        lease = pms_lease()
        invoice = pms.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)

        overridden = pms.override_invoice_status(invoice.id, InvoiceStatus.PAID, "waived", manager.id)
        assert overridden.status_overridden

        recomputed = pms.recompute_status(invoice.id, test_actor_id)
        assert recomputed.status == InvoiceStatus.PENDING
        assert not recomputed.status_overridden

    def test_unknown_invoice(self, pms, test_actor_id):
        with pytest.raises(InvoiceNotFoundError):
            pms.recompute_status(uuid4(), test_actor_id)


class TestLogContext:
    def test_log_lines_carry_operation(self, pms, pms_lease, captured_logs, test_actor_id):
        lease = pms_lease()

        pms.record_payment(lease.id, Decimal("100"), "cash", test_actor_id)

        recorded = [r for r in captured_logs() if r["message"] == "payment_recorded"]
        assert recorded[0]["operation"] == "record_payment"
        assert recorded[0]["actor_id"] == str(test_actor_id)
        assert recorded[0]["tenant_id"] == str(lease.id)

    def test_rolled_back_operation_logs_nothing_committed(self, pms, pms_lease, captured_logs, test_actor_id):
        lease = pms_lease()

        with pytest.raises(NonPositiveAmountError):
            pms.record_payment(lease.id, Decimal("0"), "cash", test_actor_id)

        assert not any(r["message"] == "payment_recorded" for r in captured_logs())


class TestMaintenanceThroughFacade:
    def test_lifecycle_and_queue(self, pms, pms_lease, test_actor_id):
        lease = pms_lease()
        request = pms.submit_maintenance_request(
            lease.id, "Roof leak", "Water through ceiling", test_actor_id,
            priority=MaintenancePriority.URGENT,
        )
        assert [r.id for r in pms.maintenance_queue()] == [request.id]

        pms.start_maintenance(request.id, test_actor_id)
        done = pms.complete_maintenance(request.id, test_actor_id)

        assert done.status == MaintenanceStatus.COMPLETED
        assert done.completed_at is not None
        assert pms.maintenance_queue() == []

    def test_completed_to_in_progress_rejected(self, pms, pms_lease, test_actor_id):
        lease = pms_lease()
        request = pms.submit_maintenance_request(lease.id, "Roof leak", "Ceiling", test_actor_id)
        pms.start_maintenance(request.id, test_actor_id)
        pms.complete_maintenance(request.id, test_actor_id)

        with pytest.raises(InvalidTransitionError):
            pms.transition_maintenance_request(request.id, MaintenanceStatus.IN_PROGRESS, test_actor_id)

        assert pms.get_maintenance_request(request.id).status == MaintenanceStatus.COMPLETED


class TestProjections:
    def test_tenant_ledger(self, pms, pms_lease, test_actor_id):
        lease = pms_lease()
        pms.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)
        pms.record_payment(lease.id, Decimal("7000"), "cash", test_actor_id)

        ledger = pms.tenant_ledger(lease.id)

        assert ledger.net_balance == Decimal("-2000")
        assert ledger.credit_balance == Decimal("2000")
        assert ledger.outstanding_balance == Decimal("0")
