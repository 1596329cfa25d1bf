"""
Tests for BillingService and the invoice status function.

Covers:
- derive_invoice_status for every branch, including boundaries
- Idempotent invoice generation per (lease, period start)
- Due date defaults and validation
- Status recomputation, overrides and the overdue sweep
- Billing order of active leases
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from rental_kernel.exceptions import (
    ImmutabilityViolationError,
    InvalidDateRangeError,
    InvoiceNotFoundError,
    LeaseInactiveError,
    NonPositiveAmountError,
    PermissionDeniedError,
    TenantNotFoundError,
    ValidationError,
)
from rental_modules.billing.models import InvoiceStatus
from rental_modules.billing.orm import InvoiceModel
from rental_modules.billing.status import derive_invoice_status, is_past_due
from rental_modules.directory.models import UserRole

JAN = (date(2024, 1, 1), date(2024, 2, 1))
FEB = (date(2024, 2, 1), date(2024, 3, 1))


class TestDeriveInvoiceStatus:
    """The single authority for Invoice.status."""

    due = date(2024, 1, 6)

    def test_paid_when_fully_applied(self):
        assert derive_invoice_status(Decimal("5000"), Decimal("5000"), self.due, date(2024, 3, 1)) == InvoiceStatus.PAID

    def test_paid_when_over_applied(self):
        assert derive_invoice_status(Decimal("5000"), Decimal("5000.01"), self.due, self.due) == InvoiceStatus.PAID

    def test_partial_beats_overdue(self):
        assert derive_invoice_status(Decimal("5000"), Decimal("1"), self.due, date(2024, 3, 1)) == InvoiceStatus.PARTIAL

    def test_overdue_after_due_date(self):
        assert derive_invoice_status(Decimal("5000"), Decimal("0"), self.due, date(2024, 1, 7)) == InvoiceStatus.OVERDUE

    def test_pending_on_due_date(self):
        assert derive_invoice_status(Decimal("5000"), Decimal("0"), self.due, self.due) == InvoiceStatus.PENDING

    def test_past_due_needs_unpaid_balance(self):
        assert is_past_due(Decimal("5000"), Decimal("4999"), self.due, date(2024, 1, 7))
        assert not is_past_due(Decimal("5000"), Decimal("5000"), self.due, date(2024, 1, 7))
        assert not is_past_due(Decimal("5000"), Decimal("0"), self.due, self.due)


class TestGenerateInvoice:
    def test_generates_pending_invoice(self, billing_service, create_lease, test_actor_id):
        lease = create_lease()

        invoice = billing_service.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)

        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.issue_date == date(2024, 1, 1)
        assert invoice.due_date == date(2024, 1, 6)
        assert invoice.currency_symbol == "KSh"

    def test_same_period_returns_existing(self, billing_service, create_lease, test_actor_id):
        lease = create_lease()

        first = billing_service.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)
        second = billing_service.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)

        assert second.id == first.id
        assert len(billing_service.invoices_for_tenant(lease.id)) == 1

    def test_differing_amount_logged_not_applied(self, billing_service, create_lease, captured_logs, test_actor_id):
        lease = create_lease()
        first = billing_service.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)

        again = billing_service.generate_invoice(lease.id, *JAN, Decimal("6000"), test_actor_id)

        assert again.id == first.id
        assert again.amount == Decimal("5000")
        mismatch = [r for r in captured_logs() if r["message"] == "invoice_amount_mismatch"]
        assert mismatch[0]["requested_amount"] == "6000"

    def test_late_period_due_today(self, billing_service, create_lease, deterministic_clock, test_actor_id):
        lease = create_lease()
        deterministic_clock.advance_days(45)

        invoice = billing_service.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)

        assert invoice.due_date == date(2024, 2, 15)
        assert invoice.status == InvoiceStatus.PENDING

    def test_explicit_due_date_in_past_rejected(self, billing_service, create_lease, test_actor_id):
        lease = create_lease()

        with pytest.raises(ValidationError):
            billing_service.generate_invoice(
                lease.id, *JAN, Decimal("5000"), test_actor_id, due_date=date(2023, 12, 31)
            )

    def test_bad_period_rejected(self, billing_service, create_lease, test_actor_id):
        lease = create_lease()

        with pytest.raises(InvalidDateRangeError):
            billing_service.generate_invoice(lease.id, JAN[1], JAN[0], Decimal("5000"), test_actor_id)

    def test_non_positive_amount_rejected(self, billing_service, create_lease, test_actor_id):
        lease = create_lease()

        with pytest.raises(NonPositiveAmountError):
            billing_service.generate_invoice(lease.id, *JAN, Decimal("0"), test_actor_id)

    def test_amount_finer_than_storage_scale_rejected(self, billing_service, create_lease, test_actor_id):
        lease = create_lease()

        with pytest.raises(ValidationError, match="decimal places"):
            billing_service.generate_invoice(lease.id, *JAN, Decimal("5000.0000000001"), test_actor_id)

    def test_unknown_lease_rejected(self, billing_service, test_actor_id):
        with pytest.raises(TenantNotFoundError):
            billing_service.generate_invoice(uuid4(), *JAN, Decimal("5000"), test_actor_id)

    def test_inactive_lease_not_invoiced(self, billing_service, lease_service, create_lease, test_actor_id):
        lease = create_lease()
        lease_service.terminate_lease(lease.id, date(2024, 1, 15), test_actor_id)

        with pytest.raises(LeaseInactiveError):
            billing_service.generate_invoice(lease.id, *FEB, Decimal("5000"), test_actor_id)

    def test_existing_invoice_returned_after_termination(self, billing_service, lease_service, create_lease, test_actor_id):
        lease = create_lease()
        invoice = billing_service.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)
        lease_service.terminate_lease(lease.id, date(2024, 1, 15), test_actor_id)

        assert billing_service.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id).id == invoice.id

    def test_invoice_amount_is_frozen(self, session, billing_service, create_lease, test_actor_id):
        lease = create_lease()
        invoice = billing_service.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)

        session.get(InvoiceModel, invoice.id).amount = Decimal("1")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestInvoiceStatus:
    def test_recompute_marks_overdue(self, billing_service, create_lease, deterministic_clock, test_actor_id):
        lease = create_lease()
        invoice = billing_service.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)
        deterministic_clock.advance_days(10)

        updated = billing_service.recompute_status(invoice.id, test_actor_id)

        assert updated.status == InvoiceStatus.OVERDUE

    def test_recompute_unknown_invoice(self, billing_service, test_actor_id):
        with pytest.raises(InvoiceNotFoundError):
            billing_service.recompute_status(uuid4(), test_actor_id)

    def test_override_by_admin(self, billing_service, create_user, create_lease, test_actor_id):
        admin = create_user(role=UserRole.ADMIN)
        lease = create_lease()
        invoice = billing_service.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)

        updated = billing_service.override_invoice_status(
            invoice.id, InvoiceStatus.PAID, "settled in cash at the office", admin.id
        )

        assert updated.status == InvoiceStatus.PAID
        assert updated.status_overridden
        assert updated.overridden_by_id == admin.id

    def test_override_needs_reason(self, billing_service, create_user, create_lease, test_actor_id):
        admin = create_user(role=UserRole.ADMIN)
        lease = create_lease()
        invoice = billing_service.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)

        with pytest.raises(ValidationError):
            billing_service.override_invoice_status(invoice.id, InvoiceStatus.PAID, "  ", admin.id)

    def test_override_needs_privileged_role(self, billing_service, create_user, create_lease, test_actor_id):
        tenant_user = create_user()
        lease = create_lease(user_id=tenant_user.id)
        invoice = billing_service.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)

        with pytest.raises(PermissionDeniedError):
            billing_service.override_invoice_status(invoice.id, InvoiceStatus.PAID, "paid", tenant_user.id)

    def test_recompute_clears_override(self, billing_service, create_user, create_lease, test_actor_id):
        admin = create_user(role=UserRole.ADMIN)
        lease = create_lease()
        invoice = billing_service.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)
        billing_service.override_invoice_status(invoice.id, InvoiceStatus.PAID, "manual", admin.id)

        updated = billing_service.recompute_status(invoice.id, test_actor_id)

        assert updated.status == InvoiceStatus.PENDING
        assert not updated.status_overridden
        assert updated.override_reason is None

    def test_overdue_sweep(self, billing_service, create_lease, deterministic_clock, captured_logs, test_actor_id):
        first = create_lease()
        second = create_lease()
        a = billing_service.generate_invoice(first.id, *JAN, Decimal("5000"), test_actor_id)
        b = billing_service.generate_invoice(second.id, *JAN, Decimal("3000"), test_actor_id, due_date=date(2024, 1, 20))
        deterministic_clock.advance_days(10)

        changed = billing_service.refresh_overdue_statuses(test_actor_id)

        assert [inv.id for inv in changed] == [a.id]
        assert billing_service.get_invoice(a.id).status == InvoiceStatus.OVERDUE
        assert billing_service.get_invoice(b.id).status == InvoiceStatus.PENDING
        sweep = [r for r in captured_logs() if r["message"] == "overdue_sweep_completed"]
        assert sweep[0]["changed"] == 1

    def test_overdue_query_ignores_labels(self, billing_service, create_user, create_lease, deterministic_clock, test_actor_id):
        admin = create_user(role=UserRole.ADMIN)
        lease = create_lease()
        invoice = billing_service.generate_invoice(lease.id, *JAN, Decimal("5000"), test_actor_id)
        billing_service.override_invoice_status(invoice.id, InvoiceStatus.PAID, "manual", admin.id)
        deterministic_clock.advance_days(10)

        assert [inv.id for inv in billing_service.overdue_invoices(lease.id)] == [invoice.id]


class TestBillableLeases:
    def test_order_and_period_overlap(self, billing_service, lease_service, create_property, create_unit, create_lease, test_actor_id):
        prop = create_property()
        b = create_unit(prop.id, "B1")
        a = create_unit(prop.id, "A1")
        lease_b = create_lease(property_id=prop.id, unit_id=b.id)
        lease_a = create_lease(property_id=prop.id, unit_id=a.id)
        ended = create_lease()
        lease_service.terminate_lease(ended.id, date(2024, 1, 15), test_actor_id)
        create_lease(lease_start=date(2024, 3, 1), lease_end=date(2024, 12, 31))

        leases = billing_service.billable_leases(*JAN)

        own = [t.id for t in leases if t.property_id == prop.id]
        assert own == [lease_a.id, lease_b.id]
        assert ended.id not in [t.id for t in leases]
        assert all(t.lease_start < JAN[1] for t in leases)
