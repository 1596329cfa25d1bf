"""
Invoice status derivation (``rental_modules.billing.status``).

The single rule for what an invoice's status is, as a pure function of
its amount, the money applied to it and the evaluation date:

    applied >= amount                      -> paid
    0 < applied < amount                   -> partial
    applied == 0 and as_of > due_date      -> overdue
    otherwise                              -> pending

A partially paid invoice stays ``partial`` after its due date; "past due
with an unpaid balance" is answered by ``is_past_due``, which holds for
both ``partial`` and ``overdue`` invoices.
"""

from datetime import date
from decimal import Decimal

from rental_modules.billing.models import InvoiceStatus

_ZERO = Decimal("0")


def derive_invoice_status(
    amount: Decimal,
    applied: Decimal,
    due_date: date,
    as_of: date,
) -> InvoiceStatus:
    """Return the status an invoice must carry."""
    if applied >= amount:
        return InvoiceStatus.PAID
    if applied > _ZERO:
        return InvoiceStatus.PARTIAL
    if as_of > due_date:
        return InvoiceStatus.OVERDUE
    return InvoiceStatus.PENDING


def is_past_due(amount: Decimal, applied: Decimal, due_date: date, as_of: date) -> bool:
    """True if the invoice has an unpaid balance and its due date has passed."""
    return applied < amount and as_of > due_date
