"""
Billing Module.

Invoice generation, derived invoice status and the tenant ledger.
"""

from rental_modules.billing.models import OUTSTANDING_STATUSES, Invoice, InvoiceStatus
from rental_modules.billing.status import derive_invoice_status, is_past_due

__all__ = [
    "OUTSTANDING_STATUSES",
    "Invoice",
    "InvoiceStatus",
    "derive_invoice_status",
    "is_past_due",
]
