"""
Payments Module.

Payments, their allocation to invoices, and mobile-money gateway
transactions.  Allocation order comes from the shared allocation engine.
"""

from rental_modules.payments.models import (
    GatewayTransaction,
    GatewayTransactionType,
    Payment,
    PaymentAllocation,
    PaymentStatus,
)

__all__ = [
    "GatewayTransaction",
    "GatewayTransactionType",
    "Payment",
    "PaymentAllocation",
    "PaymentStatus",
]
