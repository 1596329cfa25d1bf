"""
Money amount checks (``rental_kernel.domain.money``).

Amounts are stored as ``Numeric(38, 9)``.  An amount with more fractional
digits would be rounded by the store, so the row would disagree with the
value the caller was handed back and allocation would run on a number that
is never persisted.  Such amounts are rejected at the boundary instead.

Pure functions, zero I/O.
"""

from decimal import Decimal

from rental_kernel.exceptions import NonPositiveAmountError, ValidationError

MONEY_DECIMAL_PLACES = 9


def fits_money_scale(amount: Decimal) -> bool:
    """True when ``amount`` is finite and has at most 9 fractional digits."""
    if not amount.is_finite():
        return False
    return amount.as_tuple().exponent >= -MONEY_DECIMAL_PLACES


def require_amount(field: str, amount: Decimal, allow_zero: bool = False) -> Decimal:
    """Return ``amount`` or raise if it is not a storable money value.

    Raises:
        ValidationError: not finite, or more than 9 fractional digits.
        NonPositiveAmountError: ``amount <= 0``.
        ValidationError: ``amount < 0`` when allow_zero is set.
    """
    if not fits_money_scale(amount):
        raise ValidationError(
            field, f"must be finite with at most {MONEY_DECIMAL_PLACES} decimal places, got {amount}"
        )
    if allow_zero:
        if amount < 0:
            raise ValidationError(field, "must not be negative")
    elif amount <= 0:
        raise NonPositiveAmountError(field, str(amount))
    return amount
