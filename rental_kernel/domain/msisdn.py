"""
MSISDN normalization (``rental_kernel.domain.msisdn``).

Mobile-money gateways report the payer as an international MSISDN
(``254712345678``) while people type local forms (``0712 345 678``,
``+254-712-345678``).  Both the user directory and gateway ingestion reduce
numbers to the same canonical digits so a payer can be matched to a lease.

Pure function, zero I/O.
"""

import re

_NON_DIGITS = re.compile(r"\D")

# National significant number length for the default market (Kenya).
_NSN_LENGTH = 9


def normalize_msisdn(phone: str | None, country_code: str = "254") -> str | None:
    """Return ``phone`` as international digits without ``+``, or None.

    ``0712345678``, ``712345678``, ``+254 712 345678`` and ``254712345678``
    all normalize to ``254712345678``.  Numbers that already carry another
    country code are returned as bare digits.
    """
    if phone is None:
        return None
    digits = _NON_DIGITS.sub("", phone)
    if not digits:
        return None
    if digits.startswith("00"):
        digits = digits[2:]
    if digits.startswith(country_code) and len(digits) == len(country_code) + _NSN_LENGTH:
        return digits
    if digits.startswith("0") and len(digits) == _NSN_LENGTH + 1:
        return country_code + digits[1:]
    if len(digits) == _NSN_LENGTH:
        return country_code + digits
    return digits
