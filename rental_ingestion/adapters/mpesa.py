"""
M-Pesa event adapter.

Maps one inbound gateway notification (a dict with camelCase or snake_case
keys) to a typed ``GatewayEvent``.  Every field problem is collected, so a
malformed event reports all of them at once.

Required keys: transactionId, transactionType, phoneNumber, amount, status,
transactionDate.  Optional: reference, description, responseCode,
responseDescription.

transactionDate accepts ISO 8601 or the gateway's compact
``YYYYMMDDHHMMSS`` form; naive timestamps are taken as UTC.  A zero amount
is well formed: failed notifications often carry one and are kept for
audit.  Whether a transaction may fund a payment is decided on ingestion.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from rental_kernel.domain.money import fits_money_scale
from rental_kernel.exceptions import MalformedGatewayEventError
from rental_modules.payments.models import GatewayTransactionType

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

_REQUIRED = (
    "transaction_id",
    "transaction_type",
    "phone_number",
    "amount",
    "status",
    "transaction_date",
)
_OPTIONAL = ("reference", "description", "response_code", "response_description")


@dataclass(frozen=True)
class GatewayEvent:
    """A validated gateway notification."""

    transaction_id: str
    transaction_type: GatewayTransactionType
    phone_number: str
    amount: Decimal
    status: str
    transaction_date: datetime
    reference: str | None = None
    description: str | None = None
    response_code: str | None = None
    response_description: str | None = None

    def payload_fields(self) -> dict[str, Any]:
        """Fields compared when the same transaction id arrives twice."""
        return {
            "transaction_type": self.transaction_type.value,
            "phone_number": self.phone_number,
            "amount": self.amount,
            "status": self.status,
            "reference": self.reference,
            "response_code": self.response_code,
        }


def _snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key.strip()).lower()


def _normalize_keys(raw: dict[str, Any]) -> dict[str, Any]:
    return {_snake(k): v for k, v in raw.items() if isinstance(k, str)}


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.isdigit() and len(text) == 14:
            parsed = datetime.strptime(text, "%Y%m%d%H%M%S")
        else:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MpesaEventAdapter:
    """Parse raw gateway notifications into ``GatewayEvent`` objects."""

    def parse(self, raw: Any) -> GatewayEvent:
        """
        Raises:
            MalformedGatewayEventError: listing every bad or missing field.
        """
        if not isinstance(raw, dict):
            raise MalformedGatewayEventError(
                None, [{"field": "<event>", "error": "event must be a mapping"}]
            )
        data = _normalize_keys(raw)
        errors: list[dict[str, str]] = []
        values: dict[str, Any] = {}

        for name in _REQUIRED:
            if _text(data.get(name)) is None:
                errors.append({"field": name, "error": "missing"})

        transaction_id = _text(data.get("transaction_id"))
        if transaction_id is not None:
            values["transaction_id"] = transaction_id

        type_text = _text(data.get("transaction_type"))
        if type_text is not None:
            try:
                values["transaction_type"] = GatewayTransactionType(type_text.lower())
            except ValueError:
                errors.append({"field": "transaction_type", "error": f"unknown type {type_text!r}"})

        phone = _text(data.get("phone_number"))
        if phone is not None:
            values["phone_number"] = phone

        amount_raw = data.get("amount")
        if _text(amount_raw) is not None:
            try:
                # str() first: a float payload must not leak binary noise.
                amount = Decimal(str(amount_raw).strip())
            except InvalidOperation:
                errors.append({"field": "amount", "error": "not a number"})
            else:
                if not fits_money_scale(amount):
                    errors.append({"field": "amount", "error": "not a finite amount with at most 9 decimal places"})
                elif amount < 0:
                    errors.append({"field": "amount", "error": "must not be negative"})
                else:
                    values["amount"] = amount

        status = _text(data.get("status"))
        if status is not None:
            values["status"] = status.lower()

        date_raw = data.get("transaction_date")
        if _text(date_raw) is not None:
            try:
                values["transaction_date"] = _parse_datetime(date_raw)
            except ValueError:
                errors.append({"field": "transaction_date", "error": "unparseable timestamp"})

        for name in _OPTIONAL:
            values[name] = _text(data.get(name))

        if errors:
            raise MalformedGatewayEventError(transaction_id, errors)
        return GatewayEvent(**values)
