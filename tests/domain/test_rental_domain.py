"""Tests for the pure kernel domain helpers: MSISDN normalization, money amounts and clocks."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from rental_kernel.domain.clock import DeterministicClock, SystemClock
from rental_kernel.domain.money import fits_money_scale, require_amount
from rental_kernel.domain.msisdn import normalize_msisdn
from rental_kernel.exceptions import NonPositiveAmountError, ValidationError


class TestNormalizeMsisdn:
    @pytest.mark.parametrize("phone", [
        "0712345678",
        "712345678",
        "254712345678",
        "+254712345678",
        "+254 712 345 678",
        "0712-345-678",
        "00254712345678",
    ])
    def test_local_and_international_forms_agree(self, phone):
        assert normalize_msisdn(phone) == "254712345678"

    def test_other_country_code(self):
        assert normalize_msisdn("0712345678", country_code="255") == "255712345678"

    def test_foreign_number_kept_as_digits(self):
        assert normalize_msisdn("+44 20 7946 0958") == "442079460958"

    @pytest.mark.parametrize("phone", [None, "", "  ", "n/a"])
    def test_empty_values(self, phone):
        assert normalize_msisdn(phone) is None


class TestMoneyAmounts:
    @pytest.mark.parametrize("amount", ["5000", "0.000000001", "1E+3", "4999.990000000"])
    def test_storable_amounts(self, amount):
        assert fits_money_scale(Decimal(amount))
        assert require_amount("amount", Decimal(amount)) == Decimal(amount)

    @pytest.mark.parametrize("amount", ["4999.9999999999", "0.0000000001", "NaN", "Infinity"])
    def test_unstorable_amounts(self, amount):
        assert not fits_money_scale(Decimal(amount))
        with pytest.raises(ValidationError, match="decimal places"):
            require_amount("amount", Decimal(amount))

    def test_zero_and_negative(self):
        with pytest.raises(NonPositiveAmountError):
            require_amount("amount", Decimal("0"))
        assert require_amount("deposit", Decimal("0"), allow_zero=True) == Decimal("0")
        with pytest.raises(ValidationError, match="negative"):
            require_amount("deposit", Decimal("-1"), allow_zero=True)


class TestClocks:
    def test_deterministic_clock_is_stable(self):
        clock = DeterministicClock()

        assert clock.now() == clock.now() == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert clock.today() == date(2024, 1, 1)

    def test_advance_and_set(self):
        clock = DeterministicClock()

        clock.advance_days(31)
        assert clock.today() == date(2024, 2, 1)
        assert clock.tick() == datetime(2024, 2, 1, 12, 0, 1, tzinfo=timezone.utc)

        clock.set_time(datetime(2025, 6, 30, 23, 59, tzinfo=timezone.utc))
        assert clock.today() == date(2025, 6, 30)

    def test_system_clock_is_utc(self):
        assert SystemClock().now().tzinfo == timezone.utc
