# tests/common/test_money.py
"""
Тесты денежных утилит.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from quickbite.common.exceptions import ValidationError
from quickbite.common.money import (
    from_minor_units,
    sanitize_amount,
    to_decimal,
    to_minor_units,
    validate_amount,
    validate_currency,
)


class TestToDecimal:
    """Тесты приведения к Decimal."""

    def test_float_has_no_binary_noise(self) -> None:
        assert to_decimal(0.1) == Decimal("0.1")

    def test_decimal_passthrough(self) -> None:
        value = Decimal("12.34")
        assert to_decimal(value) is value

    def test_garbage_rejected(self) -> None:
        with pytest.raises(ValidationError):
            to_decimal("abc")


class TestValidateAmount:
    """Тесты проверки суммы."""

    def test_rounds_half_up_to_cents(self) -> None:
        assert validate_amount("10.005") == Decimal("10.01")
        assert sanitize_amount(Decimal("2.344")) == Decimal("2.34")

    def test_zero_rejected_by_default(self) -> None:
        with pytest.raises(ValidationError):
            validate_amount(0)

    def test_zero_allowed_when_requested(self) -> None:
        assert validate_amount(0, allow_zero=True) == Decimal("0.00")

    def test_negative_rejected(self) -> None:
        with pytest.raises(ValidationError):
            validate_amount("-1.00")

    def test_infinity_rejected(self) -> None:
        with pytest.raises(ValidationError):
            validate_amount(Decimal("Infinity"))

    def test_jpy_has_no_fraction(self) -> None:
        assert validate_amount("1234.6", "JPY") == Decimal("1235")


class TestCurrency:
    """Тесты валют и минимальных единиц."""

    def test_case_insensitive(self) -> None:
        assert validate_currency("usd") == "USD"

    def test_unsupported_currency(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_currency("XYZ")
        assert "supported" in exc_info.value.details

    def test_minor_units(self) -> None:
        assert to_minor_units(Decimal("10.00"), "USD") == 1000
        assert to_minor_units(Decimal("500"), "JPY") == 500
        assert from_minor_units(1999, "EUR") == Decimal("19.99")
