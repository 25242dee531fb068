# quickbite/common/money.py
"""
Денежные утилиты.
Все суммы — Decimal, округление до точности валюты (ROUND_HALF_UP).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from quickbite.common.exceptions import ValidationError

# Валюты без дробной части (минимальная единица = 1)
ZERO_DECIMAL_CURRENCIES = frozenset({"JPY"})

SUPPORTED_CURRENCIES = ("USD", "EUR", "GBP", "JPY")

ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Приводит значение к Decimal. float проходит через str, чтобы не тащить двоичный шум."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError(f"Invalid amount: {value!r}") from e


def currency_exponent(currency: str) -> int:
    """Количество знаков после запятой для валюты."""
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2


def sanitize_amount(amount: Any, currency: str = "USD") -> Decimal:
    """Округляет сумму до точности валюты."""
    quantum = Decimal(1).scaleb(-currency_exponent(currency))
    return to_decimal(amount).quantize(quantum, rounding=ROUND_HALF_UP)


def validate_amount(amount: Any, currency: str = "USD", *, allow_zero: bool = False) -> Decimal:
    """
    Проверяет сумму и возвращает её в точности валюты.

    Raises:
        ValidationError: сумма не число, бесконечна, отрицательна
            или равна нулю (если allow_zero=False)
    """
    value = to_decimal(amount)
    if not value.is_finite():
        raise ValidationError("Amount must be a finite number")
    value = sanitize_amount(value, currency)
    if value < ZERO or (value == ZERO and not allow_zero):
        raise ValidationError("Amount must be greater than 0", {"amount": str(amount)})
    return value


def validate_currency(currency: str | None, supported: tuple[str, ...] | list[str] = SUPPORTED_CURRENCIES) -> str:
    """Нормализует код валюты и проверяет, что он поддерживается."""
    code = (currency or "").strip().upper()
    if code not in {c.upper() for c in supported}:
        raise ValidationError(
            f"Unsupported currency: {currency}",
            {"supported": list(supported)},
        )
    return code


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Сумма в минимальных единицах валюты (центы) для провайдера."""
    return int(sanitize_amount(amount, currency).scaleb(currency_exponent(currency)))


def from_minor_units(value: int, currency: str) -> Decimal:
    """Обратное преобразование из минимальных единиц."""
    return sanitize_amount(Decimal(value).scaleb(-currency_exponent(currency)), currency)
