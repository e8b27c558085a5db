# Overview: Decimal helpers for monetary amounts and tax rates.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
RATE_PLACES = Decimal("0.0001")
ZERO = Decimal("0.00")


def to_decimal(value, field: str = "amount") -> Decimal:
    """
    Coerce input to Decimal without passing through binary float.

    Floats are converted through their shortest repr ("0.1" not 0.1000000000000000055).
    """
    if value is None:
        raise ValueError(f"{field} is required")
    if isinstance(value, bool):
        raise ValueError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"{field} must be a number")
    else:
        raise ValueError(f"{field} must be a number")

    if not result.is_finite():
        raise ValueError(f"{field} must be a finite number")
    return result


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_rate(value: Decimal) -> Decimal:
    return value.quantize(RATE_PLACES, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate_percent: Decimal) -> Decimal:
    """Tax amount for a percentage rate, rounded half-up to the cent."""
    return quantize_money(amount * rate_percent / Decimal(100))


def money_str(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return str(quantize_money(Decimal(value)))


def rate_str(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return str(quantize_rate(Decimal(value)))
