"""Conversions between integer cents (storage) and Decimal currency units (fee math)"""

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def quantize(value: Decimal) -> Decimal:
    """Round a currency amount to cents, half-up"""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    return int(quantize(value) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)
