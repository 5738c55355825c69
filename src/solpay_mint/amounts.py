"""Decimal amount helpers shared by the codec, builders and validators.

Amounts travel as ``Decimal`` end to end. The builder and the validator
both go through :func:`to_base_units`, so an amount that builds to N base
units is validated against exactly N.
"""
from __future__ import annotations

import decimal
from decimal import ROUND_FLOOR, Decimal
from typing import Union

from .exceptions import InvalidAmountError

AmountLike = Union[Decimal, int, str]

# Enough digits for u64 base units at any realistic decimals
_CONTEXT = decimal.Context(prec=80, rounding=ROUND_FLOOR)


def as_decimal(amount: AmountLike) -> Decimal:
    """Coerce an amount to Decimal. Floats are refused to avoid binary rounding."""
    if isinstance(amount, float):
        raise InvalidAmountError("float amounts are ambiguous, use Decimal or str", amount=amount)
    try:
        value = Decimal(amount)
    except (decimal.InvalidOperation, TypeError, ValueError) as e:
        raise InvalidAmountError(f"amount invalid: {amount!r}", amount=amount) from e
    if not value.is_finite():
        raise InvalidAmountError("amount must be finite", amount=amount)
    return value


def decimal_places(amount: Decimal) -> int:
    """Number of significant fractional digits (trailing zeros ignored)."""
    exponent = amount.normalize(_CONTEXT).as_tuple().exponent
    if not isinstance(exponent, int) or exponent >= 0:
        return 0
    return -exponent


def format_amount(amount: Decimal) -> str:
    """Render with exactly the fractional digits present, no exponent."""
    normalized = amount.normalize(_CONTEXT)
    if normalized == 0:
        return "0"
    return format(normalized, "f")


def to_base_units(amount: AmountLike, decimals: int) -> int:
    """Convert a decimal amount to integer base units, floored.

    Raises:
        InvalidAmountError: negative amount or more fractional digits than
            ``decimals``.
    """
    value = as_decimal(amount)
    if value < 0:
        raise InvalidAmountError("amount must not be negative", amount=value)
    if decimal_places(value) > decimals:
        raise InvalidAmountError(
            f"amount decimals invalid: {format_amount(value)} has more than {decimals} decimals",
            amount=value,
            decimals=decimals,
        )
    scaled = value.scaleb(decimals, _CONTEXT)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR, context=_CONTEXT))


def from_base_units(units: int, decimals: int) -> Decimal:
    """Inverse of :func:`to_base_units`."""
    return Decimal(units).scaleb(-decimals, _CONTEXT)
