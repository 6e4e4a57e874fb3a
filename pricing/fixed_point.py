"""Exact decimal -> fixed-point integer scaling for on-chain price arguments.

Prices are never multiplied as floats: the decimal text is reduced to
`precision` fractional digits, turned into an integer digit string and only
then widened by `10**(target_decimals - precision)` with Python integers.
"""

from __future__ import annotations

import decimal
from decimal import Decimal, InvalidOperation

from trading.errors import FixedPointOverflowError, PrecisionError, ScalingError
from trading.models import ScaledAmount

DEFAULT_PRECISION = 6
DEFAULT_TARGET_DECIMALS = 18
DEFAULT_CEILING_BITS = 256

MAX_UINT64 = (1 << 64) - 1
MAX_UINT128 = (1 << 128) - 1
MAX_UINT256 = (1 << 256) - 1

_ROUNDING_MODES: dict[str, str] = {
    "half_up": decimal.ROUND_HALF_UP,
    "half_even": decimal.ROUND_HALF_EVEN,
    "down": decimal.ROUND_DOWN,
    "truncate": decimal.ROUND_DOWN,
}


def rounding_mode(name: str | None) -> str | None:
    """Map a config name (`half_up`, `down`, `strict`, ...) to a `decimal` rounding constant."""
    key = str(name or "").strip().lower()
    if not key or key == "strict":
        return None
    if key not in _ROUNDING_MODES:
        raise ValueError(f"unknown rounding mode: {name!r}")
    return _ROUNDING_MODES[key]


def max_value(bit_width: int) -> int:
    return (1 << int(bit_width)) - 1


def exceeds(value: int, bit_width: int) -> bool:
    """True when `value` does not fit an unsigned integer of `bit_width` bits (the max itself fits)."""
    return int(value) > max_value(bit_width)


def parse_decimal(text: str | int | Decimal) -> Decimal:
    if isinstance(text, float):
        raise ScalingError("float input is not accepted; pass the decimal as text")
    try:
        value = Decimal(str(text).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ScalingError(f"not a decimal number: {text!r}") from exc
    if not value.is_finite():
        raise ScalingError(f"not a finite decimal: {text!r}")
    if value < 0:
        raise ScalingError(f"negative values cannot be scaled to an unsigned integer: {text!r}")
    return value


def fractional_digits(value: Decimal) -> int:
    """Number of significant fractional digits (trailing zeros ignored)."""
    if value == 0:
        return 0
    exponent = value.normalize().as_tuple().exponent
    return max(0, -int(exponent))


def _to_units(value: Decimal, precision: int, rounding: str | None) -> tuple[str, str]:
    """Return `(integer digit string, quantized decimal text)` for `value` at `precision` places."""
    quantum = Decimal(1).scaleb(-precision)
    digits = max(len(value.as_tuple().digits), value.adjusted() + 1) + precision + 2
    with decimal.localcontext() as ctx:
        ctx.prec = max(ctx.prec, digits)
        if rounding is None:
            if fractional_digits(value) > precision:
                raise PrecisionError(
                    f"{value} has {fractional_digits(value)} fractional digits, precision allows {precision}"
                )
            quantized = value.quantize(quantum)
        else:
            quantized = value.quantize(quantum, rounding=rounding)
    text = format(quantized, "f")
    whole, _, frac = text.partition(".")
    return (whole + frac.ljust(precision, "0")).lstrip("0") or "0", text


def scale(
    decimal_string: str | int | Decimal,
    precision: int = DEFAULT_PRECISION,
    target_decimals: int = DEFAULT_TARGET_DECIMALS,
    ceiling_bits: int = DEFAULT_CEILING_BITS,
    rounding: str | None = None,
) -> ScaledAmount:
    precision = int(precision)
    target_decimals = int(target_decimals)
    if precision < 0:
        raise ScalingError(f"precision must be >= 0, got {precision}")
    if target_decimals < precision:
        raise ScalingError(f"target_decimals ({target_decimals}) must be >= precision ({precision})")

    parsed = parse_decimal(decimal_string)
    units, quantized = _to_units(parsed, precision, rounding)
    value = int(units) * (10 ** (target_decimals - precision))
    if exceeds(value, ceiling_bits):
        raise FixedPointOverflowError(value, ceiling_bits)
    return ScaledAmount(value=value, scale=target_decimals, source_decimal=quantized)


def from_raw(value: int, decimals: int) -> ScaledAmount:
    """Wrap an on-chain integer (allowance, pool price) as a ScaledAmount."""
    return ScaledAmount(value=int(value), scale=int(decimals), source_decimal=render(value, decimals))


def render(value: int, decimals: int) -> str:
    """Format a fixed-point integer as decimal text, keeping at least one fractional digit."""
    value = int(value)
    decimals = int(decimals)
    sign = "-" if value < 0 else ""
    digits = str(abs(value))
    if decimals <= 0:
        return f"{sign}{digits}.0"
    digits = digits.rjust(decimals + 1, "0")
    whole, frac = digits[:-decimals], digits[-decimals:]
    frac = frac.rstrip("0") or "0"
    return f"{sign}{whole}.{frac}"
