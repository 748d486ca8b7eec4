# hedge_engine/utils/fixed_point.py

from __future__ import annotations
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Union

from ..domain.errors import DivisionByZero, Overflow, ScaleMismatch

# Every ScaledAmount is an int carrying 8 decimal places (1 BTC = 10^8 sats).
SCALE = 10 ** 8
ONE = SCALE
BASIS_POINTS = 10_000

# Representable range for amounts and for every intermediate product.
MAX_UINT = 2 ** 128 - 1

ScaledAmount = int
DecimalLike = Union[Decimal, int, float, str]


def _check_operand(name: str, x: int) -> None:
    if x < 0:
        raise Overflow(f"{name} underflows the unsigned range: {x}")
    if x > MAX_UINT:
        raise Overflow(f"{name} exceeds the representable range: {x}")


def _checked_product(a: int, b: int) -> int:
    _check_operand("a", a)
    _check_operand("b", b)
    product = a * b
    if product > MAX_UINT:
        raise Overflow(f"intermediate product {a} * {b} exceeds the representable range")
    return product


def mul_down(a: ScaledAmount, b: ScaledAmount) -> ScaledAmount:
    """floor(a * b / SCALE)."""
    return _checked_product(a, b) // SCALE


def div_down(a: ScaledAmount, b: ScaledAmount) -> ScaledAmount:
    """floor(a * SCALE / b). Raises DivisionByZero when b == 0."""
    if b == 0:
        raise DivisionByZero(f"cannot divide {a} by zero")
    return _checked_product(a, SCALE) // b


def percentage(value: ScaledAmount, bps: int) -> ScaledAmount:
    """
    Basis-point share of a scaled value: floor(value * bps / 10_000).
      percentage(200 * SCALE, 1000) -> 20 * SCALE   (10%)
    """
    return _checked_product(value, bps) // BASIS_POINTS


def to_scaled(x: DecimalLike) -> ScaledAmount:
    """
    Convert a decimal quantity into a ScaledAmount, truncating beyond
    8 places. Floats go through str() to avoid binary artifacts.
    """
    try:
        d = Decimal(str(x)) if isinstance(x, float) else Decimal(x)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ScaleMismatch(f"not a decimal quantity: {x!r}") from e
    if not d.is_finite() or d < 0:
        raise ScaleMismatch(f"cannot scale non-finite or negative value {x!r}")
    scaled = int((d * SCALE).to_integral_value(rounding=ROUND_DOWN))
    _check_operand("value", scaled)
    return scaled


def from_scaled(amount: ScaledAmount) -> Decimal:
    return Decimal(amount) / Decimal(SCALE)


def ensure_scaled(name: str, value) -> ScaledAmount:
    """
    Accept only a non-negative int inside the representable range.
    Floats, Decimals and bools are unscaled (or mis-scaled) input.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ScaleMismatch(f"{name} must be an integer ScaledAmount, got {type(value).__name__}")
    if value < 0 or value > MAX_UINT:
        raise ScaleMismatch(f"{name} is outside the ScaledAmount range: {value}")
    return value
