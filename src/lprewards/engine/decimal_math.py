"""Fixed-scale decimal arithmetic for the reward formula.

All formula math routes through this module. Addition, subtraction and
multiplication are exact; division and power round half-up to ``SCALE``
fractional digits. No binary floating point value ever enters a result.

Division by zero is never propagated as NaN/Infinity: ``div_strict`` raises
``NonFiniteResult`` and ``safe_div`` substitutes zero.
"""

from decimal import (
    ROUND_HALF_UP,
    Context,
    Decimal,
    DivisionByZero,
    InvalidOperation,
    Overflow,
)
from typing import Any

from .errors import NonFiniteResult

SCALE = 10
ZERO = Decimal(0)
ONE = Decimal(1)

# Wide enough that exact operations on game-sized values never round.
_CONTEXT = Context(
    prec=100,
    rounding=ROUND_HALF_UP,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)


def to_decimal(value: Any) -> Decimal:
    """
    Convert an input value to Decimal.

    Strings and ints convert exactly; floats go through their shortest repr.

    Raises:
        ValueError: If the value is unparsable or not finite
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError(f"Not a decimal value: {value!r}")
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Not a decimal value: {value!r}") from None

    if not result.is_finite():
        raise ValueError(f"Non-finite decimal value: {value!r}")
    return result


def quantize(value: Decimal, places: int = SCALE) -> Decimal:
    """Round half-up to a fixed number of fractional digits."""
    return value.quantize(ONE.scaleb(-places), rounding=ROUND_HALF_UP, context=_CONTEXT)


def add(*values: Decimal) -> Decimal:
    """Exact sum."""
    total = ZERO
    for value in values:
        total = _CONTEXT.add(total, value)
    return total


def sub(a: Decimal, b: Decimal) -> Decimal:
    """Exact difference."""
    return _CONTEXT.subtract(a, b)


def mul(a: Decimal, b: Decimal) -> Decimal:
    """Exact product."""
    return _CONTEXT.multiply(a, b)


def div_strict(a: Decimal, b: Decimal, places: int = SCALE) -> Decimal:
    """
    Divide and round to ``places`` fractional digits.

    Raises:
        NonFiniteResult: On division by zero or a non-finite result
    """
    if b.is_zero():
        raise NonFiniteResult(f"Division by zero: {a} / {b}")
    try:
        result = _CONTEXT.divide(a, b)
        if not result.is_finite():
            raise NonFiniteResult(f"Non-finite division: {a} / {b}")
        return quantize(result, places)
    except (InvalidOperation, DivisionByZero, Overflow) as exc:
        raise NonFiniteResult(f"Non-finite division: {a} / {b}") from exc


def safe_div(a: Decimal, b: Decimal, places: int = SCALE) -> Decimal:
    """Divide like ``div_strict``, substituting zero for a non-finite result."""
    try:
        return div_strict(a, b, places)
    except NonFiniteResult:
        return ZERO


def power(base: Decimal, exponent: int, places: int = SCALE) -> Decimal:
    """Raise to a non-negative integer power, rounded to ``places`` fractional digits."""
    if exponent < 0:
        raise ValueError("Only non-negative integer exponents are supported")
    try:
        result = _CONTEXT.power(base, exponent)
    except (InvalidOperation, Overflow) as exc:
        raise NonFiniteResult(f"Non-finite power: {base} ** {exponent}") from exc
    return quantize(result, places)


def dmin(*values: Decimal) -> Decimal:
    """Smallest of the given values."""
    return min(values)


def compare(a: Decimal, b: Decimal) -> int:
    """Return -1, 0 or 1 as ``a`` is less than, equal to or greater than ``b``."""
    return int(a.compare(b))


def floor_zero(value: Decimal) -> Decimal:
    """Clamp negative values to zero."""
    return value if value > ZERO else ZERO
