"""
Exact decimal arithmetic for money and rates.

Every amount the engine handles passes through this module. Values are
exchanged as canonical decimal-string literals (``"1837.50"``, ``"0.0725"``)
and computed with :class:`decimal.Decimal` under a private context, so no
binary floating-point value ever touches a monetary figure.

Rounding policy:
    - Final monetary outputs are rounded half-up to cents, once.
    - Intermediate products and quotients keep up to
      ``INTERMEDIATE_PLACES`` fractional digits.
    - Addition and subtraction are exact.

The module knows nothing about taxes; it is a plain arithmetic utility.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation, localcontext
from typing import Iterable, Sequence, Union

from vehicle_tax.exceptions import InvalidTaxCalculationError

Numeric = Union[str, int, Decimal]

MONEY_PLACES = 2
RATE_PLACES = 4
INTERMEDIATE_PLACES = 10
# Largest accepted magnitude is below 10 ** MAX_INTEGER_DIGITS
MAX_INTEGER_DIGITS = 15

MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_PLACES)
ZERO = "0.00"

_CONTEXT = Context(prec=34, rounding=ROUND_HALF_UP)
_UNSIGNED = re.compile(r"^[0-9]+(\.[0-9]+)?$")
_SIGNED = re.compile(r"^-?[0-9]+(\.[0-9]+)?$")


# ---------------------------------------------------------------------------
# Parsing and formatting
# ---------------------------------------------------------------------------


def to_decimal(value: Numeric, field: str = "value", *, signed: bool = False) -> Decimal:
    """
    Parse a decimal literal into a Decimal.

    Accepts ``str``, ``int`` and ``Decimal``. Floats are rejected outright.
    Unless ``signed`` is set, negative values are rejected too, as is any
    magnitude of ``10 ** MAX_INTEGER_DIGITS`` or more. Errors name the
    offending ``field``.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidTaxCalculationError(
            f"{field} must be a decimal string, not {type(value).__name__}",
            field=field,
        )
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidTaxCalculationError(f"{field} is not a finite number", field=field)
        d = value
    elif isinstance(value, int):
        d = Decimal(value)
    elif isinstance(value, str):
        text = value.strip()
        pattern = _SIGNED if signed else _UNSIGNED
        if not pattern.match(text):
            if _SIGNED.match(text):
                raise InvalidTaxCalculationError(f"{field} cannot be negative", field=field)
            raise InvalidTaxCalculationError(
                f"{field} is not a valid decimal literal: {value!r}", field=field
            )
        d = Decimal(text)
    else:
        raise InvalidTaxCalculationError(
            f"{field} must be a decimal string, got {type(value).__name__}",
            field=field,
        )

    if d < 0 and not signed:
        raise InvalidTaxCalculationError(f"{field} cannot be negative", field=field)
    if d != 0 and d.adjusted() >= MAX_INTEGER_DIGITS:
        raise InvalidTaxCalculationError(
            f"{field} exceeds the supported magnitude ({MAX_INTEGER_DIGITS} integer digits)",
            field=field,
        )
    return d


def _scale(d: Decimal) -> int:
    exponent = d.as_tuple().exponent
    return -exponent if isinstance(exponent, int) and exponent < 0 else 0


def _canonical(d: Decimal) -> str:
    """Render with at least cent precision and at most INTERMEDIATE_PLACES."""
    with localcontext(_CONTEXT):
        scale = _scale(d)
        try:
            if scale < MONEY_PLACES:
                d = d.quantize(MONEY_QUANTUM)
            elif scale > INTERMEDIATE_PLACES:
                d = d.quantize(Decimal(1).scaleb(-INTERMEDIATE_PLACES))
        except InvalidOperation as e:
            raise InvalidTaxCalculationError("Result exceeds the supported precision") from e
        if d == 0:
            d = abs(d)
        return format(d, "f")


def _round_money(d: Decimal) -> Decimal:
    with localcontext(_CONTEXT):
        try:
            rounded = d.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
        except InvalidOperation as e:
            raise InvalidTaxCalculationError("Amount exceeds the supported precision") from e
        return abs(rounded) if rounded == 0 else rounded


def to_money_string(value: Numeric) -> str:
    """Round to cents (half-up) and render, e.g. ``"1837.50"``."""
    return format(_round_money(to_decimal(value, signed=True)), "f")


def to_rate_string(value: Numeric) -> str:
    """Render a rate with at least RATE_PLACES digits, e.g. ``"0.0700"``."""
    d = to_decimal(value, "rate", signed=True)
    places = min(max(RATE_PLACES, _scale(d)), INTERMEDIATE_PLACES)
    with localcontext(_CONTEXT):
        return format(d.quantize(Decimal(1).scaleb(-places)), "f")


def to_percent_string(value: Numeric) -> str:
    """Render a rate fraction as a percentage: ``"0.0725"`` -> ``"7.25%"``."""
    with localcontext(_CONTEXT):
        pct = to_decimal(value, "rate", signed=True) * 100
        places = min(max(2, _scale(pct.normalize())), RATE_PLACES)
        return f"{pct.quantize(Decimal(1).scaleb(-places)):f}%"


# ---------------------------------------------------------------------------
# Arithmetic
# ---------------------------------------------------------------------------


def add(*values: Numeric) -> str:
    """Exact sum. ``add("0.10", "0.20") == "0.30"``."""
    return sum_values(values)


def sum_values(values: Iterable[Numeric]) -> str:
    with localcontext(_CONTEXT):
        total = Decimal(0)
        for i, v in enumerate(values):
            total += to_decimal(v, f"value[{i}]")
        return _canonical(total)


def subtract(minuend: Numeric, subtrahend: Numeric, *, floor_at_zero: bool = False) -> str:
    """
    Exact difference of two non-negative values.

    The result may be negative unless ``floor_at_zero`` is set, in which case
    it is clamped at zero.
    """
    with localcontext(_CONTEXT):
        result = to_decimal(minuend, "minuend") - to_decimal(subtrahend, "subtrahend")
        if floor_at_zero and result < 0:
            result = Decimal(0)
        return _canonical(result)


def multiply(multiplicand: Numeric, multiplier: Numeric) -> str:
    """Product, kept at intermediate precision (not rounded to cents)."""
    with localcontext(_CONTEXT):
        return _canonical(
            to_decimal(multiplicand, "multiplicand") * to_decimal(multiplier, "multiplier")
        )


def divide(dividend: Numeric, divisor: Numeric) -> str:
    """Quotient at intermediate precision."""
    d = to_decimal(divisor, "divisor")
    if d == 0:
        raise InvalidTaxCalculationError("Division by zero", field="divisor")
    with localcontext(_CONTEXT):
        quotient = to_decimal(dividend, "dividend") / d
        return _canonical(quotient.quantize(Decimal(1).scaleb(-INTERMEDIATE_PLACES)))


def calculate_tax(base: Numeric, rate: Numeric) -> str:
    """
    Tax on ``base`` at ``rate``, rounded half-up to cents.

    ``calculate_tax("1000.00", "0.0825") == "82.50"``
    """
    b = to_decimal(base, "taxable base")
    r = to_decimal(rate, "tax rate")
    if r > 1:
        raise InvalidTaxCalculationError("Tax rate must be between 0 and 1", field="tax rate")
    with localcontext(_CONTEXT):
        return format(_round_money(b * r), "f")


def apply_cap(value: Numeric, cap: Numeric) -> str:
    """``min(value, cap)`` as a money string."""
    v = to_decimal(value, "value")
    c = to_decimal(cap, "cap")
    return format(_round_money(min(v, c)), "f")


def apply_percent(value: Numeric, percent: Numeric) -> str:
    """``value * percent`` rounded to cents; ``percent`` is a fraction."""
    p = to_decimal(percent, "percent")
    if p > 1:
        raise InvalidTaxCalculationError("Percent must be a fraction between 0 and 1", field="percent")
    with localcontext(_CONTEXT):
        return format(_round_money(to_decimal(value, "value") * p), "f")


def distribute(base: Numeric, factors: Sequence[Numeric]) -> list[str]:
    """
    Split ``base * sum(factors)`` into per-factor cent amounts.

    Each part is ``base * factor`` rounded to cents. Any residual between the
    sum of the rounded parts and the rounded total is assigned to the part
    with the largest factor (first one wins ties), so the parts always sum
    exactly to the rounded total.
    """
    b = to_decimal(base, "base")
    fs = [to_decimal(f, f"factor[{i}]") for i, f in enumerate(factors)]
    if not fs:
        return []
    with localcontext(_CONTEXT):
        total = _round_money(b * sum(fs, Decimal(0)))
        parts = [_round_money(b * f) for f in fs]
        residual = total - sum(parts, Decimal(0))
        if residual != 0:
            largest = max(range(len(fs)), key=lambda i: (fs[i], -i))
            parts[largest] += residual
        return [format(p, "f") for p in parts]


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------


def compare(a: Numeric, b: Numeric) -> int:
    x = to_decimal(a, "a", signed=True)
    y = to_decimal(b, "b", signed=True)
    return (x > y) - (x < y)


def is_equal(a: Numeric, b: Numeric) -> bool:
    return compare(a, b) == 0


def is_greater_than(a: Numeric, b: Numeric) -> bool:
    return compare(a, b) > 0


def is_less_than(a: Numeric, b: Numeric) -> bool:
    return compare(a, b) < 0


def is_zero(value: Numeric) -> bool:
    return to_decimal(value, signed=True) == 0


def is_negative(value: Numeric) -> bool:
    return to_decimal(value, signed=True) < 0


def within_tolerance(a: Numeric, b: Numeric, tolerance: Numeric) -> bool:
    """True when ``|a - b| <= tolerance``."""
    with localcontext(_CONTEXT):
        diff = to_decimal(a, "a", signed=True) - to_decimal(b, "b", signed=True)
        return abs(diff) <= to_decimal(tolerance, "tolerance")


def min_value(*values: Numeric) -> str:
    if not values:
        return ZERO
    return _canonical(min(to_decimal(v, f"value[{i}]") for i, v in enumerate(values)))


def max_value(*values: Numeric) -> str:
    if not values:
        return ZERO
    return _canonical(max(to_decimal(v, f"value[{i}]") for i, v in enumerate(values)))


def validate_non_negative(value: Numeric, field: str) -> str:
    """Check ``value`` is a non-negative literal and return it canonicalised."""
    return _canonical(to_decimal(value, field))
