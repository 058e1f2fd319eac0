"""Tests for exact decimal money and rate arithmetic."""

from decimal import Decimal

import pytest

from vehicle_tax import decimal_math as dm
from vehicle_tax.exceptions import InvalidTaxCalculationError


# ── Parsing ──────────────────────────────────────────────────────────


def test_parses_decimal_strings():
    assert dm.to_decimal("35000.00") == Decimal("35000.00")
    assert dm.to_decimal(" 0.0725 ") == Decimal("0.0725")
    assert dm.to_decimal(12) == Decimal(12)


def test_rejects_floats():
    with pytest.raises(InvalidTaxCalculationError) as exc:
        dm.to_decimal(0.1, "vehicle_price")
    assert exc.value.field == "vehicle_price"


@pytest.mark.parametrize(
    "literal", ["1e5", "NaN", "Infinity", "12.", ".5", "12,000", "abc", "", "\u0661\u0662\u0663", "\uff15"]
)
def test_rejects_malformed_literals(literal):
    with pytest.raises(InvalidTaxCalculationError):
        dm.to_decimal(literal)


def test_rejects_negative_unless_signed():
    with pytest.raises(InvalidTaxCalculationError, match="cannot be negative"):
        dm.to_decimal("-1.00", "trade_in_value")
    assert dm.to_decimal("-1.00", signed=True) == Decimal("-1.00")


def test_rejects_oversized_magnitude():
    with pytest.raises(InvalidTaxCalculationError) as exc:
        dm.to_decimal("1" + "0" * 40, "vehicle_price")
    assert exc.value.field == "vehicle_price"
    with pytest.raises(InvalidTaxCalculationError):
        dm.to_decimal(Decimal("1E+20"), "cap")
    with pytest.raises(InvalidTaxCalculationError):
        dm.add("9" * 40, "1")


def test_accepts_largest_supported_magnitude():
    assert dm.to_money_string("9" * dm.MAX_INTEGER_DIGITS + ".99") == "9" * dm.MAX_INTEGER_DIGITS + ".99"


def test_validate_non_negative_returns_canonical_string():
    assert dm.validate_non_negative("5", "doc_fee") == "5.00"
    with pytest.raises(InvalidTaxCalculationError):
        dm.validate_non_negative("-5", "doc_fee")


# ── Formatting ───────────────────────────────────────────────────────


def test_money_string_rounds_half_up():
    assert dm.to_money_string("1.005") == "1.01"
    assert dm.to_money_string("1.004") == "1.00"
    assert dm.to_money_string("7") == "7.00"


def test_rate_string_keeps_four_places_minimum():
    assert dm.to_rate_string("0.07") == "0.0700"
    assert dm.to_rate_string("0.00375") == "0.00375"


def test_percent_string():
    assert dm.to_percent_string("0.0725") == "7.25%"
    assert dm.to_percent_string("0.0825") == "8.25%"
    assert dm.to_percent_string("0.00375") == "0.375%"


# ── Arithmetic ───────────────────────────────────────────────────────


def test_add_is_exact():
    assert dm.add("0.10", "0.20") == "0.30"
    assert dm.add("0.0725", "0.0100") == "0.0825"
    assert dm.add() == "0.00"


def test_sum_values_over_iterable():
    assert dm.sum_values(["0.01"] * 100) == "1.00"


def test_subtract():
    assert dm.subtract("35000.00", "10000.00") == "25000.00"
    assert dm.subtract("100.00", "250.00") == "-150.00"


def test_subtract_floor_at_zero():
    assert dm.subtract("100.00", "250.00", floor_at_zero=True) == "0.00"


def test_multiply_keeps_intermediate_precision():
    assert dm.multiply("1.23", "0.0825") == "0.101475"


def test_divide():
    assert dm.divide("1", "3") == "0.3333333333"


def test_divide_by_zero_raises():
    with pytest.raises(InvalidTaxCalculationError) as exc:
        dm.divide("10.00", "0")
    assert exc.value.field == "divisor"


def test_calculate_tax():
    assert dm.calculate_tax("1000.00", "0.0825") == "82.50"
    assert dm.calculate_tax("25000.00", "0.0735") == "1837.50"


def test_calculate_tax_rounds_once_half_up():
    # 10.05 * 0.5 = 5.025
    assert dm.calculate_tax("10.05", "0.5") == "5.03"


def test_calculate_tax_rejects_rate_above_one():
    with pytest.raises(InvalidTaxCalculationError):
        dm.calculate_tax("100.00", "8.25")


def test_apply_cap():
    assert dm.apply_cap("12000.00", "10000.00") == "10000.00"
    assert dm.apply_cap("500.00", "10000.00") == "500.00"


def test_apply_percent():
    assert dm.apply_percent("10000.00", "0.50") == "5000.00"
    with pytest.raises(InvalidTaxCalculationError):
        dm.apply_percent("10000.00", "50")


# ── Distribution ─────────────────────────────────────────────────────


def test_distribute_sums_to_rounded_total():
    rates = ["0.0625", "0.0100", "0.0100", "0.0000"]
    parts = dm.distribute("33.33", rates)
    # Naive rounding gives 2.08 + 0.33 + 0.33 = 2.74; total rounds to 2.75
    assert parts == ["2.09", "0.33", "0.33", "0.00"]
    assert dm.add(*parts) == dm.calculate_tax("33.33", "0.0825")


def test_distribute_residual_goes_to_largest_rate():
    parts = dm.distribute("0.10", ["0.0500", "0.0500", "0.0500"])
    # each 0.005 -> 0.01, total 0.015 -> 0.02, residual -0.01 to the first
    assert parts == ["0.00", "0.01", "0.01"]


@pytest.mark.parametrize("base", ["0.01", "19.99", "1234.57", "35000.00", "99999.99"])
def test_distribute_never_drifts(base):
    rates = ["0.0725", "0.0100", "0.0000", "0.0125"]
    assert dm.add(*dm.distribute(base, rates)) == dm.calculate_tax(base, dm.add(*rates))


def test_distribute_empty():
    assert dm.distribute("100.00", []) == []


# ── Comparison ───────────────────────────────────────────────────────


def test_comparisons():
    assert dm.compare("1.0", "1.00") == 0
    assert dm.is_equal("0.30", "0.3")
    assert dm.is_greater_than("0.16", "0.15")
    assert dm.is_less_than("-1", "0")
    assert dm.is_zero("0.0000")
    assert dm.is_negative("-0.01")


def test_within_tolerance():
    assert dm.within_tolerance("100.00", "100.01", "0.01")
    assert not dm.within_tolerance("100.00", "100.02", "0.01")


def test_min_max():
    assert dm.min_value("3", "1.5", "2") == "1.50"
    assert dm.max_value("3", "1.5", "2") == "3.00"
    assert dm.min_value() == "0.00"
