"""Tests for special-scheme rate strategies."""

from datetime import date

import pytest

from vehicle_tax.exceptions import InvalidTaxCalculationError
from vehicle_tax.jurisdictions import TaxRateBreakdown
from vehicle_tax.schemes import SCHEME_STRATEGIES, StandardScheme, StateLevyScheme, strategy_for
from vehicle_tax.state_rules import SpecialScheme, StateSpecificRules

ATLANTA = TaxRateBreakdown.from_components(
    "0.0400", "0.0300", "0.0190", effective_date=date(2020, 1, 1)
)


def _rules(scheme: SpecialScheme, scheme_rate: str | None) -> StateSpecificRules:
    return StateSpecificRules(
        state_code="GA",
        version=1,
        effective_date=date(2020, 1, 1),
        allows_trade_in_credit=True,
        special_scheme=scheme,
        scheme_rate=scheme_rate,
    )


def test_every_scheme_has_a_strategy():
    assert set(SCHEME_STRATEGIES) == set(SpecialScheme)


def test_standard_keeps_jurisdiction_rates():
    rates = strategy_for(SpecialScheme.STANDARD).effective_rates(
        ATLANTA, _rules(SpecialScheme.STANDARD, None)
    )
    assert rates is ATLANTA


@pytest.mark.parametrize("scheme", ["TAVT", "HUT", "PRIVILEGE_TAX"])
def test_levy_replaces_local_stacking(scheme):
    strategy = strategy_for(scheme)
    assert isinstance(strategy, StateLevyScheme)
    rates = strategy.effective_rates(ATLANTA, _rules(SpecialScheme(scheme), "0.0700"))
    assert rates.state_rate == "0.0700"
    assert rates.county_rate == rates.city_rate == rates.special_district_rate == "0.0000"
    assert rates.total_rate == "0.0700"
    assert rates.effective_date == date(2020, 1, 1)


def test_levy_without_rate_raises():
    with pytest.raises(InvalidTaxCalculationError) as exc:
        strategy_for(SpecialScheme.TAVT).effective_rates(ATLANTA, _rules(SpecialScheme.TAVT, None))
    assert exc.value.field == "scheme_rate"


def test_standard_strategy_type():
    assert isinstance(strategy_for("STANDARD"), StandardScheme)
