"""
Rate strategies for special vehicle tax schemes.

Most states stack the jurisdiction's state, county, city and district
rates. A few replace that sales tax with a one-time state-level levy:

    TAVT           Georgia title ad valorem tax
    HUT            North Carolina highway use tax
    PRIVILEGE_TAX  West Virginia motor vehicle privilege tax

For those, local stacking does not apply and the single ``scheme_rate``
from the state rule table is used instead. The taxable base (trade-in
credit, rebates) is computed the same way for every scheme.
"""

from __future__ import annotations

from vehicle_tax.exceptions import InvalidTaxCalculationError
from vehicle_tax.jurisdictions import TaxRateBreakdown
from vehicle_tax.state_rules import SpecialScheme, StateSpecificRules


class StandardScheme:
    description = "Stacked state and local sales tax"

    def effective_rates(
        self, jurisdiction_rates: TaxRateBreakdown, rules: StateSpecificRules
    ) -> TaxRateBreakdown:
        return jurisdiction_rates


class StateLevyScheme:
    """A single state-level rate replacing local stacking."""

    def __init__(self, description: str) -> None:
        self.description = description

    def effective_rates(
        self, jurisdiction_rates: TaxRateBreakdown, rules: StateSpecificRules
    ) -> TaxRateBreakdown:
        if rules.scheme_rate is None:
            raise InvalidTaxCalculationError(
                f"{rules.state_code} {rules.special_scheme.value} rules have no scheme_rate",
                field="scheme_rate",
            )
        return TaxRateBreakdown.from_components(
            rules.scheme_rate, effective_date=rules.effective_date
        )


SCHEME_STRATEGIES = {
    SpecialScheme.STANDARD: StandardScheme(),
    SpecialScheme.TAVT: StateLevyScheme("Title ad valorem tax (one-time, state-level)"),
    SpecialScheme.HUT: StateLevyScheme("Highway use tax (state-level, no local rates)"),
    SpecialScheme.PRIVILEGE_TAX: StateLevyScheme("Motor vehicle privilege tax (one-time)"),
}


def strategy_for(scheme: SpecialScheme):
    return SCHEME_STRATEGIES[SpecialScheme(scheme)]
