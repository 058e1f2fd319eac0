"""Tests for the versioned state rule table."""

from datetime import date

import pytest

from vehicle_tax.exceptions import (
    InvalidTaxCalculationError,
    OverlappingEffectiveWindowError,
    UnsupportedStateError,
)
from vehicle_tax.reference_data import _STATE_RULE_DATA
from vehicle_tax.state_rules import SpecialScheme, StateRuleTable, StateSpecificRules

from conftest import CALC_DATE


# ── Lookup ───────────────────────────────────────────────────────────


def test_california_rules(rule_table: StateRuleTable):
    rules = rule_table.get_rules("CA", CALC_DATE)
    assert rules.state_name == "California"
    assert rules.allows_trade_in_credit is False
    assert rules.doc_fee_capped is True
    assert rules.doc_fee_max == "85.00"
    assert rules.special_scheme is SpecialScheme.STANDARD


def test_lowercase_state_code(rule_table: StateRuleTable):
    assert rule_table.get_rules("tx", CALC_DATE).state_code == "TX"


def test_unknown_state_raises(rule_table: StateRuleTable):
    with pytest.raises(UnsupportedStateError) as exc:
        rule_table.get_rules("ZZ", CALC_DATE)
    assert exc.value.code == "UNSUPPORTED_STATE"
    assert rule_table.is_supported("ZZ", CALC_DATE) is False
    assert rule_table.is_supported("TX", CALC_DATE) is True


def test_list_states(rule_table: StateRuleTable):
    codes = [r.state_code for r in rule_table.list_states(CALC_DATE)]
    assert codes == sorted(_STATE_RULE_DATA)


def test_special_schemes_seeded(rule_table: StateRuleTable):
    assert rule_table.get_rules("GA", CALC_DATE).special_scheme is SpecialScheme.TAVT
    assert rule_table.get_rules("NC", CALC_DATE).special_scheme is SpecialScheme.HUT
    wv = rule_table.get_rules("WV", CALC_DATE)
    assert wv.special_scheme is SpecialScheme.PRIVILEGE_TAX
    assert wv.scheme_rate == "0.0500"


# ── Versioning ───────────────────────────────────────────────────────


def test_michigan_cap_depends_on_date(rule_table: StateRuleTable):
    before = rule_table.get_rules("MI", date(2023, 6, 1))
    after = rule_table.get_rules("MI", date(2024, 6, 1))
    assert (before.version, before.trade_in_credit_cap) == (1, "2000.00")
    assert (after.version, after.trade_in_credit_cap) == (2, "10000.00")


def test_michigan_history(rule_table: StateRuleTable):
    history = rule_table.history("MI")
    assert [r.version for r in history] == [1, 2]
    assert history[0].end_date == date(2024, 1, 1)
    assert history[1].end_date is None


def test_no_rules_before_first_version(rule_table: StateRuleTable):
    with pytest.raises(UnsupportedStateError):
        rule_table.get_rules("MI", date(2013, 12, 31))


def test_save_rules_creates_next_version(rule_table: StateRuleTable):
    rules = rule_table.save_rules(
        "TX",
        date(2025, 1, 1),
        state_name="Texas",
        allows_trade_in_credit=True,
        trade_in_credit_percent="0.5",
        title_fee="40",
    )
    assert rules.version == 2
    assert rules.trade_in_credit_percent == "0.5000"
    assert rules.title_fee == "40.00"
    # unspecified fields fall back to defaults
    assert rules.accessories_taxable is True
    assert rules.dealer_rebate_taxable is True

    assert rule_table.get_rules("TX", CALC_DATE).version == 1
    assert rule_table.get_rules("TX", date(2025, 1, 1)).version == 2
    assert rule_table.history("TX")[0].end_date == date(2025, 1, 1)


def test_save_rules_overlap_refused(rule_table: StateRuleTable):
    with pytest.raises(OverlappingEffectiveWindowError):
        rule_table.save_rules("TX", date(2019, 1, 1), allows_trade_in_credit=True)


def test_save_rules_new_state(rule_table: StateRuleTable):
    rule_table.save_rules("MA", date(2024, 1, 1), state_name="Massachusetts", allows_trade_in_credit=True)
    assert rule_table.is_supported("MA", CALC_DATE)
    assert rule_table.get_rules("MA", CALC_DATE).version == 1


# ── Validation of rule data ──────────────────────────────────────────


def test_scheme_requires_rate(rule_table: StateRuleTable):
    with pytest.raises(InvalidTaxCalculationError) as exc:
        rule_table.save_rules(
            "SC", date(2024, 1, 1), special_scheme="TAVT", allows_trade_in_credit=True
        )
    assert exc.value.field == "scheme_rate"


def test_percent_must_be_fraction(rule_table: StateRuleTable):
    with pytest.raises(InvalidTaxCalculationError):
        rule_table.save_rules(
            "SC", date(2024, 1, 1), allows_trade_in_credit=True, trade_in_credit_percent="50"
        )


def test_capped_doc_fee_needs_max(rule_table: StateRuleTable):
    with pytest.raises(InvalidTaxCalculationError) as exc:
        rule_table.save_rules("SC", date(2024, 1, 1), allows_trade_in_credit=True, doc_fee_capped=True)
    assert exc.value.field == "doc_fee_max"


def test_unknown_rule_field(rule_table: StateRuleTable):
    with pytest.raises(InvalidTaxCalculationError, match="Unknown rule fields"):
        rule_table.save_rules("SC", date(2024, 1, 1), allows_trade_in_credit=True, luxury_tax=True)


def test_trade_in_flag_required(rule_table: StateRuleTable):
    with pytest.raises(InvalidTaxCalculationError):
        rule_table.save_rules("SC", date(2024, 1, 1))


def test_rules_snapshot_round_trip(rule_table: StateRuleTable):
    rules = rule_table.get_rules("GA", CALC_DATE)
    assert StateSpecificRules.from_dict(rules.to_dict()) == rules
