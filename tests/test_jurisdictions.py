"""Tests for jurisdiction resolution, rate stacking and reference data loading."""

from datetime import date, timedelta

import pytest

from vehicle_tax.cache import ReferenceCache
from vehicle_tax.exceptions import (
    InvalidTaxCalculationError,
    JurisdictionNotFoundError,
    OverlappingEffectiveWindowError,
    UnsupportedStateError,
)
from vehicle_tax.jurisdictions import (
    JurisdictionResolver,
    TaxRateBreakdown,
    normalize_postal_code,
)

from conftest import CALC_DATE


# ── Postal code normalization ────────────────────────────────────────


def test_normalize_strips_zip_plus_four():
    assert normalize_postal_code("77001-1234") == "77001"
    assert normalize_postal_code(" 90001 ") == "90001"


@pytest.mark.parametrize("code", ["7700", "ABCDE", "770011", ""])
def test_normalize_rejects_bad_codes(code):
    with pytest.raises(InvalidTaxCalculationError) as exc:
        normalize_postal_code(code)
    assert exc.value.field == "postal_code"


# ── Resolution ───────────────────────────────────────────────────────


def test_resolve_houston(resolver: JurisdictionResolver):
    j = resolver.resolve_by_postal_code("77001", CALC_DATE)
    assert j.state == "TX"
    assert j.city == "Houston"
    assert j.county == "Harris"


def test_resolve_zip_plus_four(resolver: JurisdictionResolver):
    assert resolver.resolve_by_postal_code("77001-4321", CALC_DATE).city == "Houston"


def test_unknown_postal_code_raises(resolver: JurisdictionResolver):
    with pytest.raises(JurisdictionNotFoundError) as exc:
        resolver.resolve_by_postal_code("99999", CALC_DATE)
    assert exc.value.code == "JURISDICTION_NOT_FOUND"
    assert exc.value.postal_code == "99999"


def test_no_jurisdiction_before_effective_date(resolver: JurisdictionResolver):
    with pytest.raises(JurisdictionNotFoundError):
        resolver.resolve_by_postal_code("77001", date(2019, 12, 31))


def test_resolve_by_location_case_insensitive(resolver: JurisdictionResolver):
    j = resolver.resolve_by_location("tx", city="HOUSTON", as_of=CALC_DATE)
    assert j.postal_code == "77001"


def test_resolve_by_location_lowest_postal_code_breaks_ties(resolver: JurisdictionResolver):
    # Both TX sample jurisdictions share the same effective date
    assert resolver.resolve_by_location("TX", as_of=CALC_DATE).postal_code == "75201"


def test_resolve_by_location_unknown(resolver: JurisdictionResolver):
    with pytest.raises(JurisdictionNotFoundError):
        resolver.resolve_by_location("TX", city="Nowhere", as_of=CALC_DATE)


# ── Rate stacking ────────────────────────────────────────────────────


def test_houston_rates_sum_exactly(resolver: JurisdictionResolver):
    rates = resolver.get_rates(resolver.resolve_by_postal_code("77001", CALC_DATE))
    assert rates.state_rate == "0.0625"
    assert rates.county_rate == "0.0000"
    assert rates.city_rate == "0.0100"
    assert rates.special_district_rate == "0.0100"
    assert rates.total_rate == "0.0825"


def test_los_angeles_total(resolver: JurisdictionResolver):
    rates = resolver.get_rates(resolver.resolve_by_postal_code("90001", CALC_DATE))
    assert rates.total_rate == "0.0950"


def test_five_place_rate_kept(resolver: JurisdictionResolver):
    rates = resolver.get_rates(resolver.resolve_by_postal_code("10001", CALC_DATE))
    assert rates.special_district_rate == "0.00375"
    assert rates.total_rate == "0.08875"


def test_from_components_defaults_to_zero_local_rates():
    rates = TaxRateBreakdown.from_components("0.0600", effective_date=CALC_DATE)
    assert rates.components == ["0.0600", "0.0000", "0.0000", "0.0000"]
    assert rates.total_rate == "0.0600"


def test_from_components_rejects_negative_rate():
    with pytest.raises(InvalidTaxCalculationError) as exc:
        TaxRateBreakdown.from_components("0.0600", county_rate="-0.01")
    assert exc.value.field == "county_rate"


# ── Time-bounded records ─────────────────────────────────────────────


def test_new_record_end_dates_previous(resolver: JurisdictionResolver):
    resolver.save_jurisdiction(
        "77001", "TX", date(2025, 1, 1), "0.0625",
        city_rate="0.0200", special_district_rate="0.0100",
        county="Harris", city="Houston",
    )
    old = resolver.resolve_by_postal_code("77001", CALC_DATE)
    new = resolver.resolve_by_postal_code("77001", date(2025, 2, 1))
    assert old.end_date == date(2025, 1, 1)
    assert resolver.get_rates(old).total_rate == "0.0825"
    assert resolver.get_rates(new).total_rate == "0.0925"


def test_boundary_day_belongs_to_new_record(resolver: JurisdictionResolver):
    resolver.save_jurisdiction("77001", "TX", date(2025, 1, 1), "0.0700")
    assert resolver.get_rates(
        resolver.resolve_by_postal_code("77001", date(2024, 12, 31))
    ).total_rate == "0.0825"
    assert resolver.get_rates(
        resolver.resolve_by_postal_code("77001", date(2025, 1, 1))
    ).total_rate == "0.0700"


def test_overlapping_window_refused(resolver: JurisdictionResolver):
    with pytest.raises(OverlappingEffectiveWindowError):
        resolver.save_jurisdiction("77001", "TX", date(2019, 1, 1), "0.0625")


def test_historical_window_before_existing_allowed(resolver: JurisdictionResolver):
    resolver.save_jurisdiction(
        "77001", "TX", date(2019, 1, 1), "0.0600", end_date=date(2020, 1, 1)
    )
    j = resolver.resolve_by_postal_code("77001", date(2019, 6, 1))
    assert resolver.get_rates(j).total_rate == "0.0600"
    # the current record is untouched
    assert resolver.resolve_by_postal_code("77001", CALC_DATE).end_date is None


def test_end_date_must_follow_effective_date(resolver: JurisdictionResolver):
    with pytest.raises(InvalidTaxCalculationError):
        resolver.save_jurisdiction(
            "12345", "NY", date(2024, 1, 1), "0.0400", end_date=date(2024, 1, 1)
        )


def test_list_jurisdictions(resolver: JurisdictionResolver):
    codes = [j.postal_code for j in resolver.list_jurisdictions("tx", CALC_DATE)]
    assert codes == ["75201", "77001"]


# ── Staleness ────────────────────────────────────────────────────────


def test_unverified_jurisdiction_is_not_current(resolver: JurisdictionResolver):
    j = resolver.resolve_by_postal_code("77001", CALC_DATE)
    assert resolver.is_jurisdiction_current(j, CALC_DATE) is False


def test_mark_verified(resolver: JurisdictionResolver):
    j = resolver.resolve_by_postal_code("77001", CALC_DATE)
    resolver.mark_verified(j.id, CALC_DATE)
    j = resolver.resolve_by_postal_code("77001", CALC_DATE)
    assert j.last_verified == CALC_DATE
    assert resolver.is_jurisdiction_current(j, CALC_DATE)
    assert not resolver.is_jurisdiction_current(j, CALC_DATE + timedelta(days=91))


def test_mark_verified_unknown_id(resolver: JurisdictionResolver):
    with pytest.raises(JurisdictionNotFoundError):
        resolver.mark_verified("no-such-id", CALC_DATE)


# ── Caching ──────────────────────────────────────────────────────────


def test_cached_lookups_hit(session_factory, settings):
    cache = ReferenceCache(ttl_seconds=60)
    resolver = JurisdictionResolver(session_factory, cache, settings)
    resolver.resolve_by_postal_code("77001", CALC_DATE)
    resolver.resolve_by_postal_code("77001", CALC_DATE)
    assert cache.hits >= 1


def test_save_clears_cache(session_factory, settings):
    cache = ReferenceCache(ttl_seconds=60)
    resolver = JurisdictionResolver(session_factory, cache, settings)
    resolver.resolve_by_postal_code("77001", date(2025, 2, 1))
    resolver.save_jurisdiction("77001", "TX", date(2025, 1, 1), "0.0700")
    j = resolver.resolve_by_postal_code("77001", date(2025, 2, 1))
    assert resolver.get_rates(j).total_rate == "0.0700"


# ── Fallback ─────────────────────────────────────────────────────────


def test_fallback_returns_labelled_estimate(resolver: JurisdictionResolver):
    estimate = resolver.resolve_rates_with_fallback("12345", "NY", CALC_DATE)
    assert estimate.is_estimate
    assert estimate.source == "fallback"
    assert estimate.jurisdiction is None
    assert estimate.rates.total_rate == "0.0852"


def test_fallback_prefers_database(resolver: JurisdictionResolver):
    estimate = resolver.resolve_rates_with_fallback("77001", "TX", CALC_DATE)
    assert not estimate.is_estimate
    assert estimate.jurisdiction.city == "Houston"
    assert estimate.rates.total_rate == "0.0825"


def test_fallback_unknown_state(resolver: JurisdictionResolver):
    with pytest.raises(UnsupportedStateError):
        resolver.resolve_rates_with_fallback("12345", "ZZ", CALC_DATE)


# ── CSV loading ──────────────────────────────────────────────────────


def test_load_csv(resolver: JurisdictionResolver, tmp_path):
    path = tmp_path / "rates.csv"
    path.write_text(
        "postal_code,state,county,city,state_rate,county_rate,city_rate,effective_date\n"
        "02108,MA,Suffolk,Boston,0.0625,,,2024-01-01\n"
        "02108,MA,Suffolk,Boston,0.0650,,,2025-01-01\n"
        "12345,NY,Schenectady,Schenectady,0.0400,0.0400,,2023-03-01\n",
        encoding="utf-8",
    )
    assert resolver.load_csv(path) == 3

    boston = resolver.resolve_by_postal_code("02108", CALC_DATE)
    assert boston.postal_code == "02108"
    assert boston.source == "csv:rates.csv"
    assert boston.end_date == date(2025, 1, 1)
    assert resolver.get_rates(boston).total_rate == "0.0625"
    later = resolver.resolve_by_postal_code("02108", date(2025, 6, 1))
    assert resolver.get_rates(later).total_rate == "0.0650"
    assert resolver.get_rates(
        resolver.resolve_by_postal_code("12345", CALC_DATE)
    ).total_rate == "0.0800"


def test_load_csv_missing_columns(resolver: JurisdictionResolver, tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("postal_code,state\n77001,TX\n", encoding="utf-8")
    with pytest.raises(InvalidTaxCalculationError, match="missing columns"):
        resolver.load_csv(path)
