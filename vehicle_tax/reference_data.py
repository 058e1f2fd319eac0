"""
Bundled reference data: sample jurisdictions, state rule versions and
state-average fallback rates.

Rates are decimal-fraction strings and fees are money strings. Figures are
representative of 2024 state DMV and revenue department publications; load
authoritative jurisdiction data with ``JurisdictionResolver.load_csv``
before relying on totals.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy.orm import sessionmaker

from vehicle_tax.jurisdictions import JurisdictionResolver
from vehicle_tax.logging_config import get_logger
from vehicle_tax.state_rules import SpecialScheme, StateRuleTable

logger = get_logger(__name__)

SEED_EFFECTIVE_DATE = date(2020, 1, 1)


# ---------------------------------------------------------------------------
# State-average rates (state rate, average local rate)
#
# Used only by the explicit fallback path for consumer-facing estimates.
# ---------------------------------------------------------------------------

STATE_AVERAGE_RATES: dict[str, tuple[str, str]] = {
    "AZ": ("0.0560", "0.0277"),
    "CA": ("0.0725", "0.0125"),
    "FL": ("0.0600", "0.0100"),
    "GA": ("0.0400", "0.0336"),
    "IL": ("0.0625", "0.0257"),
    "MI": ("0.0600", "0.0000"),
    "NC": ("0.0475", "0.0225"),
    "NY": ("0.0400", "0.0452"),
    "OH": ("0.0575", "0.0148"),
    "OR": ("0.0000", "0.0000"),
    "PA": ("0.0600", "0.0034"),
    "TX": ("0.0625", "0.0195"),
    "WV": ("0.0600", "0.0052"),
}


# ---------------------------------------------------------------------------
# Sample jurisdictions
# ---------------------------------------------------------------------------

DEFAULT_JURISDICTIONS: list[dict] = [
    {"postal_code": "90001", "state": "CA", "county": "Los Angeles", "city": "Los Angeles",
     "special_district": "LA County District", "state_rate": "0.0725", "county_rate": "0.0100",
     "city_rate": "0.0000", "special_district_rate": "0.0125"},
    {"postal_code": "95814", "state": "CA", "county": "Sacramento", "city": "Sacramento",
     "state_rate": "0.0725", "county_rate": "0.0100", "city_rate": "0.0050"},
    {"postal_code": "77001", "state": "TX", "county": "Harris", "city": "Houston",
     "special_district": "Houston MTA", "state_rate": "0.0625", "county_rate": "0.0000",
     "city_rate": "0.0100", "special_district_rate": "0.0100"},
    {"postal_code": "75201", "state": "TX", "county": "Dallas", "city": "Dallas",
     "special_district": "Dallas Area Rapid Transit", "state_rate": "0.0625",
     "city_rate": "0.0100", "special_district_rate": "0.0100"},
    {"postal_code": "85001", "state": "AZ", "county": "Maricopa", "city": "Phoenix",
     "state_rate": "0.0560", "county_rate": "0.0070", "city_rate": "0.0230"},
    {"postal_code": "33101", "state": "FL", "county": "Miami-Dade", "city": "Miami",
     "state_rate": "0.0600", "county_rate": "0.0100"},
    {"postal_code": "48201", "state": "MI", "county": "Wayne", "city": "Detroit",
     "state_rate": "0.0600"},
    {"postal_code": "30301", "state": "GA", "county": "Fulton", "city": "Atlanta",
     "state_rate": "0.0400", "county_rate": "0.0300", "city_rate": "0.0190"},
    {"postal_code": "27601", "state": "NC", "county": "Wake", "city": "Raleigh",
     "special_district": "Wake Transit", "state_rate": "0.0475", "county_rate": "0.0200",
     "special_district_rate": "0.0050"},
    {"postal_code": "25301", "state": "WV", "county": "Kanawha", "city": "Charleston",
     "state_rate": "0.0600", "city_rate": "0.0100"},
    {"postal_code": "10001", "state": "NY", "county": "New York", "city": "New York",
     "special_district": "MCTD", "state_rate": "0.0400", "city_rate": "0.0450",
     "special_district_rate": "0.00375"},
    {"postal_code": "60601", "state": "IL", "county": "Cook", "city": "Chicago",
     "special_district": "RTA", "state_rate": "0.0625", "county_rate": "0.0175",
     "city_rate": "0.0125", "special_district_rate": "0.0100"},
    {"postal_code": "19103", "state": "PA", "county": "Philadelphia", "city": "Philadelphia",
     "state_rate": "0.0600", "city_rate": "0.0200"},
    {"postal_code": "43215", "state": "OH", "county": "Franklin", "city": "Columbus",
     "state_rate": "0.0575", "county_rate": "0.0125"},
    {"postal_code": "97201", "state": "OR", "county": "Multnomah", "city": "Portland",
     "state_rate": "0.0000"},
]


# ---------------------------------------------------------------------------
# State rule versions
# ---------------------------------------------------------------------------

_STATE_RULE_DATA: dict[str, dict] = {
    "AZ": {
        "name": "Arizona",
        "versions": [
            {"allows_trade_in_credit": True, "doc_fee_taxable": True,
             "title_fee": "4.00", "registration_fee": "8.00",
             "notes": "Transaction privilege tax; trade-in fully credited."},
        ],
    },
    "CA": {
        "name": "California",
        "versions": [
            {"allows_trade_in_credit": False, "doc_fee_max": "85.00", "doc_fee_capped": True,
             "doc_fee_taxable": True, "title_fee": "15.00", "registration_fee": "65.00",
             "manufacturer_rebate_taxable": True,
             "notes": "No trade-in credit. Doc fee capped at $85."},
        ],
    },
    "FL": {
        "name": "Florida",
        "versions": [
            {"allows_trade_in_credit": True, "doc_fee_taxable": True,
             "title_fee": "77.75", "registration_fee": "225.00",
             "service_contracts_taxable": True,
             "notes": "Discretionary surtax applies to first $5,000 in practice."},
        ],
    },
    "GA": {
        "name": "Georgia",
        "special_scheme": SpecialScheme.TAVT,
        "versions": [
            {"allows_trade_in_credit": True, "title_fee": "18.00", "registration_fee": "20.00",
             "scheme_rate": "0.0700",
             "notes": "Title ad valorem tax replaces sales tax on vehicles."},
        ],
    },
    "IL": {
        "name": "Illinois",
        "versions": [
            {"allows_trade_in_credit": True, "trade_in_credit_cap": "10000.00",
             "doc_fee_max": "358.03", "doc_fee_capped": True, "doc_fee_taxable": True,
             "title_fee": "165.00", "registration_fee": "151.00",
             "notes": "Trade-in credit capped at $10,000."},
        ],
    },
    "MI": {
        "name": "Michigan",
        "versions": [
            {"effective_date": date(2014, 1, 1),
             "allows_trade_in_credit": True, "trade_in_credit_cap": "2000.00",
             "doc_fee_max": "230.00", "doc_fee_capped": True, "doc_fee_taxable": True,
             "title_fee": "15.00",
             "notes": "Trade-in credit phased in from $2,000."},
            {"effective_date": date(2024, 1, 1),
             "allows_trade_in_credit": True, "trade_in_credit_cap": "10000.00",
             "doc_fee_max": "260.00", "doc_fee_capped": True, "doc_fee_taxable": True,
             "title_fee": "15.00",
             "notes": "Trade-in credit cap raised to $10,000."},
        ],
    },
    "NC": {
        "name": "North Carolina",
        "special_scheme": SpecialScheme.HUT,
        "versions": [
            {"allows_trade_in_credit": True, "title_fee": "56.00", "registration_fee": "38.75",
             "scheme_rate": "0.0300",
             "notes": "Highway use tax replaces sales tax; no local rates."},
        ],
    },
    "NY": {
        "name": "New York",
        "versions": [
            {"allows_trade_in_credit": True, "doc_fee_max": "175.00", "doc_fee_capped": True,
             "doc_fee_taxable": True, "title_fee": "50.00",
             "service_contracts_taxable": True,
             "notes": "Doc fee capped at $175."},
        ],
    },
    "OH": {
        "name": "Ohio",
        "versions": [
            {"allows_trade_in_credit": True, "doc_fee_max": "250.00", "doc_fee_capped": True,
             "title_fee": "15.00", "service_contracts_taxable": True,
             "notes": "Trade-in credit applies to new vehicles."},
        ],
    },
    "OR": {
        "name": "Oregon",
        "versions": [
            {"allows_trade_in_credit": True, "doc_fee_max": "200.00", "doc_fee_capped": True,
             "title_fee": "101.00", "registration_fee": "126.00",
             "notes": "No sales tax."},
        ],
    },
    "PA": {
        "name": "Pennsylvania",
        "versions": [
            {"allows_trade_in_credit": True, "doc_fee_max": "464.00", "doc_fee_capped": True,
             "doc_fee_taxable": True, "title_fee": "67.00", "registration_fee": "45.00",
             "notes": "Doc fee cap indexed annually."},
        ],
    },
    "TX": {
        "name": "Texas",
        "versions": [
            {"allows_trade_in_credit": True, "title_fee": "33.00", "registration_fee": "51.75",
             "notes": "Motor vehicle sales tax; trade-in fully credited."},
        ],
    },
    "WV": {
        "name": "West Virginia",
        "special_scheme": SpecialScheme.PRIVILEGE_TAX,
        "versions": [
            {"allows_trade_in_credit": True, "title_fee": "15.00", "registration_fee": "51.50",
             "scheme_rate": "0.0500",
             "notes": "One-time motor vehicle privilege tax."},
        ],
    },
}


def seed_reference_data(
    session_factory: sessionmaker,
    effective_date: date = SEED_EFFECTIVE_DATE,
    last_verified: Optional[date] = None,
) -> tuple[int, int]:
    """
    Load the bundled jurisdictions and state rules.

    Returns ``(jurisdictions, rule_versions)`` inserted. Rule versions with
    their own ``effective_date`` keep it; the rest use ``effective_date``.
    """
    resolver = JurisdictionResolver(session_factory)
    for record in DEFAULT_JURISDICTIONS:
        resolver.save_jurisdiction(
            effective_date=effective_date,
            source="seed",
            last_verified=last_verified,
            **record,
        )

    table = StateRuleTable(session_factory)
    versions = 0
    for code, data in sorted(_STATE_RULE_DATA.items()):
        for version in data["versions"]:
            policy = dict(version)
            starts = policy.pop("effective_date", effective_date)
            table.save_rules(
                code,
                starts,
                state_name=data["name"],
                special_scheme=data.get("special_scheme", SpecialScheme.STANDARD),
                **policy,
            )
            versions += 1

    logger.info(
        "seeded %d jurisdictions and %d state rule versions",
        len(DEFAULT_JURISDICTIONS),
        versions,
    )
    return len(DEFAULT_JURISDICTIONS), versions
