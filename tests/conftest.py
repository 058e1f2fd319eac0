"""Shared fixtures: a fresh, seeded in-memory database per test."""

from datetime import date

import pytest

from vehicle_tax.calculator import SalesTaxRequest, VehicleTaxCalculator
from vehicle_tax.config import EngineSettings
from vehicle_tax.db import create_session_factory
from vehicle_tax.jurisdictions import JurisdictionResolver
from vehicle_tax.reference_data import seed_reference_data
from vehicle_tax.state_rules import StateRuleTable

CALC_DATE = date(2024, 6, 15)
MEMORY_URL = "sqlite+pysqlite:///:memory:"


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(database_url=MEMORY_URL, reference_cache_ttl_seconds=0)


@pytest.fixture
def session_factory():
    factory = create_session_factory(MEMORY_URL)
    seed_reference_data(factory)
    return factory


@pytest.fixture
def resolver(session_factory, settings) -> JurisdictionResolver:
    return JurisdictionResolver(session_factory, settings=settings)


@pytest.fixture
def rule_table(session_factory) -> StateRuleTable:
    return StateRuleTable(session_factory)


@pytest.fixture
def calc(session_factory, settings) -> VehicleTaxCalculator:
    return VehicleTaxCalculator(session_factory, settings)


def make_request(
    price: str = "35000.00",
    state: str = "TX",
    postal_code: str | None = "77001",
    trade_in: str | None = None,
    **kwargs,
) -> SalesTaxRequest:
    return SalesTaxRequest(
        dealership_id=kwargs.pop("dealership_id", "DLR-001"),
        vehicle_price=price,
        postal_code=postal_code,
        state=state,
        trade_in_value=trade_in,
        calculation_date=kwargs.pop("calculation_date", CALC_DATE),
        **kwargs,
    )
