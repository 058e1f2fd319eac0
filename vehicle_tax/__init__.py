"""
Vehicle Tax Engine
==================

Multi-jurisdiction vehicle sales tax calculation for dealerships, with
exact decimal arithmetic, time-bounded reference data, and an immutable
audit trail.

Modules:
    decimal_math    - Exact decimal-string arithmetic for money and rates
    jurisdictions   - Postal-code jurisdiction resolution and rate stacking
    state_rules     - Versioned per-state vehicle tax policy table
    schemes         - Rate strategies for TAVT, HUT and privilege tax states
    calculator      - Sales tax and complete deal calculation engine
    audit           - Append-only calculation audit trail
    reference_data  - Bundled sample jurisdictions and state rules
    cli             - Command-line interface
"""

__version__ = "2.0.0"

from vehicle_tax.audit import AuditTrailStore, TaxAuditLog
from vehicle_tax.calculator import (
    CompleteTaxBreakdown,
    DealFee,
    DealTaxRequest,
    SalesTaxRequest,
    SalesTaxResult,
    VehicleTaxCalculator,
)
from vehicle_tax.config import EngineSettings
from vehicle_tax.exceptions import (
    InvalidTaxCalculationError,
    JurisdictionNotFoundError,
    TaxCalculationError,
    UnsupportedStateError,
)
from vehicle_tax.jurisdictions import JurisdictionResolver, TaxRateBreakdown
from vehicle_tax.state_rules import StateRuleTable, StateSpecificRules

__all__ = [
    "AuditTrailStore",
    "CompleteTaxBreakdown",
    "DealFee",
    "DealTaxRequest",
    "EngineSettings",
    "InvalidTaxCalculationError",
    "JurisdictionNotFoundError",
    "JurisdictionResolver",
    "SalesTaxRequest",
    "SalesTaxResult",
    "StateRuleTable",
    "StateSpecificRules",
    "TaxAuditLog",
    "TaxCalculationError",
    "TaxRateBreakdown",
    "UnsupportedStateError",
    "VehicleTaxCalculator",
]
