"""
Vehicle sales tax calculation engine.

Handles:
- Jurisdiction and state-rule resolution as of the transaction date
- Taxable base after trade-in credit and non-taxable rebates
- Rate application with an exact four-way component split
- Full deal breakdown: doc, title and registration fees, F&I products,
  accessories and other itemized fees
- Post-calculation validation
- One immutable audit entry per calculation, written in the same
  transaction as the reference-data reads

The pipeline is strictly linear:

    resolve jurisdiction -> resolve state rules -> taxable base -> rate
    -> component split -> fees -> validate -> persist audit -> return

Any failure aborts it; nothing partial is returned or persisted.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterator, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from vehicle_tax import decimal_math as dm
from vehicle_tax.audit import AuditTrailStore, CalculationType, TaxAuditLog
from vehicle_tax.cache import ReferenceCache, cache_from_settings
from vehicle_tax.config import EngineSettings, get_settings
from vehicle_tax.db import StateRuleRow, create_session_factory
from vehicle_tax.exceptions import InvalidTaxCalculationError, ValidationFailedError
from vehicle_tax.jurisdictions import (
    Jurisdiction,
    JurisdictionResolver,
    TaxRateBreakdown,
    normalize_postal_code,
)
from vehicle_tax.logging_config import get_logger
from vehicle_tax.reference_data import seed_reference_data
from vehicle_tax.schemes import strategy_for
from vehicle_tax.state_rules import StateRuleTable, StateSpecificRules

logger = get_logger(__name__)

DEFAULT_ACTOR = "system"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass
class SalesTaxRequest:
    """A vehicle sale to tax. Money fields are decimal strings."""

    dealership_id: str
    vehicle_price: str
    postal_code: Optional[str]
    state: str
    county: Optional[str] = None
    city: Optional[str] = None
    trade_in_value: Optional[str] = None
    rebate_manufacturer: Optional[str] = None
    rebate_dealer: Optional[str] = None
    deal_id: Optional[str] = None
    user_id: Optional[str] = None
    calculation_date: Optional[date] = None

    @classmethod
    def from_dict(cls, data: dict) -> "SalesTaxRequest":
        values = dict(data)
        if isinstance(values.get("calculation_date"), str):
            values["calculation_date"] = date.fromisoformat(values["calculation_date"])
        return cls(**values)


@dataclass
class DealFee:
    """An itemized charge on a deal."""

    code: str
    name: str
    amount: str
    taxable: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "name": self.name, "amount": self.amount, "taxable": self.taxable}

    @classmethod
    def from_dict(cls, data: dict) -> "DealFee":
        return cls(
            code=data.get("code", "OTHER"),
            name=data.get("name", data.get("code", "Fee")),
            amount=data["amount"],
            taxable=bool(data.get("taxable", True)),
        )


@dataclass
class DealTaxRequest(SalesTaxRequest):
    """A full deal: the vehicle sale plus fees, products and accessories."""

    accessories: list[DealFee] = field(default_factory=list)
    other_fees: list[DealFee] = field(default_factory=list)
    doc_fee: Optional[str] = None
    service_contracts: Optional[str] = None
    gap: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "DealTaxRequest":
        values = dict(data)
        values["accessories"] = [
            f if isinstance(f, DealFee) else DealFee.from_dict(f) for f in values.get("accessories", [])
        ]
        values["other_fees"] = [
            f if isinstance(f, DealFee) else DealFee.from_dict(f) for f in values.get("other_fees", [])
        ]
        if isinstance(values.get("calculation_date"), str):
            values["calculation_date"] = date.fromisoformat(values["calculation_date"])
        return cls(**values)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TradeInCredit:
    credit_allowed: bool
    credit_amount: str
    applied_rule: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "credit_allowed": self.credit_allowed,
            "credit_amount": self.credit_amount,
            "applied_rule": self.applied_rule,
        }


@dataclass(frozen=True)
class TaxBreakdown:
    state_tax: str = dm.ZERO
    county_tax: str = dm.ZERO
    city_tax: str = dm.ZERO
    special_district_tax: str = dm.ZERO

    @classmethod
    def from_parts(cls, parts: list[str]) -> "TaxBreakdown":
        return cls(*parts)

    @property
    def components(self) -> list[str]:
        return [self.state_tax, self.county_tax, self.city_tax, self.special_district_tax]

    @property
    def total(self) -> str:
        return dm.add(*self.components)

    def plus(self, other: "TaxBreakdown") -> "TaxBreakdown":
        return TaxBreakdown.from_parts(
            [dm.add(a, b) for a, b in zip(self.components, other.components)]
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "state_tax": self.state_tax,
            "county_tax": self.county_tax,
            "city_tax": self.city_tax,
            "special_district_tax": self.special_district_tax,
        }


@dataclass
class ValidationOutcome:
    """Result of the post-calculation sanity checks."""

    passed: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def raise_for_failure(self) -> None:
        if not self.passed:
            raise ValidationFailedError(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {"passed": self.passed, "errors": list(self.errors), "warnings": list(self.warnings)}


@dataclass
class SalesTaxResult:
    """Tax on the vehicle sale itself."""

    calculation_id: str
    total_tax: str
    breakdown: TaxBreakdown
    tax_rate: TaxRateBreakdown
    taxable_amount: str
    vehicle_price: str
    trade_in_credit: TradeInCredit
    jurisdiction: Jurisdiction
    state_rules_version: int
    special_scheme: str
    calculation_date: date
    calculated_at: datetime
    calculated_by: str
    validation: Optional[ValidationOutcome] = None

    @property
    def warnings(self) -> list[str]:
        if self.validation is None:
            return []
        return self.validation.errors + self.validation.warnings

    def to_dict(self) -> dict[str, Any]:
        return {
            "calculation_id": self.calculation_id,
            "total_tax": self.total_tax,
            "breakdown": self.breakdown.to_dict(),
            "tax_rate": self.tax_rate.to_dict(),
            "taxable_amount": self.taxable_amount,
            "vehicle_price": self.vehicle_price,
            "trade_in_credit": self.trade_in_credit.to_dict(),
            "jurisdiction": self.jurisdiction.to_dict(),
            "state_rules_version": self.state_rules_version,
            "special_scheme": self.special_scheme,
            "calculation_date": self.calculation_date.isoformat(),
            "calculated_at": self.calculated_at.isoformat(),
            "calculated_by": self.calculated_by,
            "validation": self.validation.to_dict() if self.validation else None,
        }


@dataclass
class CompleteTaxBreakdown:
    """Sales tax plus every fee on the deal, with totals."""

    sales_tax: SalesTaxResult
    fee_tax: str
    total_tax: str
    tax_breakdown: TaxBreakdown
    doc_fee: str
    title_fee: str
    registration_fee: str
    fees: list[DealFee]
    total_fees: str
    total_taxes_and_fees: str
    total_taxable: str
    total_non_taxable: str
    validation: ValidationOutcome

    @property
    def calculation_id(self) -> str:
        return self.sales_tax.calculation_id

    @property
    def validated(self) -> bool:
        return self.validation.passed

    @property
    def validation_errors(self) -> list[str]:
        return list(self.validation.errors)

    @property
    def taxable_fees(self) -> list[DealFee]:
        return [f for f in self.fees if f.taxable]

    @property
    def non_taxable_fees(self) -> list[DealFee]:
        return [f for f in self.fees if not f.taxable]

    def to_dict(self) -> dict[str, Any]:
        return {
            "calculation_id": self.calculation_id,
            "sales_tax": self.sales_tax.to_dict(),
            "fee_tax": self.fee_tax,
            "total_tax": self.total_tax,
            "tax_breakdown": self.tax_breakdown.to_dict(),
            "doc_fee": self.doc_fee,
            "title_fee": self.title_fee,
            "registration_fee": self.registration_fee,
            "fees": [f.to_dict() for f in self.fees],
            "total_fees": self.total_fees,
            "total_taxes_and_fees": self.total_taxes_and_fees,
            "total_taxable": self.total_taxable,
            "total_non_taxable": self.total_non_taxable,
            "validation": self.validation.to_dict(),
        }


@dataclass(frozen=True)
class ReproductionResult:
    calculation_id: str
    matches: bool
    recorded: dict[str, Any]
    recomputed: dict[str, Any]


# ---------------------------------------------------------------------------
# Pure computation over canonical snapshots
#
# These functions see only the recorded inputs, rules and rates, so an audit
# entry can be recomputed later without touching reference data.
# ---------------------------------------------------------------------------


def trade_in_credit_for(trade_in_value: Optional[str], rules: StateSpecificRules) -> TradeInCredit:
    """
    Credit a trade-in earns under ``rules``.

    No credit when the state disallows it. Otherwise the full value, limited
    by the absolute cap and/or the percentage, whichever is more restrictive.
    """
    value = dm.to_money_string(dm.validate_non_negative(trade_in_value or "0", "trade_in_value"))
    if not rules.allows_trade_in_credit:
        return TradeInCredit(False, dm.ZERO, f"{rules.state_code} does not allow trade-in credit")

    limits: list[tuple[str, str]] = []
    if rules.trade_in_credit_cap is not None:
        limits.append(
            (dm.apply_cap(value, rules.trade_in_credit_cap),
             f"Trade-in credit capped at {rules.trade_in_credit_cap} ({rules.state_code})")
        )
    if rules.trade_in_credit_percent is not None:
        limits.append(
            (dm.apply_percent(value, rules.trade_in_credit_percent),
             f"Trade-in credit limited to {dm.to_percent_string(rules.trade_in_credit_percent)} "
             f"of trade-in value ({rules.state_code})")
        )

    credit, rule = value, f"Full trade-in credit ({rules.state_code})"
    if limits:
        limited, limit_rule = min(limits, key=lambda item: dm.to_decimal(item[0]))
        if dm.is_less_than(limited, value):
            credit, rule = limited, limit_rule
    return TradeInCredit(True, credit, rule)


def _vehicle_tax(inputs: dict[str, Any], rules: StateSpecificRules, rates: TaxRateBreakdown) -> dict[str, Any]:
    price = inputs["vehicle_price"]
    credit = trade_in_credit_for(inputs.get("trade_in_value"), rules)

    base = dm.subtract(price, credit.credit_amount, floor_at_zero=True)
    if inputs.get("rebate_manufacturer") and not rules.manufacturer_rebate_taxable:
        base = dm.subtract(base, inputs["rebate_manufacturer"], floor_at_zero=True)
    if inputs.get("rebate_dealer") and not rules.dealer_rebate_taxable:
        base = dm.subtract(base, inputs["rebate_dealer"], floor_at_zero=True)
    base = dm.to_money_string(base)

    breakdown = TaxBreakdown.from_parts(dm.distribute(base, rates.components))
    return {
        "taxable_amount": base,
        "trade_in_credit": credit.to_dict(),
        "total_tax": dm.calculate_tax(base, rates.total_rate),
        "breakdown": breakdown.to_dict(),
    }


def _capped_doc_fee(requested: Optional[str], rules: StateSpecificRules) -> str:
    fee = dm.to_money_string(dm.validate_non_negative(requested or "0", "doc_fee"))
    if rules.doc_fee_capped and rules.doc_fee_max is not None:
        fee = dm.apply_cap(fee, rules.doc_fee_max)
    return fee


def _deal_fees(
    inputs: dict[str, Any],
    rules: StateSpecificRules,
    rates: TaxRateBreakdown,
    vehicle: dict[str, Any],
) -> dict[str, Any]:
    doc_fee = _capped_doc_fee(inputs.get("doc_fee"), rules)
    title_fee = rules.title_fee
    registration_fee = rules.registration_fee

    fees: list[DealFee] = []

    def item(code: str, name: str, amount: Optional[str], taxable: bool) -> None:
        if amount is not None and not dm.is_zero(amount):
            fees.append(DealFee(code, name, dm.to_money_string(amount), taxable))

    item("DOC_FEE", "Documentation Fee", doc_fee, rules.doc_fee_taxable)
    item("TITLE", "Title Fee", title_fee, rules.title_fee_taxable)
    item("REGISTRATION", "Registration Fee", registration_fee, False)
    item("SERVICE_CONTRACT", "Service Contract", inputs.get("service_contracts"),
         rules.service_contracts_taxable)
    item("GAP", "GAP Insurance", inputs.get("gap"), rules.gap_taxable)
    for acc in inputs.get("accessories", []):
        item(acc["code"], acc["name"], acc["amount"], rules.accessories_taxable and acc["taxable"])
    for fee in inputs.get("other_fees", []):
        item(fee["code"], fee["name"], fee["amount"], fee["taxable"])

    taxable_fee_base = dm.sum_values(f.amount for f in fees if f.taxable)
    non_taxable = dm.sum_values(f.amount for f in fees if not f.taxable)
    fee_breakdown = TaxBreakdown.from_parts(dm.distribute(taxable_fee_base, rates.components))
    fee_tax = dm.calculate_tax(taxable_fee_base, rates.total_rate)

    vehicle_breakdown = TaxBreakdown(**vehicle["breakdown"])
    tax_breakdown = vehicle_breakdown.plus(fee_breakdown)
    total_tax = dm.add(vehicle["total_tax"], fee_tax)
    total_fees = dm.sum_values(f.amount for f in fees)

    return {
        "doc_fee": doc_fee,
        "title_fee": title_fee,
        "registration_fee": registration_fee,
        "fees": [f.to_dict() for f in fees],
        "fee_tax": fee_tax,
        "total_tax": total_tax,
        "tax_breakdown": tax_breakdown.to_dict(),
        "total_fees": total_fees,
        "total_taxes_and_fees": dm.add(total_tax, total_fees),
        "total_taxable": dm.add(vehicle["taxable_amount"], taxable_fee_base),
        "total_non_taxable": non_taxable,
    }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class VehicleTaxCalculator:
    """
    Vehicle tax calculation engine.

    Resolves jurisdiction rates and state rules, computes the vehicle and
    deal taxes, validates the result and records the audit trail.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        settings: Optional[EngineSettings] = None,
        cache: Optional[ReferenceCache] = None,
        resolver: Optional[JurisdictionResolver] = None,
        state_rules: Optional[StateRuleTable] = None,
        audit: Optional[AuditTrailStore] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._session_factory = session_factory or create_session_factory(self.settings.database_url)
        self.resolver = resolver or JurisdictionResolver(self._session_factory, cache, self.settings)
        self.state_rules = state_rules or StateRuleTable(self._session_factory, cache)
        self.audit = audit or AuditTrailStore(self._session_factory)

    @classmethod
    def from_settings(
        cls, settings: Optional[EngineSettings] = None, seed: bool = True
    ) -> "VehicleTaxCalculator":
        """Engine on ``settings.database_url``, seeded with bundled data if empty."""
        settings = settings or get_settings()
        session_factory = create_session_factory(settings.database_url)
        if seed:
            with session_factory() as s:
                empty = s.scalars(select(StateRuleRow.id).limit(1)).first() is None
            if empty:
                seed_reference_data(session_factory)
        return cls(session_factory, settings, cache_from_settings(settings))

    @property
    def session_factory(self) -> sessionmaker:
        return self._session_factory

    @contextmanager
    def _transaction(self, session: Optional[Session]) -> Iterator[Session]:
        if session is not None:
            yield session
        else:
            with self._session_factory.begin() as own:
                yield own

    # ------------------------------------------------------------------
    # Input validation
    # ------------------------------------------------------------------

    def _snapshot_request(self, request: SalesTaxRequest) -> dict[str, Any]:
        if not request.dealership_id:
            raise InvalidTaxCalculationError("dealership_id is required", field="dealership_id")
        state = (request.state or "").strip().upper()
        if len(state) != 2 or not state.isalpha():
            raise InvalidTaxCalculationError("State code must be 2 letters", field="state")
        postal = normalize_postal_code(request.postal_code) if request.postal_code else None
        if postal is None and not (request.county or request.city):
            raise InvalidTaxCalculationError(
                "postal_code, or county/city, is required", field="postal_code"
            )

        calc_date = request.calculation_date or date.today()
        if isinstance(calc_date, datetime):
            calc_date = calc_date.date()

        def money(value: Optional[str], name: str) -> Optional[str]:
            if value is None:
                return None
            return dm.to_money_string(dm.validate_non_negative(value, name))

        snapshot: dict[str, Any] = {
            "dealership_id": request.dealership_id,
            "deal_id": request.deal_id,
            "user_id": request.user_id,
            "vehicle_price": money(request.vehicle_price, "vehicle_price"),
            "trade_in_value": money(request.trade_in_value, "trade_in_value"),
            "rebate_manufacturer": money(request.rebate_manufacturer, "rebate_manufacturer"),
            "rebate_dealer": money(request.rebate_dealer, "rebate_dealer"),
            "postal_code": postal,
            "state": state,
            "county": request.county,
            "city": request.city,
            "calculation_date": calc_date.isoformat(),
        }
        if snapshot["vehicle_price"] is None:
            raise InvalidTaxCalculationError("vehicle_price is required", field="vehicle_price")

        if isinstance(request, DealTaxRequest):
            snapshot["doc_fee"] = money(request.doc_fee, "doc_fee")
            snapshot["service_contracts"] = money(request.service_contracts, "service_contracts")
            snapshot["gap"] = money(request.gap, "gap")
            snapshot["accessories"] = [
                {**f.to_dict(), "amount": money(f.amount, f"accessory: {f.name}")}
                for f in request.accessories
            ]
            snapshot["other_fees"] = [
                {**f.to_dict(), "amount": money(f.amount, f"fee: {f.name}")}
                for f in request.other_fees
            ]
        return snapshot

    # ------------------------------------------------------------------
    # Reference resolution
    # ------------------------------------------------------------------

    def _resolve(
        self, inputs: dict[str, Any], session: Session
    ) -> tuple[Jurisdiction, StateSpecificRules, TaxRateBreakdown, TaxRateBreakdown]:
        as_of = date.fromisoformat(inputs["calculation_date"])
        if inputs["postal_code"]:
            jurisdiction = self.resolver.resolve_by_postal_code(inputs["postal_code"], as_of, session)
        else:
            jurisdiction = self.resolver.resolve_by_location(
                inputs["state"], inputs["county"], inputs["city"], as_of, session
            )
        if jurisdiction.state != inputs["state"]:
            raise InvalidTaxCalculationError(
                f"Postal code {jurisdiction.postal_code} is in {jurisdiction.state}, "
                f"not {inputs['state']}",
                field="state",
            )
        rules = self.state_rules.get_rules(inputs["state"], as_of, session)
        jurisdiction_rates = self.resolver.get_rates(jurisdiction, session)
        effective = strategy_for(rules.special_scheme).effective_rates(jurisdiction_rates, rules)
        return jurisdiction, rules, jurisdiction_rates, effective

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def calculate_sales_tax(
        self, request: SalesTaxRequest, session: Optional[Session] = None
    ) -> SalesTaxResult:
        """
        Tax on a vehicle sale.

        Writes one SALES_TAX audit entry. With ``session`` the entry joins
        the caller's transaction.
        """
        inputs = self._snapshot_request(request)
        with self._transaction(session) as s:
            jurisdiction, rules, jurisdiction_rates, effective = self._resolve(inputs, s)
            vehicle = _vehicle_tax(inputs, rules, effective)
            result = self._sales_result(inputs, vehicle, jurisdiction, rules, effective)
            result.validation = self.validate_tax_calculation(result, rules)
            self._record(
                CalculationType.SALES_TAX,
                result,
                inputs,
                vehicle,
                self._rules_snapshot(jurisdiction, rules, jurisdiction_rates, effective, vehicle),
                s,
            )
        self._log_result(result, result.total_tax)
        return result

    def calculate_deal_taxes(
        self, request: DealTaxRequest, session: Optional[Session] = None
    ) -> CompleteTaxBreakdown:
        """
        Complete tax and fee breakdown for a deal.

        Writes one COMPLETE_DEAL audit entry covering the whole deal.
        """
        inputs = self._snapshot_request(request)
        with self._transaction(session) as s:
            jurisdiction, rules, jurisdiction_rates, effective = self._resolve(inputs, s)
            vehicle = _vehicle_tax(inputs, rules, effective)
            deal = _deal_fees(inputs, rules, effective, vehicle)
            sales = self._sales_result(inputs, vehicle, jurisdiction, rules, effective)
            sales.validation = self.validate_tax_calculation(sales, rules)

            breakdown = CompleteTaxBreakdown(
                sales_tax=sales,
                fee_tax=deal["fee_tax"],
                total_tax=deal["total_tax"],
                tax_breakdown=TaxBreakdown(**deal["tax_breakdown"]),
                doc_fee=deal["doc_fee"],
                title_fee=deal["title_fee"],
                registration_fee=deal["registration_fee"],
                fees=[DealFee(**f) for f in deal["fees"]],
                total_fees=deal["total_fees"],
                total_taxes_and_fees=deal["total_taxes_and_fees"],
                total_taxable=deal["total_taxable"],
                total_non_taxable=deal["total_non_taxable"],
                validation=self._validate_deal(sales.validation, deal),
            )
            self._record(
                CalculationType.COMPLETE_DEAL,
                sales,
                inputs,
                {"vehicle": vehicle, **deal},
                self._rules_snapshot(jurisdiction, rules, jurisdiction_rates, effective, vehicle),
                s,
                validation=breakdown.validation,
            )
        self._log_result(sales, breakdown.total_tax)
        return breakdown

    def calculate_trade_in_credit(
        self, trade_in_value: str, state_rules: StateSpecificRules
    ) -> TradeInCredit:
        return trade_in_credit_for(trade_in_value, state_rules)

    def calculate_doc_fee(
        self, state: str, requested_fee: Optional[str] = None, as_of: Optional[date] = None
    ) -> str:
        """Requested doc fee, capped where the state caps it."""
        return _capped_doc_fee(requested_fee, self.state_rules.get_rules(state, as_of))

    def calculate_title_fee(self, state: str, as_of: Optional[date] = None) -> str:
        return self.state_rules.get_rules(state, as_of).title_fee

    def calculate_registration_fee(self, state: str, as_of: Optional[date] = None) -> str:
        return self.state_rules.get_rules(state, as_of).registration_fee

    def validate_tax_calculation(
        self, result: SalesTaxResult, rules: StateSpecificRules
    ) -> ValidationOutcome:
        """
        Sanity-check a result.

        Errors: components not summing to the total (beyond the configured
        tolerance), a rate outside ``[0, max_reasonable_rate]``, a taxable
        amount that is negative or above the vehicle price. Warnings:
        stale jurisdiction data. A failed check never blocks the result.
        """
        errors: list[str] = []
        warnings: list[str] = []

        component_sum = result.breakdown.total
        if not dm.within_tolerance(component_sum, result.total_tax, self.settings.breakdown_tolerance):
            errors.append(
                f"Tax breakdown sum ({component_sum}) does not match total tax ({result.total_tax})"
            )

        rate = result.tax_rate.total_rate
        if dm.is_negative(rate) or dm.is_greater_than(rate, self.settings.max_reasonable_rate):
            errors.append(
                f"Total tax rate {dm.to_percent_string(rate)} is outside 0%-"
                f"{dm.to_percent_string(self.settings.max_reasonable_rate)}; verify jurisdiction"
            )
        if dm.is_negative(result.taxable_amount):
            errors.append("Taxable amount cannot be negative")
        elif dm.is_greater_than(result.taxable_amount, result.vehicle_price):
            errors.append(
                f"Taxable amount ({result.taxable_amount}) exceeds vehicle price ({result.vehicle_price})"
            )

        if not self.resolver.is_jurisdiction_current(result.jurisdiction, result.calculation_date):
            warnings.append(
                f"Jurisdiction data for {result.jurisdiction.postal_code} has not been verified "
                f"in the last {self.settings.stale_jurisdiction_days} days"
            )
        if rules.state_code != result.jurisdiction.state:
            errors.append(
                f"Rules for {rules.state_code} applied to a {result.jurisdiction.state} jurisdiction"
            )

        return ValidationOutcome(passed=not errors, errors=errors, warnings=warnings)

    def audit_tax_calculation(self, deal_id: str) -> list[TaxAuditLog]:
        """Every calculation recorded for ``deal_id``, oldest first."""
        return self.audit.get_by_deal(deal_id)

    def reproduce_calculation(self, calculation_id: str) -> ReproductionResult:
        """
        Recompute an audited calculation from its own snapshots.

        Only the recorded inputs, rules and rates are used, so the outcome
        is independent of any reference data loaded since.
        """
        entry = self.audit.get_by_calculation_id(calculation_id)
        rules = StateSpecificRules.from_dict(entry.rules_applied["state_rules"])
        effective = TaxRateBreakdown.from_dict(entry.rules_applied["effective_rates"])
        vehicle = _vehicle_tax(entry.inputs, rules, effective)
        if entry.calculation_type is CalculationType.COMPLETE_DEAL:
            recomputed = {"vehicle": vehicle, **_deal_fees(entry.inputs, rules, effective, vehicle)}
        else:
            recomputed = vehicle
        return ReproductionResult(
            calculation_id=calculation_id,
            matches=recomputed == entry.outputs,
            recorded=entry.outputs,
            recomputed=recomputed,
        )

    # ------------------------------------------------------------------
    # Assembly helpers
    # ------------------------------------------------------------------

    def _sales_result(
        self,
        inputs: dict[str, Any],
        vehicle: dict[str, Any],
        jurisdiction: Jurisdiction,
        rules: StateSpecificRules,
        effective: TaxRateBreakdown,
    ) -> SalesTaxResult:
        return SalesTaxResult(
            calculation_id=str(uuid.uuid4()),
            total_tax=vehicle["total_tax"],
            breakdown=TaxBreakdown(**vehicle["breakdown"]),
            tax_rate=effective,
            taxable_amount=vehicle["taxable_amount"],
            vehicle_price=inputs["vehicle_price"],
            trade_in_credit=TradeInCredit(**vehicle["trade_in_credit"]),
            jurisdiction=jurisdiction,
            state_rules_version=rules.version,
            special_scheme=rules.special_scheme.value,
            calculation_date=date.fromisoformat(inputs["calculation_date"]),
            calculated_at=datetime.now(timezone.utc),
            calculated_by=inputs["user_id"] or DEFAULT_ACTOR,
        )

    @staticmethod
    def _rules_snapshot(
        jurisdiction: Jurisdiction,
        rules: StateSpecificRules,
        jurisdiction_rates: TaxRateBreakdown,
        effective: TaxRateBreakdown,
        vehicle: dict[str, Any],
    ) -> dict[str, Any]:
        return {
            "jurisdiction_id": jurisdiction.id,
            "jurisdiction": jurisdiction.to_dict(),
            "jurisdiction_rates": jurisdiction_rates.to_dict(),
            "effective_rates": effective.to_dict(),
            "state_rules_version": rules.version,
            "state_rules": rules.to_dict(),
            "special_scheme": rules.special_scheme.value,
            "trade_in_credit": vehicle["trade_in_credit"],
        }

    def _validate_deal(self, sales_validation: ValidationOutcome, deal: dict[str, Any]) -> ValidationOutcome:
        errors = list(sales_validation.errors)
        combined = TaxBreakdown(**deal["tax_breakdown"]).total
        if not dm.within_tolerance(combined, deal["total_tax"], self.settings.breakdown_tolerance):
            errors.append(
                f"Deal tax breakdown sum ({combined}) does not match total tax ({deal['total_tax']})"
            )
        return ValidationOutcome(
            passed=not errors, errors=errors, warnings=list(sales_validation.warnings)
        )

    def _record(
        self,
        calculation_type: CalculationType,
        result: SalesTaxResult,
        inputs: dict[str, Any],
        outputs: dict[str, Any],
        rules_applied: dict[str, Any],
        session: Session,
        validation: Optional[ValidationOutcome] = None,
    ) -> None:
        validation = validation or result.validation
        if not validation.passed:
            logger.warning(
                "calculation %s failed validation: %s",
                result.calculation_id,
                "; ".join(validation.errors),
            )
        self.audit.append(
            TaxAuditLog(
                calculation_id=result.calculation_id,
                deal_id=inputs["deal_id"],
                dealership_id=inputs["dealership_id"],
                calculated_by=result.calculated_by,
                calculated_at=result.calculated_at,
                calculation_type=calculation_type,
                inputs=inputs,
                outputs=outputs,
                rules_applied=rules_applied,
                engine_version=self.settings.engine_version,
                state_rules_version=result.state_rules_version,
                validation_passed=validation.passed,
                validation_errors=tuple(validation.errors),
            ),
            session,
        )

    @staticmethod
    def _log_result(result: SalesTaxResult, total_tax: str) -> None:
        logger.info(
            "calculation %s: %s %s taxable %s total tax %s",
            result.calculation_id,
            result.jurisdiction.state,
            result.jurisdiction.postal_code,
            result.taxable_amount,
            total_tax,
        )
