"""
Per-state vehicle tax policy table.

Each state is a row of data, not a class: trade-in credit limits, doc-fee
cap and taxability, title and registration fees, the taxability matrix for
service contracts, GAP and accessories, rebate treatment, and a special
scheme tag. Rule changes insert a new version with its own effective
window; history is never edited in place.
"""

from __future__ import annotations

from dataclasses import MISSING, asdict, dataclass, fields
from datetime import date
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from vehicle_tax import decimal_math as dm
from vehicle_tax.cache import ReferenceCache
from vehicle_tax.db import StateRuleRow
from vehicle_tax.exceptions import (
    InvalidTaxCalculationError,
    OverlappingEffectiveWindowError,
    UnsupportedStateError,
)
from vehicle_tax.logging_config import get_logger

logger = get_logger(__name__)


class SpecialScheme(str, Enum):
    """Vehicle tax structure a state uses."""

    STANDARD = "STANDARD"  # stacked ad-valorem sales tax
    TAVT = "TAVT"  # title ad valorem tax (GA)
    HUT = "HUT"  # highway use tax (NC)
    PRIVILEGE_TAX = "PRIVILEGE_TAX"  # one-time privilege tax (WV)


@dataclass(frozen=True)
class StateSpecificRules:
    """One version of a state's vehicle tax policy."""

    state_code: str
    version: int
    effective_date: date
    allows_trade_in_credit: bool
    end_date: Optional[date] = None
    state_name: str = ""
    trade_in_credit_cap: Optional[str] = None
    trade_in_credit_percent: Optional[str] = None
    doc_fee_max: Optional[str] = None
    doc_fee_capped: bool = False
    doc_fee_taxable: bool = False
    title_fee: str = "0.00"
    title_fee_taxable: bool = False
    registration_fee: str = "0.00"
    service_contracts_taxable: bool = False
    gap_taxable: bool = False
    accessories_taxable: bool = True
    manufacturer_rebate_taxable: bool = False
    dealer_rebate_taxable: bool = True
    special_scheme: SpecialScheme = SpecialScheme.STANDARD
    scheme_rate: Optional[str] = None
    notes: str = ""

    def is_active(self, as_of: date) -> bool:
        return self.effective_date <= as_of and (
            self.end_date is None or as_of < self.end_date
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["special_scheme"] = self.special_scheme.value
        for key in ("effective_date", "end_date"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StateSpecificRules":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        for key in ("effective_date", "end_date"):
            if isinstance(values.get(key), str):
                values[key] = date.fromisoformat(values[key])
        values["special_scheme"] = SpecialScheme(values.get("special_scheme", "STANDARD"))
        return cls(**values)


_POLICY_FIELDS = (
    "allows_trade_in_credit",
    "trade_in_credit_cap",
    "trade_in_credit_percent",
    "doc_fee_max",
    "doc_fee_capped",
    "doc_fee_taxable",
    "title_fee",
    "title_fee_taxable",
    "registration_fee",
    "service_contracts_taxable",
    "gap_taxable",
    "accessories_taxable",
    "manufacturer_rebate_taxable",
    "dealer_rebate_taxable",
    "scheme_rate",
    "notes",
)


_POLICY_DEFAULTS = {
    f.name: f.default
    for f in fields(StateSpecificRules)
    if f.name in _POLICY_FIELDS and f.default is not MISSING
}


def _to_rules(row: StateRuleRow) -> StateSpecificRules:
    return StateSpecificRules(
        state_code=row.state_code,
        version=row.version,
        effective_date=row.effective_date,
        end_date=row.end_date,
        state_name=row.state_name,
        special_scheme=SpecialScheme(row.special_scheme),
        **{name: getattr(row, name) for name in _POLICY_FIELDS},
    )


def _check_policy(policy: dict[str, Any]) -> dict[str, Any]:
    """Canonicalise money/rate fields; reject malformed ones."""
    checked = dict(policy)
    for name in ("trade_in_credit_cap", "doc_fee_max", "title_fee", "registration_fee"):
        if checked.get(name) is not None:
            checked[name] = dm.to_money_string(dm.validate_non_negative(checked[name], name))
    for name in ("trade_in_credit_percent", "scheme_rate"):
        if checked.get(name) is not None:
            value = dm.validate_non_negative(checked[name], name)
            if dm.is_greater_than(value, "1"):
                raise InvalidTaxCalculationError(f"{name} must be a fraction between 0 and 1", field=name)
            checked[name] = dm.to_rate_string(value)
    if checked.get("doc_fee_capped") and checked.get("doc_fee_max") is None:
        raise InvalidTaxCalculationError("doc_fee_capped requires doc_fee_max", field="doc_fee_max")
    return checked


class StateRuleTable:
    """
    Versioned, time-bounded state rule lookup.

    Unknown states raise :class:`UnsupportedStateError`; there is no default
    rule set.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        cache: Optional[ReferenceCache] = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache

    def _versions(self, state_code: str, session: Optional[Session] = None) -> list[StateSpecificRules]:
        def load() -> list[StateSpecificRules]:
            stmt = (
                select(StateRuleRow)
                .where(StateRuleRow.state_code == state_code)
                .order_by(StateRuleRow.version)
            )
            if session is not None:
                return [_to_rules(r) for r in session.scalars(stmt)]
            with self._session_factory() as s:
                return [_to_rules(r) for r in s.scalars(stmt)]

        if self._cache is None:
            return load()
        return self._cache.get_or_load(("state_rules", state_code), load)

    def get_rules(
        self,
        state_code: str,
        as_of: Optional[date] = None,
        session: Optional[Session] = None,
    ) -> StateSpecificRules:
        """Rules active for ``state_code`` on ``as_of`` (default today)."""
        as_of = as_of or date.today()
        code = state_code.strip().upper()
        active = [r for r in self._versions(code, session) if r.is_active(as_of)]
        if not active:
            raise UnsupportedStateError(code, as_of)
        return max(active, key=lambda r: (r.effective_date, r.version))

    def is_supported(self, state_code: str, as_of: Optional[date] = None) -> bool:
        try:
            self.get_rules(state_code, as_of)
        except UnsupportedStateError:
            return False
        return True

    def list_states(self, as_of: Optional[date] = None) -> list[StateSpecificRules]:
        """Active rules for every supported state, sorted by code."""
        as_of = as_of or date.today()
        with self._session_factory() as s:
            codes = s.scalars(select(StateRuleRow.state_code).distinct()).all()
        result = []
        for code in sorted(codes):
            try:
                result.append(self.get_rules(code, as_of))
            except UnsupportedStateError:
                continue
        return result

    def history(self, state_code: str) -> list[StateSpecificRules]:
        return list(self._versions(state_code.strip().upper()))

    def save_rules(
        self,
        state_code: str,
        effective_date: date,
        *,
        state_name: str = "",
        special_scheme: SpecialScheme | str = SpecialScheme.STANDARD,
        end_date: Optional[date] = None,
        **policy: Any,
    ) -> StateSpecificRules:
        """
        Insert a new rule version for ``state_code``.

        The version active at ``effective_date`` is end-dated there and the
        new row gets the next version number. Policy keyword arguments are
        the :class:`StateSpecificRules` policy fields.
        """
        unknown = set(policy) - set(_POLICY_FIELDS)
        if unknown:
            raise InvalidTaxCalculationError(
                f"Unknown rule fields: {', '.join(sorted(unknown))}", field=sorted(unknown)[0]
            )
        if "allows_trade_in_credit" not in policy:
            raise InvalidTaxCalculationError(
                "allows_trade_in_credit is required", field="allows_trade_in_credit"
            )
        if end_date is not None and end_date <= effective_date:
            raise InvalidTaxCalculationError("end_date must be after effective_date", field="end_date")
        checked = _check_policy(policy)
        code = state_code.strip().upper()
        scheme = SpecialScheme(special_scheme)
        if scheme is not SpecialScheme.STANDARD and checked.get("scheme_rate") is None:
            raise InvalidTaxCalculationError(
                f"{scheme.value} scheme requires scheme_rate", field="scheme_rate"
            )

        with self._session_factory.begin() as session:
            existing = session.scalars(
                select(StateRuleRow).where(StateRuleRow.state_code == code)
            ).all()
            for row in existing:
                if row.effective_date >= effective_date and (
                    end_date is None or end_date > row.effective_date
                ):
                    raise OverlappingEffectiveWindowError(
                        f"Rule window for {code} starting {effective_date} overlaps "
                        f"version {row.version} starting {row.effective_date}",
                        details={"state_code": code, "conflicting_version": row.version},
                    )
            for row in existing:
                if row.effective_date < effective_date and (
                    row.end_date is None or row.end_date > effective_date
                ):
                    logger.info("end-dating %s rules v%d at %s", code, row.version, effective_date)
                    row.end_date = effective_date

            row = StateRuleRow(
                state_code=code,
                state_name=state_name,
                version=max((r.version for r in existing), default=0) + 1,
                effective_date=effective_date,
                end_date=end_date,
                special_scheme=scheme.value,
                **{**_POLICY_DEFAULTS, **checked},
            )
            session.add(row)
            session.flush()
            rules = _to_rules(row)

        if self._cache is not None:
            self._cache.invalidate(("state_rules", code))
        return rules
