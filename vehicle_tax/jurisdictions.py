"""
Jurisdiction resolution and rate stacking.

Maps a postal code (or an explicit state/county/city) to the tax
jurisdiction active on a given date, and returns that jurisdiction's four
rate components with their exact sum.

A jurisdiction record is *active* on ``as_of`` when
``effective_date <= as_of < end_date`` (open-ended when ``end_date`` is
None). The data-load path end-dates the previous record whenever a new one
is inserted for the same postal code, so at most one record is active at a
time; should overlapping data slip in anyway, the most recent effective
date wins.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from vehicle_tax import decimal_math as dm
from vehicle_tax.cache import ReferenceCache
from vehicle_tax.config import EngineSettings, get_settings
from vehicle_tax.db import JurisdictionRow
from vehicle_tax.exceptions import (
    InvalidTaxCalculationError,
    JurisdictionNotFoundError,
    OverlappingEffectiveWindowError,
    UnsupportedStateError,
)
from vehicle_tax.logging_config import get_logger

logger = get_logger(__name__)

_POSTAL_CODE = re.compile(r"^\d{5}$")


@dataclass(frozen=True)
class Jurisdiction:
    """A tax authority location and the window its data is valid for."""

    id: str
    postal_code: str
    state: str
    effective_date: date
    county: Optional[str] = None
    city: Optional[str] = None
    special_district: Optional[str] = None
    end_date: Optional[date] = None
    source: str = "manual"
    last_verified: Optional[date] = None

    def is_active(self, as_of: date) -> bool:
        return self.effective_date <= as_of and (
            self.end_date is None or as_of < self.end_date
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("effective_date", "end_date", "last_verified"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Jurisdiction":
        def _d(v: Any) -> Optional[date]:
            return date.fromisoformat(v) if isinstance(v, str) else v

        return cls(
            id=data["id"],
            postal_code=data["postal_code"],
            state=data["state"],
            effective_date=_d(data["effective_date"]),
            county=data.get("county"),
            city=data.get("city"),
            special_district=data.get("special_district"),
            end_date=_d(data.get("end_date")),
            source=data.get("source", "manual"),
            last_verified=_d(data.get("last_verified")),
        )


@dataclass(frozen=True)
class TaxRateBreakdown:
    """Stacked rates for one jurisdiction, as decimal-fraction strings."""

    state_rate: str
    county_rate: str
    city_rate: str
    special_district_rate: str
    total_rate: str
    effective_date: date

    @classmethod
    def from_components(
        cls,
        state_rate: str,
        county_rate: str = "0",
        city_rate: str = "0",
        special_district_rate: str = "0",
        effective_date: Optional[date] = None,
    ) -> "TaxRateBreakdown":
        components = [
            dm.to_rate_string(dm.validate_non_negative(r, name))
            for r, name in (
                (state_rate, "state_rate"),
                (county_rate, "county_rate"),
                (city_rate, "city_rate"),
                (special_district_rate, "special_district_rate"),
            )
        ]
        return cls(
            *components,
            total_rate=dm.to_rate_string(dm.add(*components)),
            effective_date=effective_date or date.today(),
        )

    @property
    def components(self) -> list[str]:
        return [self.state_rate, self.county_rate, self.city_rate, self.special_district_rate]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["effective_date"] = self.effective_date.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaxRateBreakdown":
        return cls(
            state_rate=data["state_rate"],
            county_rate=data["county_rate"],
            city_rate=data["city_rate"],
            special_district_rate=data["special_district_rate"],
            total_rate=data["total_rate"],
            effective_date=date.fromisoformat(data["effective_date"]),
        )


@dataclass(frozen=True)
class _RateRecord:
    jurisdiction: Jurisdiction
    rates: TaxRateBreakdown


@dataclass(frozen=True)
class EstimatedRates:
    """
    Rates for caller-side graceful degradation.

    ``source`` is ``"database"`` when a real jurisdiction was found and
    ``"fallback"`` when a state-average estimate was substituted; callers
    must surface the latter as an estimate.
    """

    rates: TaxRateBreakdown
    source: str
    jurisdiction: Optional[Jurisdiction] = None

    @property
    def is_estimate(self) -> bool:
        return self.source == "fallback"


def normalize_postal_code(code: str) -> str:
    """Strip whitespace and any ZIP+4 extension: ``"90001-1234"`` -> ``"90001"``."""
    if not isinstance(code, str):
        raise InvalidTaxCalculationError("Postal code must be a string", field="postal_code")
    base = code.strip().split("-", 1)[0]
    if not _POSTAL_CODE.match(base):
        raise InvalidTaxCalculationError(
            f"Invalid postal code format: {code!r}", field="postal_code"
        )
    return base


def _to_record(row: JurisdictionRow) -> _RateRecord:
    jurisdiction = Jurisdiction(
        id=row.id,
        postal_code=row.postal_code,
        state=row.state,
        effective_date=row.effective_date,
        county=row.county,
        city=row.city,
        special_district=row.special_district,
        end_date=row.end_date,
        source=row.source,
        last_verified=row.last_verified,
    )
    rates = TaxRateBreakdown.from_components(
        row.state_rate,
        row.county_rate,
        row.city_rate,
        row.special_district_rate,
        effective_date=row.effective_date,
    )
    return _RateRecord(jurisdiction, rates)


def _most_recent_active(records: list[_RateRecord], as_of: date) -> Optional[_RateRecord]:
    active = [r for r in records if r.jurisdiction.is_active(as_of)]
    if not active:
        return None
    if len(active) > 1:
        logger.warning(
            "overlapping jurisdiction windows for %s on %s; using most recent",
            active[0].jurisdiction.postal_code,
            as_of,
        )
    # Id breaks ties so the choice never depends on row order
    return max(active, key=lambda r: (r.jurisdiction.effective_date, r.jurisdiction.id))


class JurisdictionResolver:
    """
    Queryable store of time-bounded jurisdiction rate records.

    Lookups go through an optional :class:`ReferenceCache`; administrative
    writes clear it.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        cache: Optional[ReferenceCache] = None,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _cached(self, key: tuple, loader):
        if self._cache is None:
            return loader()
        return self._cache.get_or_load(key, loader)

    def _records_for_postal_code(
        self, code: str, session: Optional[Session] = None
    ) -> list[_RateRecord]:
        def load() -> list[_RateRecord]:
            stmt = select(JurisdictionRow).where(JurisdictionRow.postal_code == code)
            if session is not None:
                return [_to_record(r) for r in session.scalars(stmt)]
            with self._session_factory() as s:
                return [_to_record(r) for r in s.scalars(stmt)]

        return self._cached(("postal", code), load)

    def _record_by_id(self, jurisdiction_id: str, session: Optional[Session] = None) -> Optional[_RateRecord]:
        def load() -> Optional[_RateRecord]:
            if session is not None:
                row = session.get(JurisdictionRow, jurisdiction_id)
                return _to_record(row) if row else None
            with self._session_factory() as s:
                row = s.get(JurisdictionRow, jurisdiction_id)
                return _to_record(row) if row else None

        return self._cached(("id", jurisdiction_id), load)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_by_postal_code(
        self,
        code: str,
        as_of: Optional[date] = None,
        session: Optional[Session] = None,
    ) -> Jurisdiction:
        """Return the jurisdiction active for ``code`` on ``as_of`` (default today)."""
        as_of = as_of or date.today()
        normalized = normalize_postal_code(code)
        record = _most_recent_active(self._records_for_postal_code(normalized, session), as_of)
        if record is None:
            raise JurisdictionNotFoundError(normalized, as_of)
        return record.jurisdiction

    def resolve_by_location(
        self,
        state: str,
        county: Optional[str] = None,
        city: Optional[str] = None,
        as_of: Optional[date] = None,
        session: Optional[Session] = None,
    ) -> Jurisdiction:
        """
        Resolve from an explicit state/county/city.

        County and city match case-insensitively. When several postal codes
        share the location, the most recent effective record wins and the
        lowest postal code breaks remaining ties.
        """
        as_of = as_of or date.today()
        state = state.strip().upper()

        def load() -> list[_RateRecord]:
            stmt = select(JurisdictionRow).where(JurisdictionRow.state == state)
            if county:
                stmt = stmt.where(func.lower(JurisdictionRow.county) == county.strip().lower())
            if city:
                stmt = stmt.where(func.lower(JurisdictionRow.city) == city.strip().lower())
            if session is not None:
                return [_to_record(r) for r in session.scalars(stmt)]
            with self._session_factory() as s:
                return [_to_record(r) for r in s.scalars(stmt)]

        key = ("location", state, (county or "").lower(), (city or "").lower())
        records = [r for r in self._cached(key, load) if r.jurisdiction.is_active(as_of)]
        if not records:
            label = ", ".join(p for p in (city, county, state) if p)
            raise JurisdictionNotFoundError(label, as_of)
        best = max(
            records,
            key=lambda r: (r.jurisdiction.effective_date, _reverse(r.jurisdiction.postal_code)),
        )
        return best.jurisdiction

    def get_rates(self, jurisdiction: Jurisdiction, session: Optional[Session] = None) -> TaxRateBreakdown:
        """Rate components and their exact total for ``jurisdiction``."""
        record = self._record_by_id(jurisdiction.id, session)
        if record is None:
            raise JurisdictionNotFoundError(jurisdiction.postal_code)
        return record.rates

    def list_jurisdictions(self, state: str, as_of: Optional[date] = None) -> list[Jurisdiction]:
        as_of = as_of or date.today()
        with self._session_factory() as s:
            rows = s.scalars(
                select(JurisdictionRow)
                .where(JurisdictionRow.state == state.strip().upper())
                .order_by(JurisdictionRow.county, JurisdictionRow.city, JurisdictionRow.postal_code)
            )
            records = [_to_record(r) for r in rows]
        return [r.jurisdiction for r in records if r.jurisdiction.is_active(as_of)]

    def is_jurisdiction_current(self, jurisdiction: Jurisdiction, as_of: Optional[date] = None) -> bool:
        """True when the record was verified within the staleness window."""
        if jurisdiction.last_verified is None:
            return False
        as_of = as_of or date.today()
        horizon = as_of - timedelta(days=self.settings.stale_jurisdiction_days)
        return jurisdiction.last_verified >= horizon

    # ------------------------------------------------------------------
    # Explicit fallback
    # ------------------------------------------------------------------

    def resolve_rates_with_fallback(
        self,
        postal_code: str,
        state: str,
        as_of: Optional[date] = None,
    ) -> EstimatedRates:
        """
        Resolve rates, substituting a labelled state-average estimate when
        no jurisdiction exists. For consumer-facing estimates only; the
        calculation engine never uses this.
        """
        from vehicle_tax.reference_data import STATE_AVERAGE_RATES

        try:
            jurisdiction = self.resolve_by_postal_code(postal_code, as_of)
        except JurisdictionNotFoundError:
            average = STATE_AVERAGE_RATES.get(state.strip().upper())
            if average is None:
                raise UnsupportedStateError(state)
            logger.warning(
                "no jurisdiction for %s; using %s state-average estimate", postal_code, state
            )
            state_rate, local_rate = average
            return EstimatedRates(
                rates=TaxRateBreakdown.from_components(
                    state_rate, county_rate=local_rate, effective_date=as_of
                ),
                source="fallback",
            )
        return EstimatedRates(
            rates=self.get_rates(jurisdiction), source="database", jurisdiction=jurisdiction
        )

    # ------------------------------------------------------------------
    # Administrative writes
    # ------------------------------------------------------------------

    def save_jurisdiction(
        self,
        postal_code: str,
        state: str,
        effective_date: date,
        state_rate: str,
        county_rate: str = "0",
        city_rate: str = "0",
        special_district_rate: str = "0",
        county: Optional[str] = None,
        city: Optional[str] = None,
        special_district: Optional[str] = None,
        end_date: Optional[date] = None,
        source: str = "manual",
        last_verified: Optional[date] = None,
    ) -> Jurisdiction:
        """
        Insert a jurisdiction record.

        The record active at ``effective_date`` for the same postal code is
        end-dated at ``effective_date``. Inserting a window that would
        overlap a record starting on or after ``effective_date`` is refused.
        """
        code = normalize_postal_code(postal_code)
        if end_date is not None and end_date <= effective_date:
            raise InvalidTaxCalculationError("end_date must be after effective_date", field="end_date")
        rates = TaxRateBreakdown.from_components(
            state_rate, county_rate, city_rate, special_district_rate, effective_date
        )

        with self._session_factory.begin() as session:
            existing = session.scalars(
                select(JurisdictionRow).where(JurisdictionRow.postal_code == code)
            ).all()
            for row in existing:
                starts_later = row.effective_date >= effective_date
                if starts_later and (end_date is None or end_date > row.effective_date):
                    raise OverlappingEffectiveWindowError(
                        f"Jurisdiction window for {code} starting {effective_date} overlaps "
                        f"record starting {row.effective_date}",
                        details={"postal_code": code, "conflicting_id": row.id},
                    )
            for row in existing:
                if row.effective_date < effective_date and (
                    row.end_date is None or row.end_date > effective_date
                ):
                    logger.info("end-dating jurisdiction %s (%s) at %s", row.id, code, effective_date)
                    row.end_date = effective_date

            row = JurisdictionRow(
                postal_code=code,
                state=state.strip().upper(),
                county=county,
                city=city,
                special_district=special_district,
                state_rate=rates.state_rate,
                county_rate=rates.county_rate,
                city_rate=rates.city_rate,
                special_district_rate=rates.special_district_rate,
                effective_date=effective_date,
                end_date=end_date,
                source=source,
                last_verified=last_verified,
            )
            session.add(row)
            session.flush()
            record = _to_record(row)

        if self._cache is not None:
            self._cache.clear()
        return record.jurisdiction

    def mark_verified(self, jurisdiction_id: str, when: Optional[date] = None) -> None:
        with self._session_factory.begin() as session:
            row = session.get(JurisdictionRow, jurisdiction_id)
            if row is None:
                raise JurisdictionNotFoundError(jurisdiction_id)
            row.last_verified = when or date.today()
        if self._cache is not None:
            self._cache.clear()

    def load_csv(self, path: str | Path) -> int:
        """
        Bulk-load jurisdiction rows from CSV.

        Required columns: postal_code, state, effective_date, state_rate.
        Optional: county, city, special_district, county_rate, city_rate,
        special_district_rate, end_date, source, last_verified. Every column
        is read as text so rates are never parsed as floats. Rows are
        applied in effective-date order.
        """
        frame = pd.read_csv(path, dtype=str, keep_default_na=False)
        missing = {"postal_code", "state", "effective_date", "state_rate"} - set(frame.columns)
        if missing:
            raise InvalidTaxCalculationError(
                f"CSV is missing columns: {', '.join(sorted(missing))}", field="csv"
            )
        frame = frame.sort_values(["effective_date", "postal_code"], kind="stable")

        def opt(row: pd.Series, name: str) -> Optional[str]:
            value = row.get(name, "")
            return value.strip() or None if isinstance(value, str) else None

        count = 0
        for _, row in frame.iterrows():
            end = opt(row, "end_date")
            verified = opt(row, "last_verified")
            self.save_jurisdiction(
                postal_code=row["postal_code"],
                state=row["state"],
                effective_date=date.fromisoformat(row["effective_date"].strip()),
                state_rate=row["state_rate"].strip(),
                county_rate=opt(row, "county_rate") or "0",
                city_rate=opt(row, "city_rate") or "0",
                special_district_rate=opt(row, "special_district_rate") or "0",
                county=opt(row, "county"),
                city=opt(row, "city"),
                special_district=opt(row, "special_district"),
                end_date=date.fromisoformat(end) if end else None,
                source=opt(row, "source") or f"csv:{Path(path).name}",
                last_verified=date.fromisoformat(verified) if verified else None,
            )
            count += 1
        logger.info("loaded %d jurisdiction rows from %s", count, path)
        return count


def _reverse(postal_code: str) -> tuple[int, ...]:
    # max() with this key picks the lowest postal code
    return tuple(-ord(c) for c in postal_code)
