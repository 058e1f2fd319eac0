"""
Append-only audit trail of tax calculations.

Each completed calculation writes exactly one entry holding the full input
snapshot, the full output snapshot, and the exact rule and rate versions
applied. Entries cannot be updated or deleted; they are the only way to
reproduce a historical total.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from vehicle_tax.db import TaxAuditLogRow
from vehicle_tax.exceptions import AuditRecordNotFoundError
from vehicle_tax.logging_config import get_logger

logger = get_logger(__name__)


class CalculationType(str, Enum):
    SALES_TAX = "SALES_TAX"
    COMPLETE_DEAL = "COMPLETE_DEAL"


@dataclass(frozen=True)
class TaxAuditLog:
    """One immutable audit entry."""

    calculation_id: str
    dealership_id: str
    calculated_by: str
    calculated_at: datetime
    calculation_type: CalculationType
    inputs: dict[str, Any]
    outputs: dict[str, Any]
    rules_applied: dict[str, Any]
    engine_version: str
    state_rules_version: int
    validation_passed: bool
    validation_errors: tuple[str, ...] = field(default_factory=tuple)
    deal_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "calculation_id": self.calculation_id,
            "deal_id": self.deal_id,
            "dealership_id": self.dealership_id,
            "calculated_by": self.calculated_by,
            "calculated_at": self.calculated_at.isoformat(),
            "calculation_type": self.calculation_type.value,
            "inputs": copy.deepcopy(self.inputs),
            "outputs": copy.deepcopy(self.outputs),
            "rules_applied": copy.deepcopy(self.rules_applied),
            "engine_version": self.engine_version,
            "state_rules_version": self.state_rules_version,
            "validation_passed": self.validation_passed,
            "validation_errors": list(self.validation_errors),
        }


def _to_entry(row: TaxAuditLogRow) -> TaxAuditLog:
    calculated_at = row.calculated_at
    if calculated_at.tzinfo is None:
        # SQLite drops the offset; everything is written in UTC
        calculated_at = calculated_at.replace(tzinfo=timezone.utc)
    return TaxAuditLog(
        calculation_id=row.calculation_id,
        deal_id=row.deal_id,
        dealership_id=row.dealership_id,
        calculated_by=row.calculated_by,
        calculated_at=calculated_at,
        calculation_type=CalculationType(row.calculation_type),
        inputs=copy.deepcopy(row.inputs),
        outputs=copy.deepcopy(row.outputs),
        rules_applied=copy.deepcopy(row.rules_applied),
        engine_version=row.engine_version,
        state_rules_version=row.state_rules_version,
        validation_passed=row.validation_passed,
        validation_errors=tuple(row.validation_errors),
    )


class AuditTrailStore:
    """Append and read audit entries. There is no update or delete."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def append(self, entry: TaxAuditLog, session: Optional[Session] = None) -> str:
        """
        Persist ``entry`` and return its calculation id.

        With ``session`` the row joins the caller's transaction and is
        committed (or rolled back) with it; otherwise it is committed here.
        """
        row = TaxAuditLogRow(
            calculation_id=entry.calculation_id,
            deal_id=entry.deal_id,
            dealership_id=entry.dealership_id,
            calculated_by=entry.calculated_by,
            calculated_at=entry.calculated_at,
            calculation_type=entry.calculation_type.value,
            inputs=copy.deepcopy(entry.inputs),
            outputs=copy.deepcopy(entry.outputs),
            rules_applied=copy.deepcopy(entry.rules_applied),
            engine_version=entry.engine_version,
            state_rules_version=entry.state_rules_version,
            validation_passed=entry.validation_passed,
            validation_errors=list(entry.validation_errors),
        )
        if session is not None:
            session.add(row)
            session.flush()
        else:
            with self._session_factory.begin() as own:
                own.add(row)
        logger.debug("audit entry %s appended", entry.calculation_id)
        return entry.calculation_id

    def get_by_calculation_id(self, calculation_id: str) -> TaxAuditLog:
        with self._session_factory() as s:
            row = s.scalars(
                select(TaxAuditLogRow).where(TaxAuditLogRow.calculation_id == calculation_id)
            ).first()
            if row is None:
                raise AuditRecordNotFoundError(calculation_id)
            return _to_entry(row)

    def get_by_deal(self, deal_id: str) -> list[TaxAuditLog]:
        """Entries for ``deal_id`` in chronological order."""
        with self._session_factory() as s:
            rows = s.scalars(
                select(TaxAuditLogRow)
                .where(TaxAuditLogRow.deal_id == deal_id)
                .order_by(TaxAuditLogRow.calculated_at, TaxAuditLogRow.seq)
            )
            return [_to_entry(r) for r in rows]

    def get_by_dealership(self, dealership_id: str, limit: int = 100) -> list[TaxAuditLog]:
        """Most recent entries for a dealership, newest first."""
        with self._session_factory() as s:
            rows = s.scalars(
                select(TaxAuditLogRow)
                .where(TaxAuditLogRow.dealership_id == dealership_id)
                .order_by(TaxAuditLogRow.calculated_at.desc(), TaxAuditLogRow.seq.desc())
                .limit(limit)
            )
            return [_to_entry(r) for r in rows]
