"""
SQLAlchemy persistence for reference data and the audit trail.

Tables:
    tax_jurisdictions  - time-bounded rate rows keyed by postal code
    state_tax_rules    - time-bounded, versioned policy rows keyed by state
    tax_audit_logs     - append-only calculation log

Rates and money are stored as decimal strings, never as floating-point
columns. Audit rows are protected twice: ORM mapper events refuse UPDATE and
DELETE at flush time, and on SQLite a pair of triggers refuses them at the
database level as well.
"""

from __future__ import annotations

import threading
import uuid
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import (
    DDL,
    JSON,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from vehicle_tax.exceptions import AuditImmutabilityError
from vehicle_tax.logging_config import get_logger

logger = get_logger(__name__)

RATE = String(24)
MONEY = String(24)


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class JurisdictionRow(Base):
    __tablename__ = "tax_jurisdictions"
    __table_args__ = (
        Index("idx_jurisdiction_postal_window", "postal_code", "effective_date"),
        Index("idx_jurisdiction_location", "state", "county", "city"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    postal_code: Mapped[str] = mapped_column(String(10), nullable=False)
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    county: Mapped[Optional[str]] = mapped_column(String(100))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    special_district: Mapped[Optional[str]] = mapped_column(String(100))

    state_rate: Mapped[str] = mapped_column(RATE, nullable=False, default="0.0000")
    county_rate: Mapped[str] = mapped_column(RATE, nullable=False, default="0.0000")
    city_rate: Mapped[str] = mapped_column(RATE, nullable=False, default="0.0000")
    special_district_rate: Mapped[str] = mapped_column(RATE, nullable=False, default="0.0000")

    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    source: Mapped[str] = mapped_column(String(100), nullable=False, default="manual")
    last_verified: Mapped[Optional[date]] = mapped_column(Date)


class StateRuleRow(Base):
    __tablename__ = "state_tax_rules"
    __table_args__ = (
        UniqueConstraint("state_code", "version", name="uq_state_rule_version"),
        Index("idx_state_rule_window", "state_code", "effective_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    state_code: Mapped[str] = mapped_column(String(2), nullable=False)
    state_name: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)

    allows_trade_in_credit: Mapped[bool] = mapped_column(Boolean, nullable=False)
    trade_in_credit_cap: Mapped[Optional[str]] = mapped_column(MONEY)
    trade_in_credit_percent: Mapped[Optional[str]] = mapped_column(RATE)

    doc_fee_max: Mapped[Optional[str]] = mapped_column(MONEY)
    doc_fee_capped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    doc_fee_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    title_fee: Mapped[str] = mapped_column(MONEY, nullable=False, default="0.00")
    title_fee_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    registration_fee: Mapped[str] = mapped_column(MONEY, nullable=False, default="0.00")

    service_contracts_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    gap_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    accessories_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    manufacturer_rebate_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dealer_rebate_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    special_scheme: Mapped[str] = mapped_column(String(20), nullable=False, default="STANDARD")
    scheme_rate: Mapped[Optional[str]] = mapped_column(RATE)
    notes: Mapped[str] = mapped_column(String(500), nullable=False, default="")


class TaxAuditLogRow(Base):
    __tablename__ = "tax_audit_logs"
    __table_args__ = (
        Index("idx_audit_deal", "deal_id"),
        Index("idx_audit_dealership", "dealership_id"),
    )

    # Monotonic insertion order breaks ties between equal timestamps
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    calculation_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    deal_id: Mapped[Optional[str]] = mapped_column(String(64))
    dealership_id: Mapped[str] = mapped_column(String(64), nullable=False)
    calculated_by: Mapped[str] = mapped_column(String(64), nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    calculation_type: Mapped[str] = mapped_column(String(20), nullable=False)

    inputs: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    outputs: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    rules_applied: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    engine_version: Mapped[str] = mapped_column(String(20), nullable=False)
    state_rules_version: Mapped[int] = mapped_column(Integer, nullable=False)
    validation_passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    validation_errors: Mapped[list[str]] = mapped_column(JSON, nullable=False)


# ---------------------------------------------------------------------------
# Audit immutability
# ---------------------------------------------------------------------------


@event.listens_for(TaxAuditLogRow, "before_update")
def _refuse_audit_update(mapper, connection, target) -> None:
    logger.error("refused UPDATE of audit entry %s", target.calculation_id)
    raise AuditImmutabilityError(
        f"Audit entry {target.calculation_id} is immutable and cannot be updated"
    )


@event.listens_for(TaxAuditLogRow, "before_delete")
def _refuse_audit_delete(mapper, connection, target) -> None:
    logger.error("refused DELETE of audit entry %s", target.calculation_id)
    raise AuditImmutabilityError(
        f"Audit entry {target.calculation_id} is immutable and cannot be deleted"
    )


event.listen(
    TaxAuditLogRow.__table__,
    "after_create",
    DDL(
        "CREATE TRIGGER tax_audit_logs_no_update BEFORE UPDATE ON tax_audit_logs "
        "BEGIN SELECT RAISE(ABORT, 'tax_audit_logs is append-only'); END"
    ).execute_if(dialect="sqlite"),
)
event.listen(
    TaxAuditLogRow.__table__,
    "after_create",
    DDL(
        "CREATE TRIGGER tax_audit_logs_no_delete BEFORE DELETE ON tax_audit_logs "
        "BEGIN SELECT RAISE(ABORT, 'tax_audit_logs is append-only'); END"
    ).execute_if(dialect="sqlite"),
)


# ---------------------------------------------------------------------------
# Engine / session factory
# ---------------------------------------------------------------------------


def _serialize_connection_use(engine: Engine) -> None:
    """
    Let one session at a time hold a shared-connection engine's connection.

    Every checkout hands out the same DBAPI connection, so transactions from
    different threads would otherwise interleave their BEGIN/COMMIT/ROLLBACK
    on it. The lock is taken at checkout and released at checkin, which
    spans a session's whole transaction.
    """
    lock = threading.RLock()

    @event.listens_for(engine, "checkout")
    def _acquire(dbapi_connection, connection_record, connection_proxy) -> None:
        lock.acquire()

    @event.listens_for(engine, "checkin")
    def _release(dbapi_connection, connection_record) -> None:
        lock.release()


def create_db_engine(url: str) -> Engine:
    if url.startswith("sqlite") and (":memory:" in url or url.rstrip("/").endswith("sqlite")):
        # One shared connection, otherwise every session sees an empty database
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        _serialize_connection_use(engine)
        return engine
    return create_engine(url)


def create_session_factory(url: str) -> sessionmaker:
    """Create the engine, ensure tables exist and return a session factory."""
    engine = create_db_engine(url)
    Base.metadata.create_all(engine)
    logger.debug("database ready: %s", engine.url.render_as_string(hide_password=True))
    return sessionmaker(bind=engine, expire_on_commit=False)
