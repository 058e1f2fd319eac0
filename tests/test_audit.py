"""Tests for the append-only audit trail."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError

from vehicle_tax.audit import AuditTrailStore, CalculationType, TaxAuditLog
from vehicle_tax.db import TaxAuditLogRow, create_session_factory
from vehicle_tax.exceptions import AuditImmutabilityError, AuditRecordNotFoundError

T0 = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store() -> AuditTrailStore:
    return AuditTrailStore(create_session_factory("sqlite+pysqlite:///:memory:"))


def _entry(calculation_id: str, deal_id: str | None = "DEAL-1", at: datetime = T0, **kw) -> TaxAuditLog:
    return TaxAuditLog(
        calculation_id=calculation_id,
        deal_id=deal_id,
        dealership_id=kw.pop("dealership_id", "DLR-001"),
        calculated_by="user-7",
        calculated_at=at,
        calculation_type=kw.pop("calculation_type", CalculationType.SALES_TAX),
        inputs={"vehicle_price": "35000.00"},
        outputs={"total_tax": "1837.50"},
        rules_applied={"state_rules_version": 1},
        engine_version="2.0.0",
        state_rules_version=1,
        validation_passed=kw.pop("validation_passed", True),
        **kw,
    )


# ── Append and read ──────────────────────────────────────────────────


def test_append_and_read_back(store: AuditTrailStore):
    assert store.append(_entry("calc-1")) == "calc-1"
    entry = store.get_by_calculation_id("calc-1")
    assert entry.deal_id == "DEAL-1"
    assert entry.calculated_at == T0
    assert entry.calculation_type is CalculationType.SALES_TAX
    assert entry.outputs == {"total_tax": "1837.50"}
    assert entry.validation_errors == ()


def test_unknown_calculation_id(store: AuditTrailStore):
    with pytest.raises(AuditRecordNotFoundError) as exc:
        store.get_by_calculation_id("nope")
    assert exc.value.code == "AUDIT_NOT_FOUND"


def test_get_by_deal_is_chronological(store: AuditTrailStore):
    store.append(_entry("late", at=T0 + timedelta(minutes=5)))
    store.append(_entry("early", at=T0))
    store.append(_entry("other", deal_id="DEAL-2"))
    assert [e.calculation_id for e in store.get_by_deal("DEAL-1")] == ["early", "late"]


def test_equal_timestamps_keep_insertion_order(store: AuditTrailStore):
    for i in range(3):
        store.append(_entry(f"calc-{i}"))
    assert [e.calculation_id for e in store.get_by_deal("DEAL-1")] == ["calc-0", "calc-1", "calc-2"]


def test_get_by_deal_unknown_is_empty(store: AuditTrailStore):
    assert store.get_by_deal("DEAL-404") == []


def test_get_by_dealership_newest_first(store: AuditTrailStore):
    for i in range(4):
        store.append(_entry(f"calc-{i}", at=T0 + timedelta(minutes=i)))
    store.append(_entry("elsewhere", dealership_id="DLR-002"))
    entries = store.get_by_dealership("DLR-001", limit=2)
    assert [e.calculation_id for e in entries] == ["calc-3", "calc-2"]


def test_validation_errors_recorded(store: AuditTrailStore):
    store.append(
        _entry("calc-bad", validation_passed=False, validation_errors=("rate out of range",))
    )
    stored = store.get_by_calculation_id("calc-bad")
    assert stored.validation_passed is False
    assert stored.validation_errors == ("rate out of range",)


def test_returned_snapshots_are_copies(store: AuditTrailStore):
    store.append(_entry("calc-1"))
    store.get_by_calculation_id("calc-1").outputs["total_tax"] = "0.00"
    assert store.get_by_calculation_id("calc-1").outputs["total_tax"] == "1837.50"


# ── Immutability ─────────────────────────────────────────────────────


def test_orm_update_refused(store: AuditTrailStore):
    store.append(_entry("calc-1"))
    factory = store._session_factory
    with pytest.raises(AuditImmutabilityError):
        with factory.begin() as s:
            row = s.scalars(select(TaxAuditLogRow)).one()
            row.outputs = {"total_tax": "0.00"}
    assert store.get_by_calculation_id("calc-1").outputs == {"total_tax": "1837.50"}


def test_orm_delete_refused(store: AuditTrailStore):
    store.append(_entry("calc-1"))
    factory = store._session_factory
    with pytest.raises(AuditImmutabilityError):
        with factory.begin() as s:
            s.delete(s.scalars(select(TaxAuditLogRow)).one())
    assert store.get_by_calculation_id("calc-1")


def test_raw_sql_update_refused_by_trigger(store: AuditTrailStore):
    store.append(_entry("calc-1"))
    with pytest.raises(DBAPIError, match="append-only"):
        with store._session_factory.begin() as s:
            s.execute(text("UPDATE tax_audit_logs SET engine_version = 'tampered'"))
    assert store.get_by_calculation_id("calc-1").engine_version == "2.0.0"


def test_raw_sql_delete_refused_by_trigger(store: AuditTrailStore):
    store.append(_entry("calc-1"))
    with pytest.raises(DBAPIError, match="append-only"):
        with store._session_factory.begin() as s:
            s.execute(text("DELETE FROM tax_audit_logs"))
    assert store.get_by_calculation_id("calc-1")


def test_duplicate_calculation_id_rejected(store: AuditTrailStore):
    store.append(_entry("calc-1"))
    with pytest.raises(DBAPIError):
        store.append(_entry("calc-1"))
