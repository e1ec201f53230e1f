"""
test_persistence.py — Tests for the ORM conversion layer and the write paths.

Tests cover:
  - WIR / breakdown record conversion in both directions (Decimal columns,
    enum codes, JSON id lists, dates)
  - Write-back helpers: container upsert, cached-figure sync, stored WIR
    amount refresh after a BOQ edit
  - Write endpoints (WIR create / edit / result / revision, sub-items,
    BOQ create / edit) against an in-memory session

No database is required: ``InMemorySession`` stands in for the AsyncSession
and serves ``select(<Record>)`` queries from the rows it holds.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.api.deps import (
    breakdown_from_record, copy_breakdown_to_record, copy_wir_to_record,
    load_project_snapshot, refresh_stored_wirs, store_missing_containers,
    sync_stored_breakdowns, wir_from_record,
)
from app.db import get_db
from app.main import app
from app.models.domain import WIR, WIRResult, WIRStatus
from app.models.orm_models import BOQItemRecord, BreakdownRecord, WIRRecord, gen_uuid
from app.services.boq_tree import build_tree
from app.services.wir_workflow import refresh_derived_fields


class _Result:
    def __init__(self, rows):
        self._rows = rows

    def scalars(self):
        return self

    def all(self):
        return list(self._rows)


class InMemorySession:
    """Just enough of AsyncSession for the routes and write-back helpers."""

    def __init__(self, records=()):
        self.rows = {}
        self.pending = []
        self.flushes = 0
        for record in records:
            self._store(record)

    def _store(self, record):
        if record.id is None:
            record.id = gen_uuid()
        self.rows[(type(record), record.id)] = record

    def add(self, record):
        self.pending.append(record)

    async def flush(self):
        for record in self.pending:
            self._store(record)
        self.pending = []
        self.flushes += 1

    async def get(self, model, record_id):
        return self.rows.get((model, record_id))

    async def delete(self, record):
        self.rows.pop((type(record), record.id), None)

    async def execute(self, statement):
        await self.flush()
        entity = statement.column_descriptions[0]["entity"]
        return _Result([r for (model, _), r in self.rows.items() if model is entity])

    def of(self, model):
        return [r for (m, _), r in self.rows.items() if m is model]


def _run(coro):
    return asyncio.run(coro)


@pytest.fixture
def boq_records(project_rows):
    return [BOQItemRecord(**row) for row in project_rows]


@pytest.fixture
def project_session(boq_records, project_rows, project_breakdowns, project_wirs):
    """Session holding the sample project, WIR amounts already stored."""
    tree = build_tree(project_rows)
    breakdowns = [copy_breakdown_to_record(b, BreakdownRecord(id=b.id)) for b in project_breakdowns]
    wirs = [
        copy_wir_to_record(refresh_derived_fields(w, project_breakdowns, tree), WIRRecord(id=w.id))
        for w in project_wirs
    ]
    return InMemorySession(boq_records + breakdowns + wirs)


@pytest.fixture
def write_client(project_session):
    async def _session():
        yield project_session

    app.dependency_overrides[get_db] = _session
    yield TestClient(app)
    app.dependency_overrides.clear()


# ===========================================================================
# Class 1: Record conversion
# ===========================================================================

class TestRecordConversion:

    def test_wir_record_to_engine_and_back(self):
        record = WIRRecord(
            id="w9", wir_number="WIR-009", boq_item_id="leaf-a", value=Decimal("2.5"),
            result="B", status="completed", linked_boq_items=["leaf-a", "leaf-b"],
            selected_breakdown_items=["sub-a1"], calculated_amount=Decimal("50.00"),
            calculation_equation="2.5 × 50 × 40% = 50 SAR", received_date=date(2025, 4, 2),
            contractor="Al Bina", engineer="Eng. Rami", parent_wir_id="w8",
            original_wir_id="w8", revision_number=1, zone="Z1",
            length_of_line=Decimal("12.500"),
        )
        wir = wir_from_record(record)
        assert wir.result == WIRResult.CONDITIONAL
        assert wir.status == WIRStatus.COMPLETED
        assert wir.value == 2.5 and isinstance(wir.value, float)
        assert wir.calculated_amount == 50.0
        assert wir.length_of_line == 12.5
        assert wir.linked_boq_items == ["leaf-a", "leaf-b"]
        assert wir.linked_boq_items is not record.linked_boq_items

        stored = copy_wir_to_record(wir, WIRRecord(id=wir.id))
        assert stored.result == "B"
        assert stored.status == "completed"
        assert stored.received_date == date(2025, 4, 2)
        assert stored.selected_breakdown_items == ["sub-a1"]
        assert wir_from_record(stored) == wir

    def test_sparse_wir_record_gets_defaults(self):
        wir = wir_from_record(WIRRecord(id="x", boq_item_id="leaf-a"))
        assert wir.result is None
        assert wir.status == WIRStatus.SUBMITTED
        assert wir.linked_boq_items == []
        assert wir.calculated_amount is None
        assert wir.value == 0.0
        assert wir.contractor == ""
        assert wir.revision_number == 0

    def test_pending_wir_stored_without_result_or_amount(self):
        record = copy_wir_to_record(WIR(id="p", boq_item_id="leaf-a"), WIRRecord(id="p"))
        assert record.result is None
        assert record.status == "submitted"
        assert record.calculated_amount is None
        assert record.linked_boq_items == []

    def test_breakdown_record_to_engine_and_back(self):
        record = BreakdownRecord(
            id="sub-x", boq_item_id="leaf-a", parent_breakdown_id="bd-a",
            keyword="excavation", keyword_ar="حفر", description="Excavation",
            percentage=Decimal("40.0000"), value=Decimal("20.0000"),
            unit_rate=Decimal("50.0000"), quantity=Decimal("100.0000"), is_leaf=True,
        )
        item = breakdown_from_record(record)
        assert item.percentage == 40.0 and isinstance(item.percentage, float)
        assert item.parent_breakdown_id == "bd-a"
        assert item.is_container is False

        stored = copy_breakdown_to_record(item, BreakdownRecord(id=item.id))
        assert stored.keyword_ar == "حفر"
        assert stored.value == 20.0
        assert breakdown_from_record(stored) == item

    def test_container_record(self):
        item = breakdown_from_record(
            BreakdownRecord(id="bd", boq_item_id="leaf-a", percentage=100, is_leaf=False)
        )
        assert item.is_container is True
        assert item.is_leaf is False
        assert breakdown_from_record(BreakdownRecord(id="bd2", boq_item_id="leaf-a")).is_leaf is True


# ===========================================================================
# Class 2: Write-back helpers
# ===========================================================================

class TestWriteBackHelpers:

    def test_containers_stored_once(self, boq_records):
        session = InMemorySession(boq_records)
        snapshot = _run(load_project_snapshot(session))

        created = _run(store_missing_containers(session, snapshot))
        assert sorted(b.boq_item_id for b in created) == ["leaf-a", "leaf-b"]
        stored_ids = {r.id for r in session.of(BreakdownRecord)}
        assert {b.id for b in created} == stored_ids
        assert None not in stored_ids
        assert len(snapshot.breakdowns) == 2

        assert _run(store_missing_containers(session, snapshot)) == []
        reloaded = _run(load_project_snapshot(session))
        assert _run(store_missing_containers(session, reloaded)) == []
        assert len(session.of(BreakdownRecord)) == 2

    def test_unit_rate_edit_resyncs_breakdowns_and_wir_amounts(self, project_session):
        boq = _run(project_session.get(BOQItemRecord, "leaf-a"))
        boq.unit_rate = Decimal("60")
        snapshot = _run(load_project_snapshot(project_session))

        assert _run(sync_stored_breakdowns(project_session, snapshot)) == 3
        sub_a1 = _run(project_session.get(BreakdownRecord, "sub-a1"))
        assert sub_a1.unit_rate == 60.0
        assert sub_a1.value == pytest.approx(24.0)
        assert _run(project_session.get(BreakdownRecord, "bd-a")).value == pytest.approx(60.0)
        assert _run(project_session.get(BreakdownRecord, "bd-b")).value == pytest.approx(200.0)

        assert _run(refresh_stored_wirs(project_session, snapshot)) == 2
        w1 = _run(project_session.get(WIRRecord, "w1"))
        assert w1.calculated_amount == pytest.approx(240.0)
        assert "240" in w1.calculation_equation
        assert _run(project_session.get(WIRRecord, "w2")).calculated_amount == pytest.approx(1200.0)
        assert _run(project_session.get(WIRRecord, "w4")).calculated_amount == pytest.approx(600.0)
        assert _run(project_session.get(WIRRecord, "w3")).calculated_amount is None

    def test_nothing_stale_nothing_written(self, project_session):
        snapshot = _run(load_project_snapshot(project_session))
        assert _run(sync_stored_breakdowns(project_session, snapshot)) == 0
        assert _run(refresh_stored_wirs(project_session, snapshot)) == 0


# ===========================================================================
# Class 3: Write endpoints
# ===========================================================================

class TestWriteEndpoints:

    def _wir_body(self, **overrides):
        body = {
            "wir_number": "WIR-100",
            "boq_item_id": "leaf-a",
            "description": "Excavation along road R5",
            "contractor": "Al Bina",
            "engineer": "Eng. Rami",
            "value": 5,
        }
        body.update(overrides)
        return body

    def test_create_approved_wir_stores_amount(self, write_client, project_session):
        response = write_client.post("/api/wirs", json=self._wir_body(
            result="A", status="completed", selected_breakdown_items=["sub-a1"],
        ))
        assert response.status_code == 201
        body = response.json()
        assert body["calculated_amount"] == pytest.approx(100.0)
        assert body["submittal_date"] is not None
        record = _run(project_session.get(WIRRecord, body["id"]))
        assert record.result == "A"
        assert record.calculated_amount == pytest.approx(100.0)

    def test_create_pending_wir_has_no_amount(self, write_client):
        body = write_client.post("/api/wirs", json=self._wir_body()).json()
        assert body["status"] == "submitted"
        assert body["calculated_amount"] is None
        assert body["calculation_equation"] == ""

    def test_edit_value_recomputes_amount(self, write_client, project_session):
        body = write_client.put("/api/wirs/w2", json={"value": 10}).json()
        assert body["calculated_amount"] == pytest.approx(500.0)
        assert _run(project_session.get(WIRRecord, "w2")).value == 10

    def test_clearing_result_clears_amount(self, write_client, project_session):
        body = write_client.put("/api/wirs/w1", json={"result": None}).json()
        assert body["result"] is None
        assert body["calculated_amount"] is None
        assert _run(project_session.get(WIRRecord, "w1")).result is None

    def test_edit_unknown_wir(self, write_client):
        assert write_client.put("/api/wirs/ghost", json={"value": 1}).status_code == 404

    def test_submit_result(self, write_client, project_session):
        body = write_client.post(
            "/api/wirs/w5/result", json={"result": "A", "received_date": "2025-04-01"}
        ).json()
        assert body["status"] == "completed"
        assert body["received_date"] == "2025-04-01"
        assert body["calculated_amount"] == pytest.approx(2500.0)
        assert _run(project_session.get(WIRRecord, "w5")).status == "completed"

    def test_submit_result_unknown_wir(self, write_client):
        assert write_client.post("/api/wirs/ghost/result", json={"result": "A"}).status_code == 404

    def test_revision_of_rejected_wir(self, write_client, project_session):
        response = write_client.post("/api/wirs/w3/revision")
        assert response.status_code == 201
        body = response.json()
        assert body["wir_number"] == "WIR-003_R1"
        assert body["parent_wir_id"] == "w3"
        assert body["status"] == "submitted"
        assert _run(project_session.get(WIRRecord, body["id"])) is not None

        assert write_client.post("/api/wirs/w3/revision").status_code == 409

    def test_revision_of_approved_wir_refused(self, write_client):
        assert write_client.post("/api/wirs/w1/revision").status_code == 409

    def test_delete_wir(self, write_client, project_session):
        assert write_client.delete("/api/wirs/w5").json() == {"deleted": "w5"}
        assert _run(project_session.get(WIRRecord, "w5")) is None
        assert write_client.delete("/api/wirs/w5").status_code == 404

    def test_add_sub_item(self, write_client, project_session):
        response = write_client.post(
            "/api/breakdown/bd-b/sub-items", json={"percentage": 30, "description": "Bedding"}
        )
        assert response.status_code == 201
        body = response.json()
        assert body["item"]["parent_breakdown_id"] == "bd-b"
        assert body["item"]["value"] == pytest.approx(60.0)
        assert body["item"]["id"] is not None
        assert body["allocation"]["allocated_pct"] == pytest.approx(30.0)
        assert body["allocation"]["fully_allocated"] is False
        assert _run(project_session.get(BreakdownRecord, "bd-b")).is_leaf is False

    def test_sub_item_under_sub_item_rejected(self, write_client):
        response = write_client.post("/api/breakdown/sub-a1/sub-items", json={"percentage": 10})
        assert response.status_code == 422

    def test_edit_breakdown_percentage_refreshes_wirs(self, write_client, project_session):
        body = write_client.put("/api/breakdown/sub-a1", json={"percentage": 50}).json()
        assert body["item"]["value"] == pytest.approx(25.0)
        assert body["wirs_refreshed"] == 1
        assert _run(project_session.get(WIRRecord, "w1")).calculated_amount == pytest.approx(250.0)

    def test_boq_unit_rate_edit_resyncs(self, write_client, project_session):
        body = write_client.put("/api/boq/leaf-a", json={"unit_rate": 60}).json()
        assert body["containers_created"] == 0
        assert body["breakdowns_synced"] == 3
        assert body["wirs_refreshed"] == 2
        assert _run(project_session.get(WIRRecord, "w1")).calculated_amount == pytest.approx(240.0)

    def test_boq_create_stores_container(self, write_client, project_session):
        response = write_client.post("/api/boq", json={
            "code": "200.1.3.2.3", "description": "400 mm pipe", "parent_id": "l4",
            "quantity": 5, "unit": "m", "unit_rate": 300,
        })
        assert response.status_code == 201
        body = response.json()
        assert body["containers_created"] == 1
        assert body["breakdowns_synced"] == 0
        containers = [
            r for r in project_session.of(BreakdownRecord) if r.boq_item_id == body["id"]
        ]
        assert len(containers) == 1
        assert containers[0].value == pytest.approx(300.0)

    def test_boq_create_unknown_parent(self, write_client):
        response = write_client.post("/api/boq", json={"code": "9.1", "parent_id": "ghost"})
        assert response.status_code == 404
