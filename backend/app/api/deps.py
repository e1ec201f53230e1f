"""
FastAPI dependency injection — project snapshot for the engine.

The engine works on plain in-memory records; these helpers load the whole
BOQ tree, breakdown table and WIR list from the database and convert ORM
rows to engine records and back.
"""
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.models.domain import BOQItem, BreakdownItem, WIR, WIRResult, WIRStatus
from app.models.orm_models import BOQItemRecord, BreakdownRecord, WIRRecord
from app.services import boq_tree

# WIR columns copied verbatim between the engine record and its row
_WIR_PLAIN_FIELDS = (
    "wir_number", "boq_item_id", "description", "status_conditions",
    "calculation_equation", "submittal_date", "received_date", "contractor",
    "engineer", "parent_wir_id", "original_wir_id", "revision_number", "region",
    "zone", "road", "line", "manhole_from", "manhole_to", "line_no",
)
_WIR_FLOAT_FIELDS = ("value", "length_of_line", "diameter_of_line")

_BREAKDOWN_FIELDS = (
    "boq_item_id", "parent_breakdown_id", "keyword", "keyword_ar", "description",
    "description_ar", "percentage", "value", "unit_rate", "quantity", "is_leaf",
)


def _float(value: Any) -> float:
    return float(value) if value is not None else 0.0


@dataclass
class ProjectSnapshot:
    tree: List[BOQItem] = field(default_factory=list)
    breakdowns: List[BreakdownItem] = field(default_factory=list)
    wirs: List[WIR] = field(default_factory=list)

    def find_wir(self, wir_id: str) -> Optional[WIR]:
        return next((w for w in self.wirs if w.id == wir_id), None)

    def find_breakdown(self, breakdown_id: str) -> Optional[BreakdownItem]:
        return next((b for b in self.breakdowns if b.id == breakdown_id), None)


# ── ORM → engine ─────────────────────────────────────────────────────────────

def tree_from_records(records: Iterable[BOQItemRecord]) -> List[BOQItem]:
    ordered = sorted(records, key=lambda r: (r.sort_order or 0, r.code or ""))
    return boq_tree.build_tree(ordered)


def breakdown_from_record(record: BreakdownRecord) -> BreakdownItem:
    return BreakdownItem(
        id=str(record.id),
        boq_item_id=str(record.boq_item_id),
        percentage=_float(record.percentage),
        keyword=record.keyword or "",
        description=record.description or "",
        keyword_ar=record.keyword_ar,
        description_ar=record.description_ar,
        value=_float(record.value),
        is_leaf=bool(record.is_leaf) if record.is_leaf is not None else True,
        parent_breakdown_id=str(record.parent_breakdown_id) if record.parent_breakdown_id else None,
        unit_rate=_float(record.unit_rate),
        quantity=_float(record.quantity),
    )


def wir_from_record(record: WIRRecord) -> WIR:
    return WIR(
        id=str(record.id),
        boq_item_id=str(record.boq_item_id),
        value=_float(record.value),
        result=WIRResult(record.result) if record.result else None,
        status=WIRStatus(record.status or WIRStatus.SUBMITTED.value),
        description=record.description or "",
        linked_boq_items=list(record.linked_boq_items or []),
        selected_breakdown_items=list(record.selected_breakdown_items or []),
        calculated_amount=(
            float(record.calculated_amount) if record.calculated_amount is not None else None
        ),
        calculation_equation=record.calculation_equation or "",
        submittal_date=record.submittal_date,
        received_date=record.received_date,
        wir_number=record.wir_number,
        contractor=record.contractor or "",
        engineer=record.engineer or "",
        status_conditions=record.status_conditions or "",
        parent_wir_id=record.parent_wir_id,
        original_wir_id=record.original_wir_id,
        revision_number=record.revision_number or 0,
        region=record.region or "",
        zone=record.zone or "",
        road=record.road or "",
        line=record.line or "",
        manhole_from=record.manhole_from or "",
        manhole_to=record.manhole_to or "",
        line_no=record.line_no or "",
        length_of_line=_float(record.length_of_line),
        diameter_of_line=_float(record.diameter_of_line),
    )


# ── engine → ORM ─────────────────────────────────────────────────────────────

def copy_breakdown_to_record(item: BreakdownItem, record: BreakdownRecord) -> BreakdownRecord:
    for name in _BREAKDOWN_FIELDS:
        setattr(record, name, getattr(item, name))
    return record


def copy_wir_to_record(wir: WIR, record: WIRRecord) -> WIRRecord:
    for name in _WIR_PLAIN_FIELDS + _WIR_FLOAT_FIELDS:
        setattr(record, name, getattr(wir, name))
    record.result = wir.result.value if wir.result is not None else None
    record.status = WIRStatus(wir.status).value
    record.linked_boq_items = list(wir.linked_boq_items)
    record.selected_breakdown_items = list(wir.selected_breakdown_items)
    record.calculated_amount = wir.calculated_amount
    return record


# ── Dependency ───────────────────────────────────────────────────────────────

async def load_project_snapshot(db: AsyncSession) -> ProjectSnapshot:
    boq_rows = (await db.execute(select(BOQItemRecord))).scalars().all()
    breakdown_rows = (
        await db.execute(select(BreakdownRecord).order_by(BreakdownRecord.created_at))
    ).scalars().all()
    wir_rows = (await db.execute(select(WIRRecord).order_by(WIRRecord.created_at))).scalars().all()
    return ProjectSnapshot(
        tree=tree_from_records(boq_rows),
        breakdowns=[breakdown_from_record(r) for r in breakdown_rows],
        wirs=[wir_from_record(r) for r in wir_rows],
    )


async def get_project_snapshot(db: AsyncSession = Depends(get_db)) -> ProjectSnapshot:
    return await load_project_snapshot(db)


# ── Write-back helpers ───────────────────────────────────────────────────────

async def store_missing_containers(db: AsyncSession, snapshot: ProjectSnapshot) -> List[BreakdownItem]:
    """Insert a container for every depth-level leaf that has none. Idempotent."""
    from app.services.breakdown_engine import BreakdownAllocator

    proposals = BreakdownAllocator().ensure_containers(snapshot.tree, snapshot.breakdowns)
    for item in proposals:
        record = copy_breakdown_to_record(item, BreakdownRecord())
        db.add(record)
        await db.flush()
        item.id = str(record.id)
    snapshot.breakdowns.extend(proposals)
    return proposals


async def sync_stored_breakdowns(db: AsyncSession, snapshot: ProjectSnapshot) -> int:
    """Re-copy unit rate and quantity from BOQ leaves into stale breakdown rows."""
    from app.services.breakdown_engine import BreakdownAllocator

    changed = BreakdownAllocator().sync_cached_figures(snapshot.breakdowns, snapshot.tree)
    for item in changed:
        record = await db.get(BreakdownRecord, item.id)
        if record is not None:
            copy_breakdown_to_record(item, record)
    by_id = {item.id: item for item in changed}
    snapshot.breakdowns = [by_id.get(b.id, b) for b in snapshot.breakdowns]
    return len(changed)


async def refresh_stored_wirs(db: AsyncSession, snapshot: ProjectSnapshot) -> int:
    """Recompute the stored amount and equation of every WIR whose figures moved."""
    from app.services.wir_workflow import refresh_derived_fields

    updated = 0
    refreshed: List[WIR] = []
    for wir in snapshot.wirs:
        fresh = refresh_derived_fields(wir, snapshot.breakdowns, snapshot.tree)
        refreshed.append(fresh)
        if (
            fresh.calculated_amount != wir.calculated_amount
            or fresh.calculation_equation != wir.calculation_equation
        ):
            record = await db.get(WIRRecord, wir.id)
            if record is not None:
                copy_wir_to_record(fresh, record)
                updated += 1
    snapshot.wirs = refreshed
    return updated
