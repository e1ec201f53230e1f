"""
Breakdown API Routes

GET    /api/breakdown                       — breakdown items (optionally for one BOQ item)
GET    /api/breakdown/allocation/{boq_id}   — sub-item percentage diagnostics
POST   /api/breakdown/ensure-containers     — store missing containers
POST   /api/breakdown/{id}/sub-items        — add a sub-item under a container
PUT    /api/breakdown/{id}                  — edit a breakdown item
DELETE /api/breakdown/{id}                  — disabled, always 405
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    ProjectSnapshot, copy_breakdown_to_record, get_project_snapshot, load_project_snapshot,
    refresh_stored_wirs, store_missing_containers,
)
from app.db import get_db
from app.models.orm_models import BreakdownRecord
from app.services.breakdown_engine import (
    BreakdownAllocator, BreakdownDeletionDisabled, BreakdownValidationError,
)

router = APIRouter(prefix="/api/breakdown", tags=["Breakdown"])
logger = logging.getLogger("boq-tracker-api.breakdown")

allocator = BreakdownAllocator()


# ── Pydantic Models ─────────────────────────────────────────────────────────

class SubItemCreate(BaseModel):
    percentage: float = Field(ge=0, le=100)
    description: str = ""
    description_ar: Optional[str] = None
    keyword: Optional[str] = None
    keyword_ar: Optional[str] = None


class BreakdownUpdate(BaseModel):
    percentage: Optional[float] = Field(default=None, ge=0, le=100)
    description: Optional[str] = None
    description_ar: Optional[str] = None
    keyword_ar: Optional[str] = None


@router.get("")
async def list_breakdown_items(
    boq_item_id: Optional[str] = Query(None),
    snapshot: ProjectSnapshot = Depends(get_project_snapshot),
):
    items = snapshot.breakdowns
    if boq_item_id:
        items = [b for b in items if b.boq_item_id == boq_item_id]
    return [b.to_dict() for b in items]


@router.get("/allocation/{boq_item_id}")
async def get_allocation_status(
    boq_item_id: str, snapshot: ProjectSnapshot = Depends(get_project_snapshot)
):
    return allocator.allocation_status(boq_item_id, snapshot.breakdowns)


@router.post("/ensure-containers")
async def ensure_containers(db: AsyncSession = Depends(get_db)):
    snapshot = await load_project_snapshot(db)
    created = await store_missing_containers(db, snapshot)
    return {"created": len(created), "items": [b.to_dict() for b in created]}


@router.post("/{breakdown_id}/sub-items", status_code=201)
async def add_sub_item(
    breakdown_id: str, req: SubItemCreate, db: AsyncSession = Depends(get_db)
):
    snapshot = await load_project_snapshot(db)
    parent = snapshot.find_breakdown(breakdown_id)
    if parent is None:
        raise HTTPException(status_code=404, detail=f"Breakdown item {breakdown_id} not found")
    try:
        sub_item = allocator.build_sub_item(
            parent, snapshot.tree, req.percentage,
            description=req.description,
            keyword=req.keyword,
            description_ar=req.description_ar,
            keyword_ar=req.keyword_ar,
        )
    except BreakdownValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    record = copy_breakdown_to_record(sub_item, BreakdownRecord())
    db.add(record)
    parent_record = await db.get(BreakdownRecord, parent.id)
    if parent_record is not None:
        copy_breakdown_to_record(allocator.mark_container(parent), parent_record)
    await db.flush()
    sub_item.id = str(record.id)
    logger.info(
        "Sub-item added under breakdown %s (%.4g%%)", breakdown_id, sub_item.percentage,
        extra={"breakdown_id": sub_item.id, "boq_item_id": sub_item.boq_item_id},
    )
    return {
        "item": sub_item.to_dict(),
        "allocation": allocator.allocation_status(
            sub_item.boq_item_id, snapshot.breakdowns + [sub_item]
        ),
    }


@router.put("/{breakdown_id}")
async def update_breakdown_item(
    breakdown_id: str, req: BreakdownUpdate, db: AsyncSession = Depends(get_db)
):
    snapshot = await load_project_snapshot(db)
    item = snapshot.find_breakdown(breakdown_id)
    record = await db.get(BreakdownRecord, breakdown_id)
    if item is None or record is None:
        raise HTTPException(status_code=404, detail=f"Breakdown item {breakdown_id} not found")
    try:
        updated = allocator.apply_update(item, req.model_dump(exclude_unset=True), snapshot.tree)
    except BreakdownValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    copy_breakdown_to_record(updated, record)
    snapshot.breakdowns = [updated if b.id == breakdown_id else b for b in snapshot.breakdowns]
    refreshed = await refresh_stored_wirs(db, snapshot)
    return {"item": updated.to_dict(), "wirs_refreshed": refreshed}


@router.delete("/{breakdown_id}")
async def delete_breakdown_item(
    breakdown_id: str, snapshot: ProjectSnapshot = Depends(get_project_snapshot)
):
    item = snapshot.find_breakdown(breakdown_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Breakdown item {breakdown_id} not found")
    try:
        allocator.delete(item)
    except BreakdownDeletionDisabled as e:
        raise HTTPException(status_code=405, detail=str(e))
