"""
BOQ API Routes

GET    /api/boq        — BOQ tree with per-node total value
POST   /api/boq        — create a BOQ item (missing breakdown containers are stored)
PUT    /api/boq/{id}   — edit a BOQ item (cached breakdown figures and WIR amounts re-synced)
DELETE /api/boq/{id}   — delete a BOQ item and its subtree
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    ProjectSnapshot, get_project_snapshot, load_project_snapshot, refresh_stored_wirs,
    store_missing_containers, sync_stored_breakdowns,
)
from app.db import get_db
from app.models.domain import BOQItem
from app.models.orm_models import BOQItemRecord
from app.services import boq_tree

router = APIRouter(prefix="/api/boq", tags=["BOQ"])
logger = logging.getLogger("boq-tracker-api.boq")


# ── Pydantic Models ─────────────────────────────────────────────────────────

class BOQItemCreate(BaseModel):
    code: str = Field(min_length=1, max_length=100)
    description: str = ""
    description_ar: Optional[str] = None
    quantity: float = Field(default=0.0, ge=0)
    unit: str = ""
    unit_ar: Optional[str] = None
    unit_rate: float = Field(default=0.0, ge=0)
    parent_id: Optional[str] = None
    sort_order: int = 0


class BOQItemUpdate(BaseModel):
    code: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    description_ar: Optional[str] = None
    quantity: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = None
    unit_ar: Optional[str] = None
    unit_rate: Optional[float] = Field(default=None, ge=0)
    sort_order: Optional[int] = None


def serialize_node(node: BOQItem) -> Dict[str, Any]:
    return {
        "id": node.id,
        "code": node.code,
        "description": node.description,
        "description_ar": node.description_ar,
        "quantity": node.quantity,
        "unit": node.unit,
        "unit_ar": node.unit_ar,
        "unit_rate": node.unit_rate,
        "parent_id": node.parent_id,
        "is_leaf": node.is_leaf,
        "depth": boq_tree.depth(node),
        "total_value": boq_tree.total_value(node),
        "children": [serialize_node(child) for child in node.children],
    }


async def _get_record(item_id: str, db: AsyncSession) -> BOQItemRecord:
    record = await db.get(BOQItemRecord, item_id)
    if not record:
        raise HTTPException(status_code=404, detail=f"BOQ item {item_id} not found")
    return record


async def _resync(db: AsyncSession) -> Dict[str, int]:
    await db.flush()
    snapshot = await load_project_snapshot(db)
    containers = await store_missing_containers(db, snapshot)
    synced = await sync_stored_breakdowns(db, snapshot)
    wirs = await refresh_stored_wirs(db, snapshot)
    return {"containers_created": len(containers), "breakdowns_synced": synced, "wirs_refreshed": wirs}


@router.get("")
async def get_boq_tree(snapshot: ProjectSnapshot = Depends(get_project_snapshot)):
    return {
        "items": [serialize_node(root) for root in snapshot.tree],
        "project_total": boq_tree.project_total(snapshot.tree),
    }


@router.post("", status_code=201)
async def create_boq_item(req: BOQItemCreate, db: AsyncSession = Depends(get_db)):
    if req.parent_id:
        await _get_record(req.parent_id, db)
    record = BOQItemRecord(**req.model_dump())
    db.add(record)
    sync = await _resync(db)
    logger.info("BOQ item %s created", record.code, extra={"boq_item_id": record.id})
    return {"id": record.id, "code": record.code, **sync}


@router.put("/{item_id}")
async def update_boq_item(item_id: str, req: BOQItemUpdate, db: AsyncSession = Depends(get_db)):
    record = await _get_record(item_id, db)
    for key, value in req.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(record, key, value)
    sync = await _resync(db)
    logger.info("BOQ item %s updated", record.code, extra={"boq_item_id": item_id})
    return {"id": record.id, "code": record.code, **sync}


@router.delete("/{item_id}")
async def delete_boq_item(item_id: str, db: AsyncSession = Depends(get_db)):
    record = await _get_record(item_id, db)
    await db.delete(record)
    await db.flush()
    logger.info("BOQ item %s deleted", item_id, extra={"boq_item_id": item_id})
    return {"deleted": item_id}
