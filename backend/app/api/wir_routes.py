"""
WIR API Routes

GET    /api/wirs                 — WIR list (optionally related to one BOQ item)
POST   /api/wirs                 — create a WIR
PUT    /api/wirs/{id}            — edit a WIR
DELETE /api/wirs/{id}            — delete a WIR
POST   /api/wirs/{id}/result     — record the engineer's result (A / B / C)
POST   /api/wirs/{id}/revision   — resubmit a rejected WIR as <number>_R<n>

Every write recomputes the WIR's calculated amount and equation.
"""
import logging
from dataclasses import replace
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    ProjectSnapshot, copy_wir_to_record, get_project_snapshot, load_project_snapshot,
)
from app.db import get_db
from app.models.domain import WIR, WIRResult, WIRStatus
from app.models.orm_models import WIRRecord, gen_uuid
from app.services.progress_engine import wirs_for_boq
from app.services.wir_workflow import (
    RevisionNotAllowedError, build_revision, refresh_derived_fields, submit_result,
)

router = APIRouter(prefix="/api/wirs", tags=["WIR"])
logger = logging.getLogger("boq-tracker-api.wir")


# ── Pydantic Models ─────────────────────────────────────────────────────────

class WIRCreate(BaseModel):
    wir_number: str = Field(min_length=3, max_length=100)
    boq_item_id: str = Field(min_length=1)
    description: str = Field(min_length=10)
    contractor: str = Field(min_length=1)
    engineer: str = Field(min_length=1)
    value: float = 0.0
    linked_boq_items: List[str] = []
    selected_breakdown_items: List[str] = []
    result: Optional[WIRResult] = None
    status: WIRStatus = WIRStatus.SUBMITTED
    status_conditions: str = ""
    submittal_date: Optional[date] = None
    received_date: Optional[date] = None
    region: str = ""
    zone: str = ""
    road: str = ""
    line: str = ""
    manhole_from: str = ""
    manhole_to: str = ""
    line_no: str = ""
    length_of_line: float = Field(default=0.0, ge=0)
    diameter_of_line: float = Field(default=0.0, ge=0)


class WIRUpdate(BaseModel):
    wir_number: Optional[str] = Field(default=None, min_length=3, max_length=100)
    boq_item_id: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = Field(default=None, min_length=10)
    contractor: Optional[str] = Field(default=None, min_length=1)
    engineer: Optional[str] = Field(default=None, min_length=1)
    value: Optional[float] = None
    linked_boq_items: Optional[List[str]] = None
    selected_breakdown_items: Optional[List[str]] = None
    result: Optional[WIRResult] = None
    status: Optional[WIRStatus] = None
    status_conditions: Optional[str] = None
    submittal_date: Optional[date] = None
    received_date: Optional[date] = None
    region: Optional[str] = None
    zone: Optional[str] = None
    road: Optional[str] = None
    line: Optional[str] = None
    manhole_from: Optional[str] = None
    manhole_to: Optional[str] = None
    line_no: Optional[str] = None
    length_of_line: Optional[float] = Field(default=None, ge=0)
    diameter_of_line: Optional[float] = Field(default=None, ge=0)


class ResultSubmission(BaseModel):
    result: WIRResult
    received_date: Optional[date] = None
    status_conditions: str = ""


async def _load_wir(wir_id: str, db: AsyncSession):
    snapshot = await load_project_snapshot(db)
    wir = snapshot.find_wir(wir_id)
    record = await db.get(WIRRecord, wir_id)
    if wir is None or record is None:
        raise HTTPException(status_code=404, detail=f"WIR {wir_id} not found")
    return snapshot, wir, record


@router.get("")
async def list_wirs(
    boq_item_id: Optional[str] = Query(None),
    snapshot: ProjectSnapshot = Depends(get_project_snapshot),
):
    wirs = wirs_for_boq(boq_item_id, snapshot.wirs) if boq_item_id else snapshot.wirs
    return [w.to_dict() for w in wirs]


@router.post("", status_code=201)
async def create_wir(req: WIRCreate, db: AsyncSession = Depends(get_db)):
    snapshot = await load_project_snapshot(db)
    wir = WIR(id=gen_uuid(), submittal_date=req.submittal_date or date.today(),
              **req.model_dump(exclude={"submittal_date"}))
    wir = refresh_derived_fields(wir, snapshot.breakdowns, snapshot.tree)
    db.add(copy_wir_to_record(wir, WIRRecord(id=wir.id)))
    await db.flush()
    logger.info("WIR %s created", wir.display_number, extra={"wir_id": wir.id})
    return wir.to_dict()


@router.put("/{wir_id}")
async def update_wir(wir_id: str, req: WIRUpdate, db: AsyncSession = Depends(get_db)):
    snapshot, wir, record = await _load_wir(wir_id, db)
    changes = {k: v for k, v in req.model_dump(exclude_unset=True).items() if v is not None}
    if "result" in req.model_fields_set and req.result is None:
        changes["result"] = None
    wir = refresh_derived_fields(replace(wir, **changes), snapshot.breakdowns, snapshot.tree)
    copy_wir_to_record(wir, record)
    await db.flush()
    return wir.to_dict()


@router.delete("/{wir_id}")
async def delete_wir(wir_id: str, db: AsyncSession = Depends(get_db)):
    record = await db.get(WIRRecord, wir_id)
    if not record:
        raise HTTPException(status_code=404, detail=f"WIR {wir_id} not found")
    await db.delete(record)
    await db.flush()
    logger.info("WIR %s deleted", wir_id, extra={"wir_id": wir_id})
    return {"deleted": wir_id}


@router.post("/{wir_id}/result")
async def submit_wir_result(wir_id: str, req: ResultSubmission, db: AsyncSession = Depends(get_db)):
    snapshot, wir, record = await _load_wir(wir_id, db)
    wir = submit_result(
        wir, req.result, snapshot.breakdowns, snapshot.tree,
        received_date=req.received_date,
        status_conditions=req.status_conditions,
    )
    copy_wir_to_record(wir, record)
    await db.flush()
    return wir.to_dict()


@router.post("/{wir_id}/revision", status_code=201)
async def request_revision(wir_id: str, db: AsyncSession = Depends(get_db)):
    snapshot, wir, _ = await _load_wir(wir_id, db)
    try:
        revision = build_revision(wir, snapshot.wirs, new_id=gen_uuid())
    except RevisionNotAllowedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    db.add(copy_wir_to_record(revision, WIRRecord(id=revision.id)))
    await db.flush()
    logger.info(
        "Revision %s requested for WIR %s", revision.display_number, wir.display_number,
        extra={"wir_id": revision.id},
    )
    return revision.to_dict()
