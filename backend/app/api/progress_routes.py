"""
Progress API Routes

GET /api/progress                          — completion of every BOQ node
GET /api/progress/project                  — project-wide completion
GET /api/progress/{boq_item_id}/summary    — segment summary and sub-item progress
"""
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import ProjectSnapshot, get_project_snapshot
from app.services import boq_tree
from app.services.breakdown_engine import BreakdownAllocator
from app.services.progress_engine import ProgressAggregator

router = APIRouter(prefix="/api/progress", tags=["Progress"])
logger = logging.getLogger("boq-tracker-api.progress")

aggregator = ProgressAggregator()


@router.get("")
async def get_progress(snapshot: ProjectSnapshot = Depends(get_project_snapshot)):
    progress = aggregator.aggregate(snapshot.tree, snapshot.breakdowns, snapshot.wirs)
    return [p.to_dict() for p in progress]


@router.get("/project")
async def get_project_completion(snapshot: ProjectSnapshot = Depends(get_project_snapshot)):
    return aggregator.project_completion(snapshot.tree, snapshot.breakdowns, snapshot.wirs)


@router.get("/{boq_item_id}/summary")
async def get_progress_summary(
    boq_item_id: str, snapshot: ProjectSnapshot = Depends(get_project_snapshot)
):
    node = boq_tree.find_by_id(snapshot.tree, boq_item_id)
    if node is None:
        raise HTTPException(status_code=404, detail=f"BOQ item {boq_item_id} not found")

    summary = aggregator.progress_summary(boq_item_id, snapshot.breakdowns, snapshot.wirs)
    sub_items = aggregator.sub_item_progress(node, snapshot.breakdowns, snapshot.wirs) if node.is_leaf else []
    return {
        "boq_item_id": boq_item_id,
        "breakdown_items": [b.to_dict() for b in summary.breakdown_items],
        "segments": [asdict(s) for s in summary.segments],
        "sub_items": [asdict(s) for s in sub_items],
        "allocation": BreakdownAllocator.allocation_status(boq_item_id, snapshot.breakdowns),
    }
