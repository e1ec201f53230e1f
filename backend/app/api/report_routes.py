"""
Report Routes — financial summaries and Excel export.

GET /api/reports/summary       — WIR counts, approved / conditional amounts, cost variance
GET /api/reports/performance   — per contractor or engineer
GET /api/reports/export        — progress workbook (.xlsx), with an invoice sheet when ?month= is given
"""
import io
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from app.api.deps import ProjectSnapshot, get_project_snapshot
from app.services.invoice_engine import PeriodAggregator
from app.services.progress_engine import ProgressAggregator
from app.services.report_engine import ReportEngine

router = APIRouter(prefix="/api/reports", tags=["Reports"])
logger = logging.getLogger("boq-tracker-api.reports")

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("/summary")
async def get_financial_summary(snapshot: ProjectSnapshot = Depends(get_project_snapshot)):
    return ReportEngine().financial_summary(snapshot.wirs, snapshot.breakdowns, snapshot.tree)


@router.get("/performance")
async def get_entity_performance(
    by: str = Query("contractor", pattern="^(contractor|engineer)$"),
    snapshot: ProjectSnapshot = Depends(get_project_snapshot),
):
    return ReportEngine().entity_performance(snapshot.wirs, snapshot.breakdowns, snapshot.tree, by=by)


@router.get("/export")
async def export_progress(
    month: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$"),
    snapshot: ProjectSnapshot = Depends(get_project_snapshot),
):
    progress = ProgressAggregator().aggregate(snapshot.tree, snapshot.breakdowns, snapshot.wirs)
    bucket = None
    if month:
        bucket = PeriodAggregator().monthly_bucket(
            snapshot.wirs, snapshot.breakdowns, snapshot.tree, month
        )
    data = ReportEngine().export_progress_workbook(progress, snapshot.tree, bucket)
    filename = f"BOQ_Progress_{datetime.now(timezone.utc).strftime('%Y%m%d')}.xlsx"
    return StreamingResponse(
        io.BytesIO(data),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
