"""
Invoice API Routes

GET /api/invoices/months           — months holding approved, dated WIRs
GET /api/invoices/days             — days holding approved, dated WIRs
GET /api/invoices/monthly/{month}  — previous / current / total for YYYY-MM
GET /api/invoices/daily/{day}      — previous / current / total for YYYY-MM-DD
GET /api/invoices/series           — one bucket per available period
"""
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Path, Query

from app.api.deps import ProjectSnapshot, get_project_snapshot
from app.services.invoice_engine import PeriodAggregator

router = APIRouter(prefix="/api/invoices", tags=["Invoices"])
logger = logging.getLogger("boq-tracker-api.invoices")

periods = PeriodAggregator()

MONTH_PATTERN = r"^\d{4}-\d{2}$"
DAY_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


@router.get("/months")
async def list_months(snapshot: ProjectSnapshot = Depends(get_project_snapshot)):
    return periods.available_months(snapshot.wirs)


@router.get("/days")
async def list_days(snapshot: ProjectSnapshot = Depends(get_project_snapshot)):
    return periods.available_days(snapshot.wirs)


@router.get("/monthly/{month}")
async def get_monthly_invoice(
    month: str = Path(pattern=MONTH_PATTERN),
    snapshot: ProjectSnapshot = Depends(get_project_snapshot),
):
    bucket = periods.monthly_bucket(snapshot.wirs, snapshot.breakdowns, snapshot.tree, month)
    return asdict(bucket)


@router.get("/daily/{day}")
async def get_daily_invoice(
    day: str = Path(pattern=DAY_PATTERN),
    snapshot: ProjectSnapshot = Depends(get_project_snapshot),
):
    bucket = periods.daily_bucket(snapshot.wirs, snapshot.breakdowns, snapshot.tree, day)
    return asdict(bucket)


@router.get("/series")
async def get_invoice_series(
    granularity: str = Query("month", pattern="^(month|day)$"),
    snapshot: ProjectSnapshot = Depends(get_project_snapshot),
):
    series = periods.cumulative_series(snapshot.wirs, snapshot.breakdowns, snapshot.tree, granularity)
    return [asdict(b) for b in series]
