"""
invoice_engine.py — Period buckets of approved WIR amounts for invoicing.

A bucket splits the approved (A/B), dated WIRs around a target period:

    previous = amounts received strictly before the period
    current  = amounts received within the period
    total    = previous + current (cumulative to date)

Periods are ISO string prefixes of the received date ("YYYY-MM" for months,
"YYYY-MM-DD" for days), compared as strings. Every call recomputes from the
full WIR list.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from app import config
from app.models.domain import BOQItem, BreakdownItem, WIR, DateLike
from app.services import boq_tree
from app.services.progress_engine import clamp_percentage
from app.services.wir_calculator import WIRCalculator, build_indexes

GRANULARITY_KEY_LENGTH = {
    "month": config.MONTH_KEY_LENGTH,
    "day": config.DAY_KEY_LENGTH,
}


def period_key(received_date: DateLike, granularity: str = "month") -> str:
    """Period of a received date: 2025-03-15 → "2025-03" or "2025-03-15"."""
    return str(received_date)[:GRANULARITY_KEY_LENGTH[granularity]]


@dataclass
class InvoiceBucket:
    period: str
    granularity: str
    previous_amount: float
    current_amount: float
    total_amount: float
    total_boq_amount: float
    completion_percentage: float
    current_wir_ids: List[str] = field(default_factory=list)


class PeriodAggregator:
    """Monthly and daily invoice figures from the WIR list."""

    def __init__(self, calculator: Optional[WIRCalculator] = None) -> None:
        self.calculator = calculator or WIRCalculator()

    def _dated_amounts(
        self,
        wirs: Sequence[WIR],
        breakdowns: Sequence[BreakdownItem],
        tree: Sequence[BOQItem],
    ) -> List[Tuple[WIR, float]]:
        breakdown_index, boq_index = build_indexes(breakdowns, tree)
        dated: List[Tuple[WIR, float]] = []
        for wir in wirs:
            if not wir.received_date or not self.calculator.is_countable(wir):
                continue
            calculation = self.calculator.calculate_indexed(wir, breakdown_index, boq_index)
            dated.append((wir, calculation.amount or 0.0))
        return dated

    def bucket(
        self,
        wirs: Sequence[WIR],
        breakdowns: Sequence[BreakdownItem],
        tree: Sequence[BOQItem],
        period: str,
        granularity: str = "month",
    ) -> InvoiceBucket:
        if granularity not in GRANULARITY_KEY_LENGTH:
            raise ValueError(f"Unknown granularity {granularity!r}; use 'month' or 'day'")

        previous = 0.0
        current = 0.0
        current_ids: List[str] = []
        for wir, amount in self._dated_amounts(wirs, breakdowns, tree):
            key = period_key(wir.received_date, granularity)
            if key == period:
                current += amount
                current_ids.append(wir.id)
            elif key < period:
                previous += amount

        total_boq = boq_tree.project_total(tree)
        total = previous + current
        return InvoiceBucket(
            period=period,
            granularity=granularity,
            previous_amount=previous,
            current_amount=current,
            total_amount=total,
            total_boq_amount=total_boq,
            completion_percentage=clamp_percentage(total, total_boq),
            current_wir_ids=current_ids,
        )

    def monthly_bucket(
        self,
        wirs: Sequence[WIR],
        breakdowns: Sequence[BreakdownItem],
        tree: Sequence[BOQItem],
        target_month: str,
    ) -> InvoiceBucket:
        return self.bucket(wirs, breakdowns, tree, target_month, "month")

    def daily_bucket(
        self,
        wirs: Sequence[WIR],
        breakdowns: Sequence[BreakdownItem],
        tree: Sequence[BOQItem],
        target_day: str,
    ) -> InvoiceBucket:
        return self.bucket(wirs, breakdowns, tree, target_day, "day")

    def available_periods(self, wirs: Sequence[WIR], granularity: str = "month") -> List[str]:
        """Sorted distinct periods holding at least one approved, dated WIR."""
        return sorted({
            period_key(wir.received_date, granularity)
            for wir in wirs
            if wir.received_date and self.calculator.is_countable(wir)
        })

    def available_months(self, wirs: Sequence[WIR]) -> List[str]:
        return self.available_periods(wirs, "month")

    def available_days(self, wirs: Sequence[WIR]) -> List[str]:
        return self.available_periods(wirs, "day")

    def cumulative_series(
        self,
        wirs: Sequence[WIR],
        breakdowns: Sequence[BreakdownItem],
        tree: Sequence[BOQItem],
        granularity: str = "month",
    ) -> List[InvoiceBucket]:
        """One bucket per available period, oldest first."""
        return [
            self.bucket(wirs, breakdowns, tree, period, granularity)
            for period in self.available_periods(wirs, granularity)
        ]
