"""
wir_calculator.py — Monetary amount contributed by one WIR.

Core formula, per (breakdown, BOQ item) allocation target:

    contribution = wir.value × boq.unit_rate × breakdown.percentage / 100

The WIR value is the submitter's measured quantity (a multiplier, not a
currency amount). Contributions are summed and rounded; a total of zero or
less is reported as ``None`` ("not contributing"), never as 0.

Unresolvable breakdown or BOQ references are skipped and logged so a stale
reference under-reports instead of failing the whole calculation.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from app import config
from app.models.domain import BOQItem, BreakdownItem, WIR
from app.services import boq_tree

logger = logging.getLogger("boq-tracker.engine.calculator")


@dataclass
class AllocationContribution:
    boq_item_id: str
    boq_code: str
    breakdown_id: Optional[str]
    wir_value: float
    unit_rate: float
    percentage: float
    amount: float


@dataclass
class WIRCalculation:
    amount: Optional[float]
    equation: str
    contributions: List[AllocationContribution] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Reference resolution
# ---------------------------------------------------------------------------

def resolve_linked_boq_ids(wir: WIR) -> List[str]:
    """
    BOQ items a WIR is claimed against: its ``linked_boq_items`` when given,
    otherwise its primary ``boq_item_id``.
    """
    linked = [boq_id for boq_id in (wir.linked_boq_items or []) if boq_id]
    if linked:
        return linked
    return [wir.boq_item_id] if wir.boq_item_id else []


def is_related(wir: WIR, boq_item_id: str) -> bool:
    return wir.boq_item_id == boq_item_id or boq_item_id in (wir.linked_boq_items or [])


def _prefer_container(candidates: List[BreakdownItem]) -> Optional[BreakdownItem]:
    for item in candidates:
        if item.parent_breakdown_id is None:
            return item
    return candidates[0] if candidates else None


class _BreakdownIndex:
    """Lookups over the breakdown table: by id, by BOQ item id, by keyword."""

    def __init__(self, breakdowns: Sequence[BreakdownItem]) -> None:
        self.by_id: Dict[str, BreakdownItem] = {}
        self.by_boq: Dict[str, List[BreakdownItem]] = {}
        self.by_keyword: Dict[str, List[BreakdownItem]] = {}
        for item in breakdowns:
            if item.id is not None:
                self.by_id.setdefault(item.id, item)
            self.by_boq.setdefault(item.boq_item_id, []).append(item)
            if item.keyword:
                self.by_keyword.setdefault(item.keyword, []).append(item)

    def for_boq_item(self, boq: BOQItem) -> Optional[BreakdownItem]:
        found = _prefer_container(self.by_boq.get(boq.id, []))
        if found is None and boq.code:
            found = _prefer_container(self.by_keyword.get(boq.code, []))
        return found


def _resolve_targets(
    wir: WIR,
    breakdown_index: _BreakdownIndex,
    boq_index: Dict[str, BOQItem],
) -> Tuple[List[Tuple[BreakdownItem, BOQItem]], List[str]]:
    targets: List[Tuple[BreakdownItem, BOQItem]] = []
    unresolved: List[str] = []

    selected = [b for b in (wir.selected_breakdown_items or []) if b]
    if selected:
        for breakdown_id in selected:
            breakdown = breakdown_index.by_id.get(breakdown_id)
            if breakdown is None:
                unresolved.append(f"breakdown:{breakdown_id}")
                continue
            boq = boq_index.get(breakdown.boq_item_id)
            if boq is None:
                unresolved.append(f"boq:{breakdown.boq_item_id}")
                continue
            targets.append((breakdown, boq))
    else:
        for boq_id in resolve_linked_boq_ids(wir):
            boq = boq_index.get(boq_id)
            if boq is None:
                unresolved.append(f"boq:{boq_id}")
                continue
            breakdown = breakdown_index.for_boq_item(boq)
            if breakdown is None:
                unresolved.append(f"breakdown-for-boq:{boq_id}")
                continue
            targets.append((breakdown, boq))

    if unresolved:
        logger.warning(
            "WIR %s has unresolvable references: %s",
            wir.display_number, ", ".join(unresolved),
            extra={"wir_id": wir.id},
        )
    return targets, unresolved


def resolve_allocation_targets(
    wir: WIR,
    breakdowns: Sequence[BreakdownItem],
    tree: Sequence[BOQItem],
) -> List[Tuple[BreakdownItem, BOQItem]]:
    """
    (breakdown, BOQ item) pairs a WIR is valued against: its selected
    breakdown items when it has any, otherwise the breakdown of each linked
    BOQ item (matched by BOQ id first, then by BOQ code against the keyword).
    """
    targets, _ = _resolve_targets(wir, _BreakdownIndex(breakdowns), boq_tree.index_by_id(tree))
    return targets


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def format_number(value: float, decimals: int = 2) -> str:
    """Plain trace formatting: thousands separators, no trailing zeros."""
    rounded = round(float(value), decimals)
    if rounded.is_integer():
        return f"{int(rounded):,}"
    return f"{rounded:,.{decimals}f}".rstrip("0").rstrip(".")


# ---------------------------------------------------------------------------
# WIRCalculator
# ---------------------------------------------------------------------------

class WIRCalculator:
    """
    Values a single WIR against the breakdown table and BOQ tree.

    Only results A (approved) and B (conditionally approved) have an amount.
    Whether the amount is persisted on the WIR also depends on its status;
    see ``wir_workflow.refresh_derived_fields``.
    """

    def __init__(
        self,
        currency_code: Optional[str] = None,
        decimals: Optional[int] = None,
        approved_results: Optional[Sequence[str]] = None,
    ) -> None:
        self.currency_code: str = currency_code if currency_code is not None else config.CURRENCY_CODE
        self.decimals: int = decimals if decimals is not None else config.AMOUNT_DECIMALS
        self.approved_results: Tuple[str, ...] = tuple(
            approved_results if approved_results is not None else config.APPROVED_RESULTS
        )

    def is_countable(self, wir: WIR) -> bool:
        return wir.result is not None and wir.result in self.approved_results

    def calculate(
        self,
        wir: WIR,
        breakdowns: Sequence[BreakdownItem],
        tree: Sequence[BOQItem],
    ) -> WIRCalculation:
        """Amount and equation trace for one WIR."""
        if not self.is_countable(wir):
            return WIRCalculation(amount=None, equation="")
        return self.calculate_indexed(
            wir, _BreakdownIndex(breakdowns), boq_tree.index_by_id(tree)
        )

    def calculate_indexed(
        self,
        wir: WIR,
        breakdown_index: "_BreakdownIndex",
        boq_index: Dict[str, BOQItem],
    ) -> WIRCalculation:
        """``calculate`` over lookups built once by a caller valuing many WIRs."""
        if not self.is_countable(wir):
            return WIRCalculation(amount=None, equation="")

        targets, unresolved = _resolve_targets(wir, breakdown_index, boq_index)
        wir_value = float(wir.value or 0.0)

        contributions: List[AllocationContribution] = []
        for breakdown, boq in targets:
            percentage = float(breakdown.percentage or 0.0)
            if percentage <= 0:
                logger.debug(
                    "Breakdown %s has no percentage; WIR %s gets nothing from it",
                    breakdown.id, wir.display_number,
                    extra={"wir_id": wir.id, "breakdown_id": breakdown.id},
                )
                continue
            unit_rate = float(boq.unit_rate or 0.0)
            contributions.append(AllocationContribution(
                boq_item_id=boq.id,
                boq_code=boq.code,
                breakdown_id=breakdown.id,
                wir_value=wir_value,
                unit_rate=unit_rate,
                percentage=percentage,
                amount=wir_value * unit_rate * (percentage / 100.0),
            ))

        total = round(sum(c.amount for c in contributions), self.decimals)
        if total <= 0:
            return WIRCalculation(
                amount=None, equation="", contributions=contributions, unresolved=unresolved
            )

        return WIRCalculation(
            amount=total,
            equation=self._equation(contributions, total),
            contributions=contributions,
            unresolved=unresolved,
        )

    def amount_of(
        self,
        wir: WIR,
        breakdowns: Sequence[BreakdownItem],
        tree: Sequence[BOQItem],
    ) -> float:
        """Calculated amount with "no amount" read as 0, for summing."""
        return self.calculate(wir, breakdowns, tree).amount or 0.0

    def _equation(self, contributions: List[AllocationContribution], total: float) -> str:
        d = self.decimals
        parts = [
            f"{format_number(c.wir_value, d)} × {format_number(c.unit_rate, d)} × "
            f"{format_number(c.percentage, d)}% = {format_number(c.amount, d)}"
            for c in contributions
        ]
        if len(parts) > 1:
            return f"{' + '.join(parts)} = {format_number(total, d)} {self.currency_code}"
        return f"{parts[0]} {self.currency_code}"


def build_indexes(
    breakdowns: Sequence[BreakdownItem], tree: Sequence[BOQItem]
) -> Tuple[_BreakdownIndex, Dict[str, BOQItem]]:
    """Lookups for ``WIRCalculator.calculate_indexed``."""
    return _BreakdownIndex(breakdowns), boq_tree.index_by_id(tree)
