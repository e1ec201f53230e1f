"""
progress_engine.py — Completion roll-up over the BOQ tree.

Covers:
  - Per-node approved amount and completion percentage (leaves from WIRs,
    parents strictly from their children, post-order)
  - Keyword-based breakdown progress on leaves
  - Breakdown sub-item progress (amount and quantity axes)
  - Site-segment progress summary for one BOQ item

Approved amounts are reported uncapped; only the percentage fields are
clamped to [0, 100]. Every call recomputes from its inputs; there is no
cache between calls.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from app.models.domain import (
    BOQItem, BOQProgress, BreakdownItem, BreakdownProgress, WIR, WIRResult, WIRStatus,
)
from app.services import boq_tree
from app.services.wir_calculator import WIRCalculation, WIRCalculator, build_indexes, is_related

logger = logging.getLogger("boq-tracker.engine.progress")


def clamp_percentage(numerator: float, denominator: float) -> float:
    """numerator / denominator × 100 within [0, 100]; 0 when denominator ≤ 0."""
    if not denominator or denominator <= 0:
        return 0.0
    return max(0.0, min((numerator / denominator) * 100.0, 100.0))


def wirs_for_boq(boq_item_id: str, wirs: Sequence[WIR]) -> List[WIR]:
    """Every WIR related to a BOQ item, whatever its result or status."""
    return [wir for wir in wirs if is_related(wir, boq_item_id)]


@dataclass
class SubItemProgress:
    breakdown_id: Optional[str]
    description: str
    percentage: float
    value: float
    approved_amount: float
    expected_amount: float
    approved_quantity: float
    total_quantity: float
    amount_progress: float
    quantity_progress: float


@dataclass
class ProgressSegment:
    id: str
    sequence: int
    manhole_from: str
    manhole_to: str
    zone: str = ""
    road: str = ""
    line: str = ""
    wir_numbers: List[str] = field(default_factory=list)
    breakdown_wirs: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class ProgressSummary:
    boq_item_id: str
    breakdown_items: List[BreakdownItem]
    segments: List[ProgressSegment]


class ProgressAggregator:
    """
    Rolls WIR amounts up the BOQ tree.

    Leaves sum the credits of their related A/B WIRs (see ``leaf_credit``).
    A parent never looks at WIRs itself, so a WIR linked to both a parent
    and one of its children is counted once, and a WIR valued across
    several leaves is split between them rather than repeated.
    """

    def __init__(self, calculator: Optional[WIRCalculator] = None) -> None:
        self.calculator = calculator or WIRCalculator()

    # ------------------------------------------------------------------
    # Tree roll-up
    # ------------------------------------------------------------------

    def _countable_calculations(
        self,
        breakdowns: Sequence[BreakdownItem],
        tree: Sequence[BOQItem],
        wirs: Sequence[WIR],
    ) -> List[Tuple[WIR, WIRCalculation]]:
        breakdown_index, boq_index = build_indexes(breakdowns, tree)
        calculations: List[Tuple[WIR, WIRCalculation]] = []
        for wir in wirs:
            if not self.calculator.is_countable(wir):
                continue
            calculations.append(
                (wir, self.calculator.calculate_indexed(wir, breakdown_index, boq_index))
            )
        return calculations

    def leaf_credit(self, wir: WIR, calculation: WIRCalculation, boq_item_id: str) -> float:
        """
        Share of a WIR's amount credited to one BOQ leaf.

        A WIR valued against a single BOQ item credits its whole amount to
        every related leaf. A WIR valued against several BOQ items credits
        each leaf only with the contributions allocated to it, so the leaves
        together never receive more than the WIR's amount.
        """
        if not calculation.amount:
            return 0.0
        targets = {c.boq_item_id for c in calculation.contributions}
        if len(targets) <= 1:
            return calculation.amount if is_related(wir, boq_item_id) else 0.0
        share = sum(c.amount for c in calculation.contributions if c.boq_item_id == boq_item_id)
        return round(share, self.calculator.decimals)

    def aggregate(
        self,
        tree: Sequence[BOQItem],
        breakdowns: Sequence[BreakdownItem],
        wirs: Sequence[WIR],
    ) -> List[BOQProgress]:
        """One BOQProgress per node, in pre-order."""
        calculations = self._countable_calculations(breakdowns, tree, wirs)
        breakdowns_by_boq: Dict[str, List[BreakdownItem]] = {}
        for item in breakdowns:
            breakdowns_by_boq.setdefault(item.boq_item_id, []).append(item)

        results: Dict[int, BOQProgress] = {}

        def visit(node: BOQItem) -> float:
            total_amount = boq_tree.total_value(node)
            breakdown_progress: List[BreakdownProgress] = []
            if node.is_leaf:
                credited = [
                    (wir, self.leaf_credit(wir, calculation, node.id))
                    for wir, calculation in calculations
                ]
                related = [(wir, amount) for wir, amount in credited if amount]
                approved = sum(amount for _, amount in related)
                breakdown_progress = self._keyword_progress(
                    breakdowns_by_boq.get(node.id, []), related, total_amount
                )
            else:
                # Children first: a parent is only the sum of finished children
                approved = sum(visit(child) for child in node.children)

            results[id(node)] = BOQProgress(
                boq_item_id=node.id,
                code=node.code,
                total_quantity=node.quantity,
                total_amount=total_amount,
                approved_amount=approved,
                completion_percentage=clamp_percentage(approved, total_amount),
                is_leaf=node.is_leaf,
                breakdown_progress=breakdown_progress,
            )
            if total_amount > 0 and approved > total_amount:
                logger.info(
                    "BOQ item %s is over-claimed: %.2f approved of %.2f",
                    node.code, approved, total_amount,
                    extra={"boq_item_id": node.id},
                )
            return approved

        for root in tree:
            visit(root)
        return [results[id(node)] for node in boq_tree.flatten(tree)]

    @staticmethod
    def _keyword_progress(
        leaf_breakdowns: List[BreakdownItem],
        related: List[Tuple[WIR, float]],
        total_amount: float,
    ) -> List[BreakdownProgress]:
        # Loose match: the breakdown keyword anywhere in the WIR description
        progress: List[BreakdownProgress] = []
        for breakdown in leaf_breakdowns:
            keyword = (breakdown.keyword or "").lower()
            matched = sum(
                amount for wir, amount in related
                if keyword in (wir.description or "").lower()
            )
            percentage = breakdown.percentage or 0.0
            expected = total_amount * percentage / 100.0
            progress.append(BreakdownProgress(
                breakdown_id=breakdown.id,
                percentage=percentage,
                approved_amount=matched,
                completed_percentage=clamp_percentage(matched, expected),
            ))
        return progress

    def project_completion(
        self,
        tree: Sequence[BOQItem],
        breakdowns: Sequence[BreakdownItem],
        wirs: Sequence[WIR],
    ) -> Dict[str, float]:
        """Project-wide figures: the sum over root nodes."""
        roots = {id(root) for root in tree}
        progress = self.aggregate(tree, breakdowns, wirs)
        flat = boq_tree.flatten(tree)
        approved = sum(p.approved_amount for node, p in zip(flat, progress) if id(node) in roots)
        total = boq_tree.project_total(tree)
        return {
            "total_amount": total,
            "approved_amount": approved,
            "completion_percentage": clamp_percentage(approved, total),
        }

    # ------------------------------------------------------------------
    # Sub-item progress
    # ------------------------------------------------------------------

    def sub_item_progress(
        self,
        boq_leaf: BOQItem,
        breakdowns: Sequence[BreakdownItem],
        wirs: Sequence[WIR],
    ) -> List[SubItemProgress]:
        """
        Progress of each breakdown sub-item of a BOQ leaf, from the approved
        WIRs that explicitly selected it.
        """
        sub_items = [
            b for b in breakdowns
            if b.boq_item_id == boq_leaf.id and b.parent_breakdown_id is not None
        ]
        unit_rate = boq_leaf.unit_rate or 0.0
        total_quantity = boq_leaf.quantity or 0.0

        rows: List[SubItemProgress] = []
        for sub_item in sub_items:
            claimed = [
                wir for wir in wirs
                if self.calculator.is_countable(wir)
                and sub_item.id in (wir.selected_breakdown_items or [])
            ]
            fraction = (sub_item.percentage or 0.0) / 100.0
            approved_amount = sum((wir.value or 0.0) * unit_rate * fraction for wir in claimed)
            approved_quantity = sum(wir.value or 0.0 for wir in claimed)
            expected_amount = total_quantity * unit_rate * fraction
            rows.append(SubItemProgress(
                breakdown_id=sub_item.id,
                description=sub_item.description,
                percentage=sub_item.percentage or 0.0,
                value=sub_item.value or 0.0,
                approved_amount=approved_amount,
                expected_amount=expected_amount,
                approved_quantity=approved_quantity,
                total_quantity=total_quantity,
                amount_progress=clamp_percentage(approved_amount, expected_amount),
                quantity_progress=clamp_percentage(approved_quantity, total_quantity),
            ))
        return rows

    # ------------------------------------------------------------------
    # Segment summary
    # ------------------------------------------------------------------

    @staticmethod
    def progress_summary(
        boq_item_id: str,
        breakdowns: Sequence[BreakdownItem],
        wirs: Sequence[WIR],
    ) -> ProgressSummary:
        """
        Related WIRs grouped by manhole segment, with the WIR numbers that
        cover each leaf breakdown item of the BOQ item.
        """
        leaf_breakdowns = [b for b in breakdowns if b.boq_item_id == boq_item_id and b.is_leaf]
        segments: Dict[str, ProgressSegment] = {}

        for wir in wirs_for_boq(boq_item_id, wirs):
            key = f"{wir.manhole_from or ''}-{wir.manhole_to or ''}"
            segment = segments.get(key)
            if segment is None:
                segment = ProgressSegment(
                    id=key,
                    sequence=len(segments) + 1,
                    manhole_from=wir.manhole_from or "",
                    manhole_to=wir.manhole_to or "",
                    zone=wir.zone or "",
                    road=wir.road or "",
                    line=wir.line or "",
                )
                segments[key] = segment

            number = wir.display_number
            segment.wir_numbers.append(number)
            for breakdown in leaf_breakdowns:
                segment.breakdown_wirs.setdefault(breakdown.id, [])

            if wir.selected_breakdown_items:
                for breakdown_id in wir.selected_breakdown_items:
                    if breakdown_id in segment.breakdown_wirs:
                        segment.breakdown_wirs[breakdown_id].append(number)
            elif wir.result == WIRResult.APPROVED or wir.status == WIRStatus.COMPLETED:
                for breakdown in leaf_breakdowns:
                    segment.breakdown_wirs[breakdown.id].append(number)

            # Latest WIR with location details wins
            if wir.zone:
                segment.zone = wir.zone
            if wir.road:
                segment.road = wir.road
            if wir.line:
                segment.line = wir.line

        return ProgressSummary(
            boq_item_id=boq_item_id,
            breakdown_items=leaf_breakdowns,
            segments=sorted(segments.values(), key=lambda s: s.sequence),
        )
