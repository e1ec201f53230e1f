"""
breakdown_engine.py — Percentage allocation of BOQ leaf unit rates.

Covers:
  - Container proposals: one record per BOQ leaf at the container depth,
    returned for the persistence layer to upsert by boq_item_id (idempotent)
  - Allocated amount of a breakdown record (unit rate × percentage / 100)
  - Sub-item creation and editing with boundary validation of percentages
  - Re-syncing cached unit rate / quantity when BOQ leaves change
  - Allocation diagnostics (sub-item percentages not totalling 100 %)

Partial and over-100 % allocations across sub-items are allowed; they are
reported by ``allocation_status`` but never rejected.
"""

import logging
import math
from dataclasses import replace
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from app import config
from app.models.domain import BOQItem, BreakdownItem
from app.services import boq_tree

logger = logging.getLogger("boq-tracker.engine.breakdown")

# Fields a user may change on an existing breakdown record
_EDITABLE_FIELDS = ("description", "description_ar", "keyword_ar", "percentage")


class BreakdownValidationError(ValueError):
    """Raised when a breakdown record is created or edited with invalid input."""


class BreakdownDeletionDisabled(Exception):
    """Breakdown records are never deleted; only their fields change."""

    def __init__(self, breakdown_id: Optional[str] = None):
        self.breakdown_id = breakdown_id
        super().__init__(
            "Breakdown items cannot be deleted. They are managed automatically "
            "from BOQ items."
        )


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def validate_percentage(percentage: Any) -> float:
    """Coerce and bound-check a user-entered percentage. Returns the float."""
    try:
        value = float(percentage)
    except (TypeError, ValueError):
        raise BreakdownValidationError(f"Percentage must be a number, got {percentage!r}")
    if math.isnan(value) or math.isinf(value):
        raise BreakdownValidationError("Percentage must be a finite number")
    if value < config.MIN_PERCENTAGE or value > config.MAX_PERCENTAGE:
        raise BreakdownValidationError(
            f"Percentage must be between {config.MIN_PERCENTAGE:g} and "
            f"{config.MAX_PERCENTAGE:g}, got {value:g}"
        )
    return value


def allocated_amount(breakdown: BreakdownItem, boq_leaf: BOQItem) -> float:
    """
    Share of the BOQ leaf's unit rate taken by this breakdown record.
    An absent or zero percentage allocates nothing.
    """
    percentage = breakdown.percentage or 0.0
    if percentage <= 0:
        return 0.0
    return (boq_leaf.unit_rate or 0.0) * percentage / 100.0


def _leaves_with_parent(
    tree: Sequence[BOQItem], parent: Optional[BOQItem] = None
) -> Iterator[Tuple[BOQItem, Optional[BOQItem]]]:
    for item in tree:
        if item.is_leaf:
            yield item, parent
        else:
            yield from _leaves_with_parent(item.children, item)


def _prefixed(parent_text: Optional[str], text: Optional[str]) -> Optional[str]:
    if parent_text and text:
        return f"{parent_text} - {text}"
    return text or parent_text


# ---------------------------------------------------------------------------
# BreakdownAllocator
# ---------------------------------------------------------------------------

class BreakdownAllocator:
    """
    Maintains the breakdown table against the BOQ tree.

    Nothing here writes to storage: every operation returns the records the
    caller should insert or update.
    """

    def __init__(
        self,
        container_depth: Optional[int] = None,
        container_percentage: Optional[float] = None,
    ) -> None:
        self.container_depth: int = (
            container_depth if container_depth is not None else config.BREAKDOWN_CONTAINER_DEPTH
        )
        self.container_percentage: float = (
            container_percentage if container_percentage is not None
            else config.CONTAINER_PERCENTAGE
        )

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def ensure_containers(
        self,
        tree: Sequence[BOQItem],
        existing: Sequence[BreakdownItem],
    ) -> List[BreakdownItem]:
        """
        Propose a container for every leaf at the container depth that has
        none yet. Running this again with the proposals merged into
        ``existing`` proposes nothing.
        """
        covered = {b.boq_item_id for b in existing if b.parent_breakdown_id is None}
        proposals: List[BreakdownItem] = []

        for leaf, parent in _leaves_with_parent(tree):
            if boq_tree.depth(leaf) != self.container_depth:
                continue
            if leaf.id in covered:
                continue
            covered.add(leaf.id)

            container = BreakdownItem(
                id=None,
                boq_item_id=leaf.id,
                percentage=self.container_percentage,
                keyword=leaf.code,
                keyword_ar=leaf.code,
                description=_prefixed(parent.description if parent else None, leaf.description) or "",
                description_ar=_prefixed(
                    (parent.description_ar or parent.description) if parent else None,
                    leaf.description_ar or leaf.description,
                ),
                is_leaf=True,
                parent_breakdown_id=None,
                unit_rate=leaf.unit_rate,
                quantity=leaf.quantity,
            )
            container.value = allocated_amount(container, leaf)
            proposals.append(container)

        if proposals:
            logger.info("Proposing %d new breakdown container(s)", len(proposals))
        return proposals

    # ------------------------------------------------------------------
    # Sub-items
    # ------------------------------------------------------------------

    def build_sub_item(
        self,
        parent: BreakdownItem,
        tree: Sequence[BOQItem],
        percentage: Any,
        description: str = "",
        keyword: Optional[str] = None,
        description_ar: Optional[str] = None,
        keyword_ar: Optional[str] = None,
        sub_item_id: Optional[str] = None,
    ) -> BreakdownItem:
        """
        New sub-item under a container. Quantity is copied from the BOQ
        leaf, not derived from the percentage.
        """
        if parent.parent_breakdown_id is not None:
            raise BreakdownValidationError(
                "Sub-items can only be added to a container breakdown item"
            )
        pct = validate_percentage(percentage)
        boq_leaf = boq_tree.find_by_id(tree, parent.boq_item_id)
        if boq_leaf is None:
            raise BreakdownValidationError(
                f"BOQ item {parent.boq_item_id} of breakdown {parent.id} not found"
            )

        sub_item = BreakdownItem(
            id=sub_item_id,
            boq_item_id=parent.boq_item_id,
            percentage=pct,
            keyword=keyword if keyword is not None else parent.keyword,
            keyword_ar=keyword_ar if keyword_ar is not None else parent.keyword_ar,
            description=description,
            description_ar=description_ar,
            is_leaf=True,
            parent_breakdown_id=parent.id,
            unit_rate=boq_leaf.unit_rate,
            quantity=boq_leaf.quantity,
        )
        sub_item.value = allocated_amount(sub_item, boq_leaf)
        return sub_item

    @staticmethod
    def mark_container(parent: BreakdownItem) -> BreakdownItem:
        """A container with sub-items is no longer a selectable leaf."""
        if not parent.is_leaf:
            return parent
        return replace(parent, is_leaf=False)

    def apply_update(
        self,
        item: BreakdownItem,
        changes: Mapping[str, Any],
        tree: Sequence[BOQItem],
    ) -> BreakdownItem:
        """
        Apply user edits. ``boq_item_id``, ``keyword`` and
        ``parent_breakdown_id`` never change; cached BOQ figures and the
        derived value are refreshed.
        """
        updates: Dict[str, Any] = {}
        for key in _EDITABLE_FIELDS:
            if key in changes and changes[key] is not None:
                updates[key] = changes[key]
        if "percentage" in updates:
            updates["percentage"] = validate_percentage(updates["percentage"])

        updated = replace(item, **updates)
        boq_leaf = boq_tree.find_by_id(tree, item.boq_item_id)
        if boq_leaf is None:
            logger.warning(
                "Breakdown %s points at missing BOQ item %s; cached figures kept",
                item.id, item.boq_item_id,
                extra={"breakdown_id": item.id, "boq_item_id": item.boq_item_id},
            )
            return updated

        updated.unit_rate = boq_leaf.unit_rate
        updated.quantity = boq_leaf.quantity
        updated.value = allocated_amount(updated, boq_leaf)
        return updated

    # ------------------------------------------------------------------
    # Sync & diagnostics
    # ------------------------------------------------------------------

    def sync_cached_figures(
        self,
        breakdowns: Sequence[BreakdownItem],
        tree: Sequence[BOQItem],
    ) -> List[BreakdownItem]:
        """Records whose cached BOQ figures are stale, already corrected."""
        index = boq_tree.index_by_id(tree)
        changed: List[BreakdownItem] = []
        for item in breakdowns:
            boq_leaf = index.get(item.boq_item_id)
            if boq_leaf is None:
                continue
            value = allocated_amount(item, boq_leaf)
            if (
                item.unit_rate != boq_leaf.unit_rate
                or item.quantity != boq_leaf.quantity
                or not math.isclose(item.value or 0.0, value, abs_tol=1e-9)
            ):
                changed.append(
                    replace(item, unit_rate=boq_leaf.unit_rate, quantity=boq_leaf.quantity, value=value)
                )
        return changed

    @staticmethod
    def allocation_status(
        boq_item_id: str, breakdowns: Sequence[BreakdownItem]
    ) -> Dict[str, Any]:
        """
        Sum of the sub-item percentages of one BOQ leaf. Allocations that do
        not total 100 % are flagged, not rejected.
        """
        sub_items = [
            b for b in breakdowns
            if b.boq_item_id == boq_item_id and b.parent_breakdown_id is not None
        ]
        total_pct = round(sum(b.percentage or 0.0 for b in sub_items), 6)
        fully_allocated = math.isclose(total_pct, 100.0, abs_tol=1e-6)
        if sub_items and not fully_allocated:
            logger.debug(
                "Sub-items of BOQ item %s allocate %.4g%%", boq_item_id, total_pct,
                extra={"boq_item_id": boq_item_id},
            )
        return {
            "boq_item_id": boq_item_id,
            "sub_item_count": len(sub_items),
            "allocated_pct": total_pct,
            "unallocated_pct": round(100.0 - total_pct, 6),
            "fully_allocated": fully_allocated,
            "over_allocated": total_pct > 100.0 + 1e-6,
        }

    @staticmethod
    def delete(item: BreakdownItem) -> None:
        raise BreakdownDeletionDisabled(item.id)
