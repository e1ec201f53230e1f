"""
wir_workflow.py — WIR lifecycle transitions and their derived fields.

A WIR carries a calculated amount only while its result is A or B *and* its
status is ``completed``; every other state resets the amount to None and the
equation to "". Each transition returns a new WIR; inputs are never mutated.
"""

import logging
from dataclasses import replace
from datetime import date
from typing import Optional, Sequence

from app import config
from app.models.domain import BOQItem, BreakdownItem, WIR, WIRResult, WIRStatus, DateLike
from app.services.wir_calculator import WIRCalculator

logger = logging.getLogger("boq-tracker.engine.workflow")

REVISION_SEPARATOR = "_R"


class RevisionNotAllowedError(ValueError):
    """Raised when a revision is requested for an ineligible WIR."""


def carries_amount(wir: WIR) -> bool:
    return (
        wir.result is not None
        and wir.result in config.APPROVED_RESULTS
        and wir.status == config.AMOUNT_BEARING_STATUS
    )


def refresh_derived_fields(
    wir: WIR,
    breakdowns: Sequence[BreakdownItem],
    tree: Sequence[BOQItem],
    calculator: Optional[WIRCalculator] = None,
) -> WIR:
    """WIR with ``calculated_amount`` / ``calculation_equation`` recomputed."""
    if not carries_amount(wir):
        return replace(wir, calculated_amount=None, calculation_equation="")
    calculation = (calculator or WIRCalculator()).calculate(wir, breakdowns, tree)
    return replace(
        wir,
        calculated_amount=calculation.amount,
        calculation_equation=calculation.equation,
    )


def submit_result(
    wir: WIR,
    result: WIRResult,
    breakdowns: Sequence[BreakdownItem],
    tree: Sequence[BOQItem],
    received_date: Optional[DateLike] = None,
    status_conditions: str = "",
    calculator: Optional[WIRCalculator] = None,
    today: Optional[date] = None,
) -> WIR:
    """
    Record the engineer's result: the WIR becomes ``completed``, its received
    date defaults to today, and its amount is recomputed.
    """
    received = received_date or wir.received_date or (today or date.today())
    updated = replace(
        wir,
        result=WIRResult(result),
        status=WIRStatus.COMPLETED,
        received_date=received,
        status_conditions=status_conditions or wir.status_conditions,
    )
    updated = refresh_derived_fields(updated, breakdowns, tree, calculator)
    logger.info(
        "Result %s recorded for WIR %s (amount=%s)",
        updated.result.value, updated.display_number, updated.calculated_amount,
        extra={"wir_id": wir.id},
    )
    return updated


# ---------------------------------------------------------------------------
# Revisions
# ---------------------------------------------------------------------------

def can_request_revision(wir: WIR, all_wirs: Sequence[WIR]) -> bool:
    """Only a completed, rejected WIR without an existing revision."""
    if wir.status != WIRStatus.COMPLETED or wir.result != WIRResult.REJECTED:
        return False
    return not any(other.parent_wir_id == wir.id for other in all_wirs)


def build_revision(
    wir: WIR,
    all_wirs: Sequence[WIR],
    new_id: Optional[str] = None,
    today: Optional[date] = None,
) -> WIR:
    """
    Resubmission of a rejected WIR, numbered ``<base>_R<n>``, carrying the
    original's BOQ links, selections, value and site location.
    """
    if not can_request_revision(wir, all_wirs):
        raise RevisionNotAllowedError(
            f"Cannot request revision for WIR {wir.display_number}: only a completed, "
            "rejected WIR without an existing revision qualifies"
        )

    base_number = wir.display_number.split(REVISION_SEPARATOR)[0]
    original_id = wir.original_wir_id or wir.id
    previous = [
        other for other in all_wirs
        if (other.original_wir_id or other.id) == original_id and other.revision_number > 0
    ]
    revision_number = max([wir.revision_number] + [p.revision_number for p in previous]) + 1
    revision_wir_number = f"{base_number}{REVISION_SEPARATOR}{revision_number}"

    return WIR(
        id=new_id or revision_wir_number,
        boq_item_id=wir.boq_item_id,
        value=wir.value,
        result=None,
        status=WIRStatus.SUBMITTED,
        description=wir.description,
        linked_boq_items=list(wir.linked_boq_items),
        selected_breakdown_items=list(wir.selected_breakdown_items),
        calculated_amount=None,
        calculation_equation="",
        submittal_date=(today or date.today()),
        received_date=None,
        wir_number=revision_wir_number,
        contractor=wir.contractor,
        engineer=wir.engineer,
        parent_wir_id=wir.id,
        original_wir_id=original_id,
        revision_number=revision_number,
        region=wir.region,
        zone=wir.zone,
        road=wir.road,
        line=wir.line,
        manhole_from=wir.manhole_from,
        manhole_to=wir.manhole_to,
        line_no=wir.line_no,
        length_of_line=wir.length_of_line,
        diameter_of_line=wir.diameter_of_line,
    )
