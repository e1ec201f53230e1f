"""
Engine records for the BOQ / WIR progress engine.

These are plain in-memory structures handed to the services by the
persistence layer. Parents own their children by value; a child refers back
to its parent only through ``parent_id``.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class WIRResult(str, Enum):
    APPROVED = "A"
    CONDITIONAL = "B"
    REJECTED = "C"


class WIRStatus(str, Enum):
    SUBMITTED = "submitted"
    RECEIVED = "received"
    REVISION = "revision"
    COMPLETED = "completed"


# ISO date string ("2025-03-15") or a date object; both sort and slice the same.
DateLike = Union[date, str]


@dataclass
class BOQItem:
    """A node of the priced catalogue. Only leaves carry quantity × unit rate."""
    id: str
    code: str
    description: str = ""
    quantity: float = 0.0
    unit: str = ""
    unit_rate: float = 0.0
    description_ar: Optional[str] = None
    unit_ar: Optional[str] = None
    parent_id: Optional[str] = None
    children: List["BOQItem"] = field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        # An empty children list and no children mean the same thing.
        return not self.children


@dataclass
class BreakdownItem:
    """Percentage allocation of one BOQ leaf's unit rate."""
    id: Optional[str]
    boq_item_id: str
    percentage: float = 0.0
    keyword: str = ""
    description: str = ""
    keyword_ar: Optional[str] = None
    description_ar: Optional[str] = None
    value: float = 0.0
    is_leaf: bool = True
    parent_breakdown_id: Optional[str] = None
    # Cached copies of the owning BOQ leaf's figures
    unit_rate: float = 0.0
    quantity: float = 0.0

    @property
    def is_container(self) -> bool:
        return self.parent_breakdown_id is None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WIR:
    """Work Inspection Request: a claim of completed work against the BOQ."""
    id: str
    boq_item_id: str
    value: float = 0.0
    result: Optional[WIRResult] = None
    status: WIRStatus = WIRStatus.SUBMITTED
    description: str = ""
    linked_boq_items: List[str] = field(default_factory=list)
    selected_breakdown_items: List[str] = field(default_factory=list)
    calculated_amount: Optional[float] = None
    calculation_equation: str = ""
    submittal_date: Optional[DateLike] = None
    received_date: Optional[DateLike] = None
    wir_number: Optional[str] = None
    contractor: str = ""
    engineer: str = ""
    status_conditions: str = ""
    # Revisions
    parent_wir_id: Optional[str] = None
    original_wir_id: Optional[str] = None
    revision_number: int = 0
    # Site location
    region: str = ""
    zone: str = ""
    road: str = ""
    line: str = ""
    manhole_from: str = ""
    manhole_to: str = ""
    line_no: str = ""
    length_of_line: float = 0.0
    diameter_of_line: float = 0.0

    @property
    def display_number(self) -> str:
        return self.wir_number or self.id

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["result"] = self.result.value if isinstance(self.result, Enum) else self.result
        data["status"] = self.status.value if isinstance(self.status, Enum) else self.status
        for key in ("submittal_date", "received_date"):
            if isinstance(data[key], date):
                data[key] = data[key].isoformat()
        return data


@dataclass
class BreakdownProgress:
    breakdown_id: Optional[str]
    percentage: float
    approved_amount: float
    completed_percentage: float


@dataclass
class BOQProgress:
    """
    Per-node progress snapshot.

    ``approved_amount`` is uncapped (over-claims stay visible for variance
    reporting); ``completion_percentage`` is clamped to [0, 100] for display.
    """
    boq_item_id: str
    code: str
    total_quantity: float
    total_amount: float
    approved_amount: float
    completion_percentage: float
    is_leaf: bool
    breakdown_progress: List[BreakdownProgress] = field(default_factory=list)

    @property
    def completed_quantity(self) -> float:
        # Legacy name: this has always held an amount, not a BOQ quantity.
        return self.approved_amount

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["completed_quantity"] = self.completed_quantity
        return data
