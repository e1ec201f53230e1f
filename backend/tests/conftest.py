"""
conftest.py — Shared pytest fixtures for the BOQ progress tracker test suite.

No database or external service fixtures are defined here.  All engine tests
are pure unit tests over in-memory records; the API tests override the
project snapshot dependency instead of touching a database.

Sample project (container depth 5):

    200                      Pipeline works
    └── 200.1                Gravity sewer
        ├── 200.1.3          Pipes
        │   └── 200.1.3.2    uPVC
        │       ├── 200.1.3.2.1  leaf-a  qty 100 × 50   =  5,000
        │       └── 200.1.3.2.2  leaf-b  qty  10 × 200  =  2,000
        └── 200.1.4      leaf-s  qty   4 × 250  =  1,000   (shallow, no container)

    project total = 8,000

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``app.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
from datetime import date

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any app imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

from app.models.domain import BreakdownItem, WIR, WIRResult, WIRStatus  # noqa: E402
from app.services.boq_tree import build_tree  # noqa: E402


# ---------------------------------------------------------------------------
# BOQ rows / tree
# ---------------------------------------------------------------------------

def _project_rows():
    return [
        {"id": "root", "code": "200", "description": "Pipeline works", "parent_id": None},
        {"id": "l2", "code": "200.1", "description": "Gravity sewer", "parent_id": "root"},
        {"id": "l3", "code": "200.1.3", "description": "Pipes", "parent_id": "l2"},
        {"id": "l4", "code": "200.1.3.2", "description": "uPVC", "parent_id": "l3",
         "description_ar": "يو بي في سي"},
        {"id": "leaf-a", "code": "200.1.3.2.1", "description": "200 mm pipe", "parent_id": "l4",
         "quantity": 100, "unit": "m", "unit_rate": 50},
        {"id": "leaf-b", "code": "200.1.3.2.2", "description": "300 mm pipe", "parent_id": "l4",
         "quantity": 10, "unit": "m", "unit_rate": 200},
        {"id": "leaf-s", "code": "200.1.4", "description": "Manholes", "parent_id": "l2",
         "quantity": 4, "unit": "nr", "unit_rate": 250},
    ]


@pytest.fixture
def project_rows():
    return _project_rows()


@pytest.fixture
def project_tree():
    """Freshly built sample tree (see module docstring)."""
    return build_tree(_project_rows())


# ---------------------------------------------------------------------------
# Breakdown table
# ---------------------------------------------------------------------------

@pytest.fixture
def project_breakdowns():
    """
    Containers for both depth-5 leaves; leaf-a's container is split into two
    sub-items (40 % excavation, 60 % backfilling).
    """
    return [
        BreakdownItem(id="bd-a", boq_item_id="leaf-a", percentage=100.0,
                      keyword="200.1.3.2.1", description="uPVC - 200 mm pipe",
                      value=50.0, is_leaf=False, unit_rate=50.0, quantity=100.0),
        BreakdownItem(id="bd-b", boq_item_id="leaf-b", percentage=100.0,
                      keyword="200.1.3.2.2", description="uPVC - 300 mm pipe",
                      value=200.0, is_leaf=True, unit_rate=200.0, quantity=10.0),
        BreakdownItem(id="sub-a1", boq_item_id="leaf-a", percentage=40.0,
                      keyword="excavation", description="Excavation",
                      value=20.0, parent_breakdown_id="bd-a", unit_rate=50.0, quantity=100.0),
        BreakdownItem(id="sub-a2", boq_item_id="leaf-a", percentage=60.0,
                      keyword="backfilling", description="Backfilling",
                      value=30.0, parent_breakdown_id="bd-a", unit_rate=50.0, quantity=100.0),
    ]


# ---------------------------------------------------------------------------
# WIR list
# ---------------------------------------------------------------------------

@pytest.fixture
def project_wirs():
    """
    Amounts under the sample breakdowns:
      w1  A  leaf-a  10 × 50 × 40 %  =   200   received 2025-01-10
      w2  B  leaf-a  20 × 50 × 100 % = 1,000   received 2025-02-05
      w3  C  leaf-b  rejected                  received 2025-02-07
      w4  A  leaf-b  3 × 200 × 100 % =   600   received 2025-03-01
      w5  -  leaf-a  submitted, no result
    """
    return [
        WIR(id="w1", boq_item_id="leaf-a", value=10, result=WIRResult.APPROVED,
            status=WIRStatus.COMPLETED, description="Excavation for 200 mm pipe",
            selected_breakdown_items=["sub-a1"], received_date=date(2025, 1, 10),
            wir_number="WIR-001", contractor="Al Bina", engineer="Eng. Rami",
            zone="Z1", road="R5", line="L1", manhole_from="MH1", manhole_to="MH2"),
        WIR(id="w2", boq_item_id="leaf-a", value=20, result=WIRResult.CONDITIONAL,
            status=WIRStatus.COMPLETED, description="Pipe laying 200 mm",
            received_date=date(2025, 2, 5), wir_number="WIR-002",
            contractor="Al Bina", engineer="Eng. Sara",
            manhole_from="MH2", manhole_to="MH3"),
        WIR(id="w3", boq_item_id="leaf-b", value=5, result=WIRResult.REJECTED,
            status=WIRStatus.COMPLETED, description="Pipe laying 300 mm",
            received_date=date(2025, 2, 7), wir_number="WIR-003",
            contractor="Gulf Pipes", engineer="Eng. Rami",
            manhole_from="MH3", manhole_to="MH4"),
        WIR(id="w4", boq_item_id="leaf-b", value=3, result=WIRResult.APPROVED,
            status=WIRStatus.COMPLETED, description="Pipe laying 300 mm",
            received_date=date(2025, 3, 1), wir_number="WIR-004",
            contractor="Gulf Pipes", engineer="Eng. Sara",
            manhole_from="MH3", manhole_to="MH4"),
        WIR(id="w5", boq_item_id="leaf-a", value=50, result=None,
            status=WIRStatus.SUBMITTED, description="Backfilling 200 mm pipe",
            wir_number="WIR-005", contractor="Al Bina", engineer="Eng. Rami",
            manhole_from="MH1", manhole_to="MH2"),
    ]


# ---------------------------------------------------------------------------
# Engines
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def calculator():
    from app.services.wir_calculator import WIRCalculator
    return WIRCalculator(currency_code="SAR", decimals=2)


@pytest.fixture(scope="session")
def allocator():
    from app.services.breakdown_engine import BreakdownAllocator
    return BreakdownAllocator(container_depth=5)


@pytest.fixture(scope="session")
def aggregator(calculator):
    from app.services.progress_engine import ProgressAggregator
    return ProgressAggregator(calculator)


@pytest.fixture(scope="session")
def period_aggregator(calculator):
    from app.services.invoice_engine import PeriodAggregator
    return PeriodAggregator(calculator)
