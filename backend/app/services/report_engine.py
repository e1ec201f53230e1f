"""
Report Engine — financial summaries and Excel deliverables.

Outputs:
  - Financial summary (WIR counts by result, approved / conditional amounts,
    cost variance against the BOQ total)
  - Contractor / engineer performance tables
  - Progress workbook (.xlsx): "Progress" sheet per BOQ node and, when an
    invoice bucket is supplied, an "Invoice" sheet

The workbook is built in memory and returned as bytes for a streaming
response; nothing is written to disk.
"""
import io
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import xlsxwriter

from app import config
from app.models.domain import BOQItem, BOQProgress, BreakdownItem, WIR, WIRResult
from app.services import boq_tree
from app.services.invoice_engine import InvoiceBucket
from app.services.wir_calculator import WIRCalculator, build_indexes

logger = logging.getLogger("boq-tracker.report")

ENTITY_FIELDS = ("contractor", "engineer")


class ReportEngine:

    def __init__(
        self,
        calculator: Optional[WIRCalculator] = None,
        project_name: str = "BOQ Progress",
        currency_code: Optional[str] = None,
    ):
        self.calculator = calculator or WIRCalculator()
        self.project_name = project_name
        self.currency_code = currency_code or config.CURRENCY_CODE

    def _amounts(
        self,
        wirs: Sequence[WIR],
        breakdowns: Sequence[BreakdownItem],
        tree: Sequence[BOQItem],
    ) -> List[float]:
        breakdown_index, boq_index = build_indexes(breakdowns, tree)
        return [
            self.calculator.calculate_indexed(wir, breakdown_index, boq_index).amount or 0.0
            for wir in wirs
        ]

    # ── Financial summary ─────────────────────────────────────────────────────

    def financial_summary(
        self,
        wirs: Sequence[WIR],
        breakdowns: Sequence[BreakdownItem],
        tree: Sequence[BOQItem],
    ) -> Dict[str, Any]:
        counts = {WIRResult.APPROVED: 0, WIRResult.CONDITIONAL: 0, WIRResult.REJECTED: 0}
        approved_amount = 0.0
        conditional_amount = 0.0

        for wir, amount in zip(wirs, self._amounts(wirs, breakdowns, tree)):
            if wir.result == WIRResult.APPROVED:
                counts[WIRResult.APPROVED] += 1
                approved_amount += amount
            elif wir.result == WIRResult.CONDITIONAL:
                counts[WIRResult.CONDITIONAL] += 1
                conditional_amount += amount
            elif wir.result == WIRResult.REJECTED:
                counts[WIRResult.REJECTED] += 1

        total_boq = boq_tree.project_total(tree)
        return {
            "total_wirs": len(wirs),
            "total_approved_wirs": counts[WIRResult.APPROVED],
            "total_conditional_wirs": counts[WIRResult.CONDITIONAL],
            "total_rejected_wirs": counts[WIRResult.REJECTED],
            "total_pending_wirs": len(wirs) - sum(counts.values()),
            "total_approved_amount": round(approved_amount, 2),
            "total_conditional_amount": round(conditional_amount, 2),
            "total_boq_amount": round(total_boq, 2),
            "cost_variance_against_boq": round(approved_amount + conditional_amount - total_boq, 2),
            "currency": self.currency_code,
        }

    # ── Contractor / engineer performance ─────────────────────────────────────

    def entity_performance(
        self,
        wirs: Sequence[WIR],
        breakdowns: Sequence[BreakdownItem],
        tree: Sequence[BOQItem],
        by: str = "contractor",
    ) -> List[Dict[str, Any]]:
        if by not in ENTITY_FIELDS:
            raise ValueError(f"by must be one of {ENTITY_FIELDS}, got {by!r}")

        rows: Dict[str, Dict[str, Any]] = {}
        for wir, amount in zip(wirs, self._amounts(wirs, breakdowns, tree)):
            name = getattr(wir, by) or ""
            if not name:
                continue
            row = rows.setdefault(name, {
                "name": name,
                "total_wirs": 0,
                "approved": 0,
                "conditional": 0,
                "rejected": 0,
                "total_amount": 0.0,
            })
            row["total_wirs"] += 1
            if wir.result == WIRResult.APPROVED:
                row["approved"] += 1
            elif wir.result == WIRResult.CONDITIONAL:
                row["conditional"] += 1
            elif wir.result == WIRResult.REJECTED:
                row["rejected"] += 1
            row["total_amount"] += amount

        for row in rows.values():
            row["total_amount"] = round(row["total_amount"], 2)
        return sorted(rows.values(), key=lambda r: r["name"])

    # ── Progress workbook ─────────────────────────────────────────────────────

    def export_progress_workbook(
        self,
        progress: Sequence[BOQProgress],
        tree: Sequence[BOQItem],
        bucket: Optional[InvoiceBucket] = None,
    ) -> bytes:
        index = boq_tree.index_by_id(tree)
        currency = self.currency_code
        buffer = io.BytesIO()
        wb = xlsxwriter.Workbook(buffer, {"in_memory": True})

        hdr = wb.add_format({"bold": True, "bg_color": "#14141E", "font_color": "#FFFFFF",
                             "border": 1, "font_size": 10})
        title_fmt = wb.add_format({"bold": True, "font_size": 14, "font_color": "#14141E"})
        normal = wb.add_format({"border": 1, "font_size": 9})
        parent_fmt = wb.add_format({"border": 1, "font_size": 9, "bold": True})
        money = wb.add_format({"num_format": "#,##0.00", "border": 1})
        pct = wb.add_format({"num_format": "0.00", "border": 1})

        # ── Sheet 1: Progress ────────────────────────────────────────────────
        ws = wb.add_worksheet("Progress")
        ws.set_column("A:A", 16)
        ws.set_column("B:B", 45)
        ws.set_column("C:E", 18)
        ws.write("A1", self.project_name, title_fmt)
        ws.write("A2", f"Generated: {datetime.now().strftime('%d %b %Y %H:%M')}", normal)
        ws.write_row(3, 0, [
            "Code", "Description", f"Total Amount ({currency})",
            f"Approved Amount ({currency})", "Completion %",
        ], hdr)
        for i, row in enumerate(progress):
            node = index.get(row.boq_item_id)
            fmt = normal if row.is_leaf else parent_fmt
            ws.write(4 + i, 0, row.code, fmt)
            ws.write(4 + i, 1, node.description if node else "", fmt)
            ws.write(4 + i, 2, row.total_amount, money)
            ws.write(4 + i, 3, row.approved_amount, money)
            ws.write(4 + i, 4, round(row.completion_percentage, 2), pct)

        # ── Sheet 2: Invoice ─────────────────────────────────────────────────
        if bucket is not None:
            ws2 = wb.add_worksheet("Invoice")
            ws2.set_column("A:A", 40)
            ws2.set_column("B:B", 20)
            ws2.write("A1", f"Invoice — {bucket.period}", title_fmt)
            ws2.write_row(2, 0, ["Description", f"Amount ({currency})"], hdr)
            rows = [
                ("Previous Amount", bucket.previous_amount),
                ("Current Amount", bucket.current_amount),
                ("Total to Date", bucket.total_amount),
                ("Total BOQ Amount", bucket.total_boq_amount),
            ]
            for i, (label, val) in enumerate(rows):
                ws2.write(3 + i, 0, label, normal)
                ws2.write(3 + i, 1, val, money)
            ws2.write(3 + len(rows), 0, "Completion %", normal)
            ws2.write(3 + len(rows), 1, round(bucket.completion_percentage, 2), pct)

        wb.close()
        logger.info("Progress workbook generated (%d rows)", len(progress))
        return buffer.getvalue()
