"""
Engine configuration — single source of truth for tree depth, currency,
rounding and result gating.

Import from here in all services rather than hardcoding values. Every value
can be overridden from the environment (a ``.env`` file is loaded by
``app.main`` at startup).
"""
from __future__ import annotations

import os


# ── BOQ tree ──────────────────────────────────────────────────────────────────
# Depth (dot count + 1 of the item code) at which every leaf gets a breakdown
# container record, e.g. "200.1.3.2.1" is depth 5.
BREAKDOWN_CONTAINER_DEPTH: int = int(os.getenv("BREAKDOWN_CONTAINER_DEPTH", "5"))

# A container record allocates the whole unit rate of its BOQ leaf.
CONTAINER_PERCENTAGE: float = 100.0

# Inclusive bounds for any breakdown percentage entered by a user.
MIN_PERCENTAGE: float = 0.0
MAX_PERCENTAGE: float = 100.0


# ── WIR amounts ───────────────────────────────────────────────────────────────
# Currency suffix of the human-readable calculation equation. Amounts
# themselves are always raw numbers; formatting belongs to the caller.
CURRENCY_CODE: str = os.getenv("CURRENCY_CODE", "SAR")

# Precision of a WIR's calculated amount.
AMOUNT_DECIMALS: int = int(os.getenv("AMOUNT_DECIMALS", "2"))

# Results that may carry an amount: A = approved, B = conditionally approved.
APPROVED_RESULTS: tuple[str, ...] = ("A", "B")

# Only WIRs in this status persist a calculated amount.
AMOUNT_BEARING_STATUS: str = "completed"


# ── Period keys ───────────────────────────────────────────────────────────────
MONTH_KEY_LENGTH: int = 7    # "YYYY-MM"
DAY_KEY_LENGTH: int = 10     # "YYYY-MM-DD"


# ── Runtime ───────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON: bool = os.getenv("LOG_FORMAT", "json").lower() != "text"

CORS_ORIGINS: list[str] = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:8000").split(",")
    if o.strip()
]
