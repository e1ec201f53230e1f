"""ORM Models for the BOQ progress tracker — SQLAlchemy 2.0"""
import uuid
from datetime import datetime, date
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    String, Text, Boolean, Integer, Numeric, DateTime, Date,
    ForeignKey, Index
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from app.db import Base


def gen_uuid():
    return str(uuid.uuid4())


# ── BOQ ───────────────────────────────────────────────────────────────────────
class BOQItemRecord(Base):
    __tablename__ = "boq_items"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    description_ar: Mapped[Optional[str]] = mapped_column(Text)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=0)
    unit: Mapped[Optional[str]] = mapped_column(String(50))
    unit_ar: Mapped[Optional[str]] = mapped_column(String(50))
    unit_rate: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=0)
    parent_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False), ForeignKey("boq_items.id", ondelete="CASCADE")
    )
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    children: Mapped[list["BOQItemRecord"]] = relationship(
        "BOQItemRecord", cascade="all, delete-orphan", passive_deletes=True
    )
    breakdown_items: Mapped[list["BreakdownRecord"]] = relationship(
        "BreakdownRecord", back_populates="boq_item", cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (Index("ix_boq_items_parent", "parent_id"),)


# ── BREAKDOWN ─────────────────────────────────────────────────────────────────
class BreakdownRecord(Base):
    __tablename__ = "breakdown_items"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    boq_item_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("boq_items.id", ondelete="CASCADE"), nullable=False
    )
    parent_breakdown_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False), ForeignKey("breakdown_items.id", ondelete="CASCADE")
    )
    keyword: Mapped[str] = mapped_column(String(100), default="")
    keyword_ar: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(Text, default="")
    description_ar: Mapped[Optional[str]] = mapped_column(Text)
    percentage: Mapped[Decimal] = mapped_column(Numeric(9, 4), default=0)
    value: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=0)
    unit_rate: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=0)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=0)
    is_leaf: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    boq_item: Mapped["BOQItemRecord"] = relationship("BOQItemRecord", back_populates="breakdown_items")

    __table_args__ = (
        Index("ix_breakdown_items_boq", "boq_item_id"),
        Index("ix_breakdown_items_parent", "parent_breakdown_id"),
    )


# ── WIR ───────────────────────────────────────────────────────────────────────
class WIRRecord(Base):
    __tablename__ = "wirs"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    wir_number: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    boq_item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    linked_boq_items: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    selected_breakdown_items: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    description: Mapped[str] = mapped_column(Text, default="")
    value: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=0)
    result: Mapped[Optional[str]] = mapped_column(String(1))  # A | B | C
    status: Mapped[str] = mapped_column(String(20), default="submitted")
    status_conditions: Mapped[Optional[str]] = mapped_column(Text)
    calculated_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2))
    calculation_equation: Mapped[Optional[str]] = mapped_column(Text)
    submittal_date: Mapped[Optional[date]] = mapped_column(Date)
    received_date: Mapped[Optional[date]] = mapped_column(Date, index=True)
    contractor: Mapped[Optional[str]] = mapped_column(String(255))
    engineer: Mapped[Optional[str]] = mapped_column(String(255))
    # Revisions
    parent_wir_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    original_wir_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    revision_number: Mapped[int] = mapped_column(Integer, default=0)
    # Site location
    region: Mapped[Optional[str]] = mapped_column(String(100))
    zone: Mapped[Optional[str]] = mapped_column(String(100))
    road: Mapped[Optional[str]] = mapped_column(String(100))
    line: Mapped[Optional[str]] = mapped_column(String(100))
    manhole_from: Mapped[Optional[str]] = mapped_column(String(50))
    manhole_to: Mapped[Optional[str]] = mapped_column(String(50))
    line_no: Mapped[Optional[str]] = mapped_column(String(50))
    length_of_line: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=0)
    diameter_of_line: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
