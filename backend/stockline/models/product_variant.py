from __future__ import annotations

import uuid

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from stockline.core.enums import StockSource
from stockline.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from stockline.models.sql_enums import stock_source_enum


class ProductVariant(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "product_variants"
    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="ck_product_variants_current_stock_nonneg"),
        CheckConstraint("damaged_stock >= 0", name="ck_product_variants_damaged_stock_nonneg"),
    )

    sku: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    # Sellable units; orders only ever draw from here.
    current_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    damaged_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost_price_paisa: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class StockMovement(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One row per on-hand change; the append-only trail behind the variant's stock buckets."""

    __tablename__ = "stock_movements"

    variant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("product_variants.id"), nullable=False, index=True)
    # fresh -> current_stock, damaged -> damaged_stock
    source_type: Mapped[StockSource] = mapped_column(stock_source_enum, nullable=False, default=StockSource.FRESH)

    # Signed: positive=stock-in, negative=stock-out
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_before: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_after: Mapped[int] = mapped_column(Integer, nullable=False)

    reason: Mapped[str] = mapped_column(String(100), nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reference_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
