from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockline.core.enums import StockSource, TransactionStatus, TransactionType
from stockline.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from stockline.models.sql_enums import stock_source_enum, transaction_status_enum, transaction_type_enum


class InventoryTransaction(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "inventory_transactions"

    invoice_no: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    transaction_type: Mapped[TransactionType] = mapped_column(transaction_type_enum, nullable=False, index=True)
    status: Mapped[TransactionStatus] = mapped_column(
        transaction_status_enum,
        nullable=False,
        default=TransactionStatus.PENDING,
        index=True,
    )

    vendor_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("vendors.id"), nullable=True, index=True)
    # purchase_return -> the purchase it sends goods back against
    reference_transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("inventory_transactions.id"),
        nullable=True,
        index=True,
    )

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_cost_paisa: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    performed_by: Mapped[str] = mapped_column(String(200), nullable=False)

    approved_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    rejected_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    voided_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list["InventoryTransactionItem"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="InventoryTransactionItem.line_no",
    )


class InventoryTransactionItem(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "inventory_transaction_items"

    transaction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("inventory_transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    variant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("product_variants.id"), nullable=False, index=True)

    # Signed: positive=stock-in (purchase, adjustment-in), negative=stock-out
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost_paisa: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    source_type: Mapped[StockSource] = mapped_column(stock_source_enum, nullable=False, default=StockSource.FRESH)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    transaction: Mapped[InventoryTransaction] = relationship(back_populates="items")
