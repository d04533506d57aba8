from __future__ import annotations

import uuid

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from stockline.core.enums import VendorLedgerEntryType
from stockline.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from stockline.models.sql_enums import vendor_ledger_entry_type_enum


class Vendor(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "vendors"
    __table_args__ = (
        CheckConstraint("total_purchases_paisa >= 0", name="ck_vendors_total_purchases_nonneg"),
        CheckConstraint("total_returns_paisa >= 0", name="ck_vendors_total_returns_nonneg"),
        CheckConstraint("total_payments_paisa >= 0", name="ck_vendors_total_payments_nonneg"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    pan_number: Mapped[str | None] = mapped_column(String(40), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Payable to the vendor. Only ever written by the locking balance primitive.
    balance_paisa: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_purchases_paisa: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_returns_paisa: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_payments_paisa: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class VendorLedgerEntry(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "vendor_ledger_entries"
    __table_args__ = (
        UniqueConstraint("reference_id", "entry_type", name="uq_vendor_ledger_reference_entry_type"),
        CheckConstraint("debit_paisa >= 0 AND credit_paisa >= 0", name="ck_vendor_ledger_amounts_nonneg"),
    )

    vendor_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("vendors.id"), nullable=False, index=True)
    entry_type: Mapped[VendorLedgerEntryType] = mapped_column(vendor_ledger_entry_type_enum, nullable=False)

    # debit=we owe more, credit=we owe less
    debit_paisa: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credit_paisa: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    running_balance_paisa: Mapped[int] = mapped_column(Integer, nullable=False)

    reference_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    reference_no: Mapped[str | None] = mapped_column(String(64), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    performed_by: Mapped[str] = mapped_column(String(200), nullable=False)
