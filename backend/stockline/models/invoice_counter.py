from __future__ import annotations

from sqlalchemy import Integer
from sqlalchemy.orm import Mapped, mapped_column

from stockline.core.enums import TransactionType
from stockline.models.base import Base
from stockline.models.sql_enums import transaction_type_enum


class InvoiceCounter(Base):
    """Per-type invoice sequence. Numbers are handed out under a row lock and never reused."""

    __tablename__ = "invoice_counters"

    transaction_type: Mapped[TransactionType] = mapped_column(transaction_type_enum, primary_key=True)
    next_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
