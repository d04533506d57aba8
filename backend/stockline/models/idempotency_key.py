from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from stockline.core.enums import IdempotencyState
from stockline.models.base import Base
from stockline.models.sql_enums import idempotency_state_enum


class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"

    # sha256 hex of METHOD:path:key
    fingerprint: Mapped[str] = mapped_column(String(64), primary_key=True)
    state: Mapped[IdempotencyState] = mapped_column(idempotency_state_enum, nullable=False)
    locked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    body: Mapped[dict | list | None] = mapped_column(JSON, nullable=True)
    headers: Mapped[dict | None] = mapped_column(JSON, nullable=True)
