from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from stockline.core.enums import VendorLedgerEntryType


class VendorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    phone: str | None
    is_active: bool
    balance_paisa: int
    total_purchases_paisa: int
    total_returns_paisa: int
    total_payments_paisa: int


class VendorLedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    vendor_id: UUID
    entry_type: VendorLedgerEntryType
    debit_paisa: int
    credit_paisa: int
    running_balance_paisa: int
    reference_id: UUID
    reference_no: str | None
    description: str | None
    performed_by: str
    created_at: datetime


class VendorPaymentCreate(BaseModel):
    amount_paisa: int = Field(gt=0)
    reference_no: str | None = Field(default=None, max_length=64)
    notes: str | None = Field(default=None, max_length=2000)


class VendorPaymentOut(BaseModel):
    payment_id: UUID
    previous_balance_paisa: int
    new_balance_paisa: int
    ledger_entry_id: UUID | None
