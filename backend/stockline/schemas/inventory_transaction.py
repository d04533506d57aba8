from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stockline.core.enums import StockSource, TransactionStatus, TransactionType


class TransactionItemCreate(BaseModel):
    variant_id: UUID
    # Either a single quantity, or a fresh/damaged split that becomes one line per non-zero part.
    quantity: int | None = None
    quantity_fresh: int | None = Field(default=None, ge=0)
    quantity_damaged: int | None = Field(default=None, ge=0)
    unit_cost_paisa: int = Field(default=0, ge=0)
    source_type: StockSource | None = None
    notes: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def validate_quantity_shape(self) -> "TransactionItemCreate":
        split = self.quantity_fresh is not None or self.quantity_damaged is not None
        if split and self.quantity is not None:
            raise ValueError("Use either quantity or quantity_fresh/quantity_damaged, not both")
        return self


class InventoryTransactionCreate(BaseModel):
    transaction_type: TransactionType
    vendor_id: UUID | None = None
    reference_transaction_id: UUID | None = None
    transaction_date: date | None = None
    reason: str | None = Field(default=None, max_length=2000)
    notes: str | None = Field(default=None, max_length=4000)
    items: list[TransactionItemCreate] = Field(default_factory=list)


class InventoryTransactionItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    line_no: int
    variant_id: UUID
    quantity: int
    unit_cost_paisa: int
    source_type: StockSource
    notes: str | None


class InventoryTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_no: str
    transaction_type: TransactionType
    status: TransactionStatus
    vendor_id: UUID | None
    reference_transaction_id: UUID | None
    transaction_date: date
    total_cost_paisa: int
    total_quantity: int
    reason: str | None
    notes: str | None
    performed_by: str
    approved_by: str | None
    approved_at: datetime | None
    rejected_by: str | None
    rejected_at: datetime | None
    rejection_reason: str | None
    voided_by: str | None
    voided_at: datetime | None
    void_reason: str | None
    created_at: datetime
    updated_at: datetime

    items: list[InventoryTransactionItemOut]


class InventoryTransactionPage(BaseModel):
    items: list[InventoryTransactionOut]
    total: int
    page: int
    limit: int


class TransactionReasonIn(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class ApprovalStatsOut(BaseModel):
    pending: int
    approved: int
    rejected: int
    voided: int
    total: int


class ReturnableLineOut(BaseModel):
    variant_id: UUID
    purchased: int
    already_returned: int
    remaining: int
    unit_cost_paisa: int


class PurchaseInvoiceRefOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_no: str
    vendor_id: UUID | None
    transaction_date: date
    total_cost_paisa: int
    total_quantity: int
