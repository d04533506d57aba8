from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from stockline.core.enums import CourierPartner, FulfillmentType, LocationType, OrderStatus, PaymentStatus


class OrderItemCreate(BaseModel):
    variant_id: UUID
    quantity: int = Field(gt=0)
    unit_price_paisa: int = Field(default=0, ge=0)


class OrderCreate(BaseModel):
    order_number: str | None = Field(default=None, max_length=64)
    customer_name: str = Field(min_length=1, max_length=200)
    customer_phone: str | None = Field(default=None, max_length=40)
    shipping_address: str | None = None
    # Free-form on purpose: aliases like "inside", "POS" or "store_pickup" are normalized by the service.
    fulfillment_type: str = Field(min_length=1, max_length=40)
    location: str | None = Field(default=None, max_length=40)
    payment_method: str | None = Field(default=None, max_length=40)
    notes: str | None = Field(default=None, max_length=4000)
    items: list[OrderItemCreate] = Field(min_length=1)


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    variant_id: UUID
    quantity: int
    unit_price_paisa: int


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    customer_name: str
    customer_phone: str | None
    status: OrderStatus
    fulfillment_type: FulfillmentType
    location: LocationType | None
    payment_method: str | None
    payment_status: PaymentStatus
    total_amount_paisa: int
    courier_partner: CourierPartner | None
    courier_tracking_id: str | None
    stock_deducted: bool
    stock_reversed: bool
    rto_verified_at: datetime | None
    rto_verified_by: str | None
    dispute_reason: str | None
    status_changed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    items: list[OrderItemOut]


class OrderStatusChange(BaseModel):
    status: str = Field(min_length=1, max_length=60)
    notes: str | None = Field(default=None, max_length=2000)


class FulfillmentTypeChange(BaseModel):
    fulfillment_type: str = Field(min_length=1, max_length=40)


class RtoVerification(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class LostInTransitReport(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class CourierStatusEvent(BaseModel):
    courier: str = Field(min_length=1, max_length=40)
    order_id: UUID
    status: str = Field(min_length=1, max_length=200)
    tracking_id: str | None = Field(default=None, max_length=120)


class CourierStatusResult(BaseModel):
    applied: bool
    status: OrderStatus | None
    reason: str | None = None
