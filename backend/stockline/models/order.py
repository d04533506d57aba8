from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockline.core.enums import CourierPartner, FulfillmentType, LocationType, OrderStatus, PaymentStatus
from stockline.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from stockline.models.sql_enums import (
    courier_partner_enum,
    fulfillment_type_enum,
    location_type_enum,
    order_status_enum,
    payment_status_enum,
)


class Order(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    shipping_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[OrderStatus] = mapped_column(order_status_enum, nullable=False, default=OrderStatus.INTAKE)
    fulfillment_type: Mapped[FulfillmentType] = mapped_column(fulfillment_type_enum, nullable=False)
    location: Mapped[LocationType | None] = mapped_column(location_type_enum, nullable=True)

    payment_method: Mapped[str | None] = mapped_column(String(40), nullable=True)
    payment_status: Mapped[PaymentStatus] = mapped_column(payment_status_enum, nullable=False, default=PaymentStatus.PENDING)
    total_amount_paisa: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    courier_partner: Mapped[CourierPartner | None] = mapped_column(courier_partner_enum, nullable=True)
    courier_tracking_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    courier_raw_status: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Set once the items left on-hand stock, and once they were put back.
    stock_deducted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stock_reversed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    rto_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rto_verified_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    rto_verification_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    disputed_by: Mapped[str | None] = mapped_column(String(200), nullable=True)

    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list["OrderItem"]] = relationship(back_populates="order", cascade="all, delete-orphan")


class OrderItem(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True)
    variant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("product_variants.id"), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_paisa: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    order: Mapped[Order] = relationship(back_populates="items")
