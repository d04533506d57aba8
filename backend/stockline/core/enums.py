from __future__ import annotations

from enum import StrEnum


class OrderStatus(StrEnum):
    INTAKE = "intake"
    FOLLOW_UP = "follow_up"
    CONVERTED = "converted"
    HOLD = "hold"
    PACKED = "packed"
    ASSIGNED = "assigned"
    OUT_FOR_DELIVERY = "out_for_delivery"
    HANDOVER_TO_COURIER = "handover_to_courier"
    IN_TRANSIT = "in_transit"
    STORE_SALE = "store_sale"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    RETURN_INITIATED = "return_initiated"
    RETURNED = "returned"
    RTO_INITIATED = "rto_initiated"
    RTO_VERIFICATION_PENDING = "rto_verification_pending"
    LOST_IN_TRANSIT = "lost_in_transit"


class LeadStatus(StrEnum):
    INTAKE = "INTAKE"
    FOLLOW_UP = "FOLLOW_UP"
    BUSY = "BUSY"
    CONVERTED = "CONVERTED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


class FulfillmentType(StrEnum):
    INSIDE_VALLEY = "inside_valley"
    OUTSIDE_VALLEY = "outside_valley"
    STORE = "store"


class LocationType(StrEnum):
    INSIDE_VALLEY = "INSIDE_VALLEY"
    OUTSIDE_VALLEY = "OUTSIDE_VALLEY"
    POS = "POS"


class CourierPartner(StrEnum):
    NCM = "NCM"
    GAAU_BESI = "GAAU_BESI"


class TransitionSource(StrEnum):
    """Who is asking for a status change. Some targets are reserved for one source."""

    MANUAL = "MANUAL"
    COURIER = "COURIER"
    WAREHOUSE = "WAREHOUSE"
    DISPUTE = "DISPUTE"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    REFUNDED = "refunded"


class TransactionType(StrEnum):
    PURCHASE = "purchase"
    PURCHASE_RETURN = "purchase_return"
    DAMAGE = "damage"
    ADJUSTMENT = "adjustment"


class TransactionStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    VOIDED = "voided"


class StockSource(StrEnum):
    FRESH = "fresh"
    DAMAGED = "damaged"


class VendorBalanceOperation(StrEnum):
    PURCHASE = "PURCHASE"
    PURCHASE_RETURN = "PURCHASE_RETURN"
    PAYMENT = "PAYMENT"
    PURCHASE_VOID = "PURCHASE_VOID"
    PURCHASE_RETURN_VOID = "PURCHASE_RETURN_VOID"


class VendorLedgerEntryType(StrEnum):
    PURCHASE = "purchase"
    PURCHASE_RETURN = "purchase_return"
    PAYMENT = "payment"
    VOID_REVERSAL = "void_reversal"


class IdempotencyState(StrEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
