from __future__ import annotations

from enum import StrEnum

from sqlalchemy import Enum

from stockline.core.enums import (
    CourierPartner,
    FulfillmentType,
    IdempotencyState,
    LocationType,
    OrderStatus,
    PaymentStatus,
    StockSource,
    TransactionStatus,
    TransactionType,
    VendorLedgerEntryType,
)


def _values(enum_cls: type[StrEnum]) -> list[str]:
    # Persist the lower-case values callers see on the wire, not the Python member names.
    return [member.value for member in enum_cls]


order_status_enum = Enum(OrderStatus, name="order_status", values_callable=_values)
fulfillment_type_enum = Enum(FulfillmentType, name="fulfillment_type", values_callable=_values)
location_type_enum = Enum(LocationType, name="location_type", values_callable=_values)
courier_partner_enum = Enum(CourierPartner, name="courier_partner", values_callable=_values)
payment_status_enum = Enum(PaymentStatus, name="payment_status", values_callable=_values)

transaction_type_enum = Enum(TransactionType, name="inventory_transaction_type", values_callable=_values)
transaction_status_enum = Enum(TransactionStatus, name="inventory_transaction_status", values_callable=_values)
stock_source_enum = Enum(StockSource, name="stock_source", values_callable=_values)

vendor_ledger_entry_type_enum = Enum(VendorLedgerEntryType, name="vendor_ledger_entry_type", values_callable=_values)

idempotency_state_enum = Enum(IdempotencyState, name="idempotency_state", values_callable=_values)
