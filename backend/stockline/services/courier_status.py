"""
Courier partner status vocabularies mapped onto canonical order statuses.

Courier signals never land on `returned` or `lost_in_transit`: a courier saying a parcel came back
only moves the order into the RTO holding states, and a warehouse verification (or a dispute)
decides the rest.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from stockline.core.enums import CourierPartner, OrderStatus
from stockline.core.statuses import fold


NCM_STATUS_ALIASES: dict[OrderStatus, tuple[str, ...]] = {
    OrderStatus.HANDOVER_TO_COURIER: ("Booked", "Pickup Order Created", "Drop Off Order Created"),
    OrderStatus.IN_TRANSIT: ("Picked Up", "In Transit", "Package at Hub", "Arrived at Branch"),
    OrderStatus.OUT_FOR_DELIVERY: ("Out for Delivery",),
    OrderStatus.DELIVERED: ("Delivered",),
    OrderStatus.CANCELLED: ("Cancelled",),
    OrderStatus.HOLD: ("On Hold",),
    OrderStatus.RTO_INITIATED: (
        "Undelivered",
        "Return in Transit",
        "RTO",
        "Return Request",
        "Customer Rejected",
    ),
    OrderStatus.RTO_VERIFICATION_PENDING: (
        "Returned",
        "Return Completed",
        "Returned to Vendor",
        "Delivered to Merchant",
    ),
}

GAAU_BESI_STATUS_ALIASES: dict[OrderStatus, tuple[str, ...]] = {
    OrderStatus.HANDOVER_TO_COURIER: ("Drop Off Order Created", "Pickup Order Created"),
    OrderStatus.IN_TRANSIT: ("Package Picked", "Package in Transit", "Package at Branch"),
    OrderStatus.OUT_FOR_DELIVERY: ("Out for Delivery", "Delivery Attempted"),
    OrderStatus.DELIVERED: ("Delivered",),
    OrderStatus.CANCELLED: ("Cancelled",),
    OrderStatus.HOLD: ("On Hold", "Customer Not Available"),
    OrderStatus.RTO_INITIATED: (
        "Return Initiated",
        "Customer Cancelled",
        "Customer Rejected",
        "Rejected",
        "Undelivered",
        "RTO",
        "RTO Initiated",
    ),
    OrderStatus.RTO_VERIFICATION_PENDING: (
        "Returned",
        "Returned to Vendor",
        "Returned to Merchant",
        "Delivered to Merchant",
        "Return Complete",
        "Return Completed",
        "RTO Complete",
        "RTO Completed",
    ),
}

COURIER_PARTNER_ALIASES: dict[CourierPartner, tuple[str, ...]] = {
    CourierPartner.NCM: ("ncm", "nepal_can_move", "nepalcanmove", "Nepal Can Move"),
    CourierPartner.GAAU_BESI: ("gbl", "gaaubesi", "gaau_besi", "gaau-besi", "Gaau Besi"),
}

# Targets only a warehouse verification or a dispute may set.
COURIER_FORBIDDEN_TARGETS = frozenset({OrderStatus.RETURNED, OrderStatus.LOST_IN_TRANSIT})


def _fold_table(aliases: Mapping[OrderStatus, Iterable[str]]) -> dict[str, OrderStatus]:
    table: dict[str, OrderStatus] = {}
    for status, names in aliases.items():
        if status in COURIER_FORBIDDEN_TARGETS:
            raise ValueError(f"Courier vocabulary may not map to {status}")
        for name in names:
            key = fold(name)
            if key in table and table[key] != status:
                raise ValueError(f"Courier status {name!r} maps to both {table[key]} and {status}")
            table[key] = status
    return table


_COURIER_TABLES: dict[CourierPartner, dict[str, OrderStatus]] = {
    CourierPartner.NCM: _fold_table(NCM_STATUS_ALIASES),
    CourierPartner.GAAU_BESI: _fold_table(GAAU_BESI_STATUS_ALIASES),
}

_PARTNER_LOOKUP: dict[str, CourierPartner] = {fold(p.value): p for p in CourierPartner}
for _partner, _names in COURIER_PARTNER_ALIASES.items():
    for _name in _names:
        _PARTNER_LOOKUP[fold(_name)] = _partner


def normalize_courier_partner(raw: object) -> CourierPartner | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    return _PARTNER_LOOKUP.get(fold(raw))


def map_courier_status(partner: CourierPartner, raw_status: object) -> OrderStatus | None:
    """Unknown codes return None; callers log and skip rather than guess."""
    if not isinstance(raw_status, str) or not raw_status.strip():
        return None
    return _COURIER_TABLES.get(partner, {}).get(fold(raw_status))
