"""
Canonical order, lead, fulfillment and location vocabularies.

Callers send statuses in whatever shape their UI produced (`SENT_FOR_DELIVERY`, `follow-up`,
`Out For Delivery`). Every alias table here is written once as canonical -> aliases and folded
into a case-insensitive lookup at import time, so a new casing variant never needs its own entry.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import TypeVar

from stockline.core.enums import FulfillmentType, LeadStatus, LocationType, OrderStatus


E = TypeVar("E", bound=StrEnum)


def fold(raw: str) -> str:
    return "_".join(raw.strip().lower().replace("-", " ").split())


def build_lookup(enum_cls: type[E], aliases: Mapping[E, Iterable[str]]) -> dict[str, E]:
    lookup: dict[str, E] = {}
    for member in enum_cls:
        lookup[fold(member.value)] = member
        lookup[fold(member.name)] = member
    for member, names in aliases.items():
        for name in names:
            key = fold(name)
            existing = lookup.get(key)
            if existing is not None and existing != member:
                raise ValueError(f"Alias {name!r} maps to both {existing} and {member}")
            lookup[key] = member
    return lookup


TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset(
    {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.RETURNED,
        OrderStatus.LOST_IN_TRANSIT,
    }
)

EDITABLE_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.INTAKE, OrderStatus.FOLLOW_UP, OrderStatus.CONVERTED}
)

STOCK_RESTORING_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.CANCELLED, OrderStatus.REJECTED, OrderStatus.RETURNED}
)

# Entering one of these takes the order's items out of on-hand stock.
STOCK_DEDUCTING_STATUSES: frozenset[OrderStatus] = frozenset({OrderStatus.PACKED, OrderStatus.STORE_SALE})

STATUS_GROUPS: dict[str, tuple[OrderStatus, ...]] = {
    "sales": (OrderStatus.INTAKE, OrderStatus.FOLLOW_UP, OrderStatus.CONVERTED),
    "processing": (OrderStatus.HOLD, OrderStatus.PACKED),
    "in_fulfillment": (
        OrderStatus.ASSIGNED,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.HANDOVER_TO_COURIER,
        OrderStatus.IN_TRANSIT,
    ),
    "completed": (OrderStatus.DELIVERED, OrderStatus.STORE_SALE),
    "cancelled": (OrderStatus.CANCELLED, OrderStatus.REJECTED),
    "returns": (OrderStatus.RETURN_INITIATED, OrderStatus.RETURNED),
    "rto_pending": (OrderStatus.RTO_INITIATED, OrderStatus.RTO_VERIFICATION_PENDING),
    "all_rto": (
        OrderStatus.RETURN_INITIATED,
        OrderStatus.RTO_INITIATED,
        OrderStatus.RTO_VERIFICATION_PENDING,
        OrderStatus.RETURNED,
        OrderStatus.LOST_IN_TRANSIT,
    ),
    "disputes": (OrderStatus.LOST_IN_TRANSIT,),
}

# Statuses a fulfillment type may never enter.
_FORBIDDEN_FOR_FULFILLMENT: dict[FulfillmentType, frozenset[OrderStatus]] = {
    FulfillmentType.INSIDE_VALLEY: frozenset({OrderStatus.HANDOVER_TO_COURIER, OrderStatus.IN_TRANSIT}),
    FulfillmentType.OUTSIDE_VALLEY: frozenset({OrderStatus.ASSIGNED, OrderStatus.OUT_FOR_DELIVERY}),
    FulfillmentType.STORE: frozenset(
        {
            OrderStatus.ASSIGNED,
            OrderStatus.OUT_FOR_DELIVERY,
            OrderStatus.HANDOVER_TO_COURIER,
            OrderStatus.IN_TRANSIT,
        }
    ),
}

_S = OrderStatus

_PRE_DISPATCH: dict[OrderStatus, frozenset[OrderStatus]] = {
    _S.INTAKE: frozenset({_S.FOLLOW_UP, _S.CONVERTED, _S.CANCELLED}),
    _S.FOLLOW_UP: frozenset({_S.FOLLOW_UP, _S.CONVERTED, _S.HOLD, _S.CANCELLED}),
    _S.CONVERTED: frozenset({_S.PACKED, _S.HOLD, _S.CANCELLED}),
    _S.HOLD: frozenset({_S.CONVERTED, _S.PACKED, _S.CANCELLED}),
}

# current -> statuses it may move to, per fulfillment type. Terminal statuses have no entry.
WORKFLOW_RULES: dict[FulfillmentType, dict[OrderStatus, frozenset[OrderStatus]]] = {
    FulfillmentType.INSIDE_VALLEY: {
        **_PRE_DISPATCH,
        _S.PACKED: frozenset({_S.ASSIGNED, _S.CANCELLED}),
        _S.ASSIGNED: frozenset({_S.OUT_FOR_DELIVERY, _S.PACKED, _S.CANCELLED}),
        _S.OUT_FOR_DELIVERY: frozenset({_S.DELIVERED, _S.REJECTED, _S.RETURN_INITIATED, _S.ASSIGNED}),
        _S.REJECTED: frozenset({_S.PACKED, _S.RETURN_INITIATED, _S.RETURNED}),
        _S.RETURN_INITIATED: frozenset({_S.RETURNED}),
    },
    FulfillmentType.OUTSIDE_VALLEY: {
        **_PRE_DISPATCH,
        _S.PACKED: frozenset({_S.HANDOVER_TO_COURIER, _S.CANCELLED}),
        _S.HANDOVER_TO_COURIER: frozenset(
            {_S.IN_TRANSIT, _S.DELIVERED, _S.RETURN_INITIATED, _S.RTO_INITIATED, _S.LOST_IN_TRANSIT}
        ),
        _S.IN_TRANSIT: frozenset(
            {
                _S.DELIVERED,
                _S.RETURN_INITIATED,
                _S.RTO_INITIATED,
                _S.RTO_VERIFICATION_PENDING,
                _S.LOST_IN_TRANSIT,
            }
        ),
        # Parcels coming back wait here until the warehouse verifies them (or they are disputed).
        _S.RTO_INITIATED: frozenset({_S.RTO_VERIFICATION_PENDING, _S.RETURNED, _S.LOST_IN_TRANSIT}),
        _S.RTO_VERIFICATION_PENDING: frozenset({_S.RETURNED, _S.LOST_IN_TRANSIT}),
        _S.RETURN_INITIATED: frozenset({_S.RETURNED}),
    },
    FulfillmentType.STORE: {
        _S.INTAKE: frozenset({_S.CONVERTED, _S.STORE_SALE, _S.CANCELLED}),
        _S.CONVERTED: frozenset({_S.PACKED, _S.STORE_SALE, _S.CANCELLED}),
        _S.PACKED: frozenset({_S.STORE_SALE, _S.CANCELLED}),
        _S.STORE_SALE: frozenset({_S.DELIVERED}),
    },
}

# Manual moves each non-privileged role may make; admins and managers may make any move the
# workflow allows. Roles not listed here may not change order status at all.
ROLE_TRANSITIONS: dict[str, dict[OrderStatus, frozenset[OrderStatus]]] = {
    "operator": {
        _S.INTAKE: frozenset({_S.FOLLOW_UP, _S.CONVERTED, _S.CANCELLED, _S.STORE_SALE}),
        _S.FOLLOW_UP: frozenset({_S.FOLLOW_UP, _S.CONVERTED, _S.HOLD, _S.CANCELLED}),
        _S.CONVERTED: frozenset({_S.PACKED, _S.HOLD, _S.CANCELLED, _S.STORE_SALE}),
        _S.HOLD: frozenset({_S.CONVERTED, _S.PACKED, _S.CANCELLED}),
        _S.PACKED: frozenset({_S.ASSIGNED, _S.HANDOVER_TO_COURIER, _S.CANCELLED, _S.STORE_SALE}),
    },
    "rider": {
        _S.ASSIGNED: frozenset({_S.OUT_FOR_DELIVERY}),
        _S.OUT_FOR_DELIVERY: frozenset({_S.DELIVERED, _S.REJECTED, _S.RETURN_INITIATED}),
    },
}

LEGACY_STATUS_ALIASES: dict[OrderStatus, tuple[str, ...]] = {
    OrderStatus.FOLLOW_UP: ("followup",),
    OrderStatus.OUT_FOR_DELIVERY: ("sent_for_delivery", "dispatched"),
}

FULFILLMENT_TYPE_ALIASES: dict[FulfillmentType, tuple[str, ...]] = {
    FulfillmentType.INSIDE_VALLEY: ("inside",),
    FulfillmentType.OUTSIDE_VALLEY: ("outside",),
    FulfillmentType.STORE: ("pos", "store_pickup"),
}

LOCATION_ALIASES: dict[LocationType, tuple[str, ...]] = {
    LocationType.INSIDE_VALLEY: ("inside",),
    LocationType.OUTSIDE_VALLEY: ("outside",),
    LocationType.POS: ("store", "store_pickup"),
}

LEAD_STATUS_ALIASES: dict[LeadStatus, tuple[str, ...]] = {
    LeadStatus.FOLLOW_UP: ("followup",),
}

_STATUS_LOOKUP = build_lookup(OrderStatus, LEGACY_STATUS_ALIASES)
_FULFILLMENT_LOOKUP = build_lookup(FulfillmentType, FULFILLMENT_TYPE_ALIASES)
_LOCATION_LOOKUP = build_lookup(LocationType, LOCATION_ALIASES)
_LEAD_LOOKUP = build_lookup(LeadStatus, LEAD_STATUS_ALIASES)


def _resolve(lookup: Mapping[str, E], raw: object) -> E | None:
    if not isinstance(raw, str):
        return None
    key = fold(raw)
    if not key:
        return None
    return lookup.get(key)


def normalize(raw: object) -> OrderStatus | None:
    """
    Resolve a raw status string to its canonical value.

    Returns None for anything unrecognized; callers treat None as a validation failure.
    """
    return _resolve(_STATUS_LOOKUP, raw)


def normalize_many(raw: str | None) -> list[OrderStatus]:
    """
    Comma-separated filter input -> canonical statuses, unknowns dropped, first-seen order.

    A part that names a `STATUS_GROUPS` key (`all_rto`, `rto_pending`) expands to its members.
    Status names win over group names, so `cancelled` is the status, not the group.
    """
    if not raw:
        return []
    out: list[OrderStatus] = []
    for part in raw.split(","):
        status = normalize(part)
        members = (status,) if status is not None else STATUS_GROUPS.get(fold(part), ())
        for member in members:
            if member not in out:
                out.append(member)
    return out


def normalize_fulfillment_type(raw: object) -> FulfillmentType | None:
    return _resolve(_FULFILLMENT_LOOKUP, raw)


def normalize_location(raw: object) -> LocationType | None:
    return _resolve(_LOCATION_LOOKUP, raw)


def normalize_lead_status(raw: object) -> LeadStatus | None:
    return _resolve(_LEAD_LOOKUP, raw)


def is_valid_for_fulfillment(status: OrderStatus, fulfillment_type: FulfillmentType | None) -> bool:
    if fulfillment_type is None:
        return True
    return status not in _FORBIDDEN_FOR_FULFILLMENT.get(fulfillment_type, frozenset())


def allowed_next(status: OrderStatus, fulfillment_type: FulfillmentType) -> frozenset[OrderStatus]:
    return WORKFLOW_RULES.get(fulfillment_type, {}).get(status, frozenset())


def role_allows(role: str, current: OrderStatus, target: OrderStatus) -> bool:
    return target in ROLE_TRANSITIONS.get(role.lower(), {}).get(current, frozenset())


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_editable(status: OrderStatus) -> bool:
    return status in EDITABLE_STATUSES


def undefined_group_members() -> list[str]:
    """Values referenced by a derived set or group that are not canonical statuses (should be empty)."""
    canonical = set(OrderStatus)
    missing: list[str] = []
    derived: list[Iterable[OrderStatus]] = [
        TERMINAL_STATUSES,
        EDITABLE_STATUSES,
        STOCK_RESTORING_STATUSES,
        STOCK_DEDUCTING_STATUSES,
        *STATUS_GROUPS.values(),
        *_FORBIDDEN_FOR_FULFILLMENT.values(),
    ]
    for rules in (*WORKFLOW_RULES.values(), *ROLE_TRANSITIONS.values()):
        for current, targets in rules.items():
            derived.append((current, *targets))
    for group in derived:
        for status in group:
            if status not in canonical and str(status) not in missing:
                missing.append(str(status))
    return missing
