from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from stockline.core.enums import FulfillmentType, LocationType, OrderStatus, TransitionSource
from stockline.core.errors import (
    Forbidden,
    FulfillmentMismatch,
    InvalidReference,
    InvalidStatus,
    InvalidTransition,
    MissingField,
    OrderNotEditable,
    OrderNotFound,
    TerminalStateViolation,
)
from stockline.core.security import Actor
from stockline.core.statuses import (
    EDITABLE_STATUSES,
    STOCK_DEDUCTING_STATUSES,
    STOCK_RESTORING_STATUSES,
    TERMINAL_STATUSES,
    allowed_next,
    is_valid_for_fulfillment,
    normalize,
    normalize_fulfillment_type,
    normalize_location,
    normalize_many,
    role_allows,
)
from stockline.models.base import utcnow
from stockline.models.order import Order, OrderItem
from stockline.models.product_variant import ProductVariant
from stockline.schemas.order import OrderCreate
from stockline.services.audit import audit_log
from stockline.services.courier_status import map_courier_status, normalize_courier_partner
from stockline.services.stock_ledger import StockLedgerPort


logger = logging.getLogger(__name__)

RTO_HOLDING_STATUSES = frozenset({OrderStatus.RTO_INITIATED, OrderStatus.RTO_VERIFICATION_PENDING})

# Where a shipment can be when it is reported lost.
DISPUTABLE_STATUSES = frozenset(
    {
        OrderStatus.HANDOVER_TO_COURIER,
        OrderStatus.IN_TRANSIT,
        OrderStatus.RTO_INITIATED,
        OrderStatus.RTO_VERIFICATION_PENDING,
    }
)

_DEFAULT_LOCATION: dict[FulfillmentType, LocationType] = {
    FulfillmentType.INSIDE_VALLEY: LocationType.INSIDE_VALLEY,
    FulfillmentType.OUTSIDE_VALLEY: LocationType.OUTSIDE_VALLEY,
    FulfillmentType.STORE: LocationType.POS,
}


class OrderStatusEngine:
    """
    Applies order status changes and the stock effects they imply.

    Rules, in order: the target must normalize to a canonical status, the current status must not
    be terminal, and the target must suit the fulfillment type. Moving to the current status is a
    no-op. Otherwise the move must be an edge of `WORKFLOW_RULES` for the order's fulfillment type,
    the caller's source must be allowed to set it (`returned` out of the RTO holding states is
    warehouse-only, `lost_in_transit` is dispute-only, couriers can set neither), and a manual
    move by a non-privileged actor must be listed for their role in `ROLE_TRANSITIONS`.
    """

    def __init__(self, *, stock_ledger: StockLedgerPort) -> None:
        self._stock_ledger = stock_ledger

    async def create_order(self, session: AsyncSession, *, actor: Actor, data: OrderCreate) -> Order:
        fulfillment_type = normalize_fulfillment_type(data.fulfillment_type)
        if fulfillment_type is None:
            raise InvalidStatus(f"Unknown fulfillment type: {data.fulfillment_type}", field="fulfillment_type")

        if data.location:
            location = normalize_location(data.location)
            if location is None:
                raise InvalidStatus(f"Unknown location: {data.location}", field="location")
        else:
            location = _DEFAULT_LOCATION[fulfillment_type]

        variant_ids = {item.variant_id for item in data.items}
        found = set((await session.execute(select(ProductVariant.id).where(ProductVariant.id.in_(variant_ids)))).scalars())
        missing = sorted(str(v) for v in variant_ids - found)
        if missing:
            raise InvalidReference(f"Unknown product variant(s): {', '.join(missing)}", variant_ids=missing)

        order = Order(
            order_number=(data.order_number or "").strip() or f"ORD-{uuid.uuid4().hex[:10].upper()}",
            customer_name=data.customer_name.strip(),
            customer_phone=data.customer_phone,
            shipping_address=data.shipping_address,
            status=OrderStatus.INTAKE,
            fulfillment_type=fulfillment_type,
            location=location,
            payment_method=data.payment_method,
            total_amount_paisa=sum(i.quantity * i.unit_price_paisa for i in data.items),
            notes=data.notes,
            status_changed_at=utcnow(),
            items=[
                OrderItem(variant_id=i.variant_id, quantity=i.quantity, unit_price_paisa=i.unit_price_paisa)
                for i in data.items
            ],
        )
        session.add(order)
        await session.flush()

        await audit_log(
            session,
            actor=actor.id,
            entity_type="order",
            entity_id=order.id,
            action="create",
            after={
                "order_number": order.order_number,
                "status": order.status,
                "fulfillment_type": order.fulfillment_type,
                "location": order.location,
            },
        )
        return order

    async def get_order(self, session: AsyncSession, *, order_id: uuid.UUID) -> Order:
        order = (
            await session.execute(
                select(Order)
                .where(Order.id == order_id)
                .options(selectinload(Order.items))
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFound(f"Order not found: {order_id}", order_id=order_id)
        return order

    async def list_orders(
        self,
        session: AsyncSession,
        *,
        statuses: str | None = None,
        limit: int = 100,
    ) -> list[Order]:
        stmt = (
            select(Order)
            .options(selectinload(Order.items))
            .order_by(Order.created_at.desc())
            .limit(max(1, min(limit, 500)))
        )
        wanted = normalize_many(statuses)
        if wanted:
            stmt = stmt.where(Order.status.in_(wanted))
        return list((await session.execute(stmt)).scalars())

    async def transition(
        self,
        session: AsyncSession,
        *,
        order_id: uuid.UUID,
        target_status: str | OrderStatus,
        actor: Actor,
        source: TransitionSource = TransitionSource.MANUAL,
        notes: str | None = None,
    ) -> Order:
        target = normalize(target_status)
        if target is None:
            raise InvalidStatus(f"Invalid status: {target_status!r}", status=str(target_status))

        order = await self._lock_order(session, order_id)
        current = order.status
        if current in TERMINAL_STATUSES:
            raise TerminalStateViolation(
                f"Order {order.order_number} is {current.value}; no further changes are allowed",
                order_id=order.id,
                status=current.value,
            )
        if not is_valid_for_fulfillment(target, order.fulfillment_type):
            raise FulfillmentMismatch(
                f"Status {target.value} is not valid for {order.fulfillment_type.value} orders",
                order_id=order.id,
                status=target.value,
                fulfillment_type=order.fulfillment_type.value,
            )
        self._check_source(order, target, source)

        if target == current:
            return order

        if target not in allowed_next(current, order.fulfillment_type):
            raise InvalidTransition(
                f"Order {order.order_number} cannot move from {current.value} to {target.value}",
                order_id=order.id,
                from_status=current.value,
                status=target.value,
                fulfillment_type=order.fulfillment_type.value,
            )
        if source == TransitionSource.MANUAL and not actor.is_privileged and not role_allows(actor.role, current, target):
            raise Forbidden(
                f"Role {actor.role} cannot move orders from {current.value} to {target.value}",
                role=actor.role,
                from_status=current.value,
                status=target.value,
            )

        await self._apply(session, order=order, target=target, actor=actor.id, source=source, notes=notes)
        return order

    async def verify_rto_return(
        self,
        session: AsyncSession,
        *,
        order_id: uuid.UUID,
        actor: Actor,
        notes: str | None = None,
    ) -> Order:
        """Warehouse confirms the parcel is physically back; the only way out of the RTO holding states."""
        self._require_privileged(actor, "verify RTO returns")
        order = await self._lock_order(session, order_id)
        if order.status in TERMINAL_STATUSES:
            raise TerminalStateViolation(
                f"Order {order.order_number} is already {order.status.value}",
                order_id=order.id,
                status=order.status.value,
            )
        if order.status not in RTO_HOLDING_STATUSES:
            raise InvalidTransition(
                f"Order {order.order_number} is {order.status.value}, not awaiting RTO verification",
                order_id=order.id,
                status=order.status.value,
            )

        order.rto_verified_at = utcnow()
        order.rto_verified_by = actor.id
        order.rto_verification_notes = notes
        return await self.transition(
            session,
            order_id=order.id,
            target_status=OrderStatus.RETURNED,
            actor=actor,
            source=TransitionSource.WAREHOUSE,
            notes=notes,
        )

    async def mark_lost_in_transit(
        self,
        session: AsyncSession,
        *,
        order_id: uuid.UUID,
        actor: Actor,
        reason: str,
    ) -> Order:
        self._require_privileged(actor, "raise delivery disputes")
        reason = (reason or "").strip()
        if not reason:
            raise MissingField("A dispute reason is required", field="reason")

        order = await self._lock_order(session, order_id)
        if order.status in TERMINAL_STATUSES:
            raise TerminalStateViolation(
                f"Order {order.order_number} is already {order.status.value}",
                order_id=order.id,
                status=order.status.value,
            )
        if order.status not in DISPUTABLE_STATUSES:
            raise InvalidTransition(
                f"Order {order.order_number} is {order.status.value}; only shipments with a courier can be disputed",
                order_id=order.id,
                status=order.status.value,
            )

        order.dispute_reason = reason
        order.disputed_at = utcnow()
        order.disputed_by = actor.id
        return await self.transition(
            session,
            order_id=order.id,
            target_status=OrderStatus.LOST_IN_TRANSIT,
            actor=actor,
            source=TransitionSource.DISPUTE,
            notes=reason,
        )

    async def apply_courier_status(
        self,
        session: AsyncSession,
        *,
        order_id: uuid.UUID,
        courier: str,
        raw_status: str,
        tracking_id: str | None = None,
    ) -> Order | None:
        partner = normalize_courier_partner(courier)
        if partner is None:
            logger.warning("Unknown courier partner; status update skipped", extra={"courier": courier, "order_id": str(order_id)})
            return None
        target = map_courier_status(partner, raw_status)
        if target is None:
            logger.warning(
                "Unmapped courier status; update skipped",
                extra={"courier": partner.value, "raw_status": raw_status, "order_id": str(order_id)},
            )
            return None

        order = await self._lock_order(session, order_id)
        order.courier_partner = partner
        order.courier_raw_status = raw_status
        if tracking_id:
            order.courier_tracking_id = tracking_id
        return await self.transition(
            session,
            order_id=order_id,
            target_status=target,
            actor=Actor(id=f"courier:{partner.value}", role="courier"),
            source=TransitionSource.COURIER,
            notes=raw_status,
        )

    async def change_fulfillment_type(
        self,
        session: AsyncSession,
        *,
        order_id: uuid.UUID,
        fulfillment_type: str,
        actor: Actor,
    ) -> Order:
        new_type = normalize_fulfillment_type(fulfillment_type)
        if new_type is None:
            raise InvalidStatus(f"Unknown fulfillment type: {fulfillment_type}", field="fulfillment_type")

        order = await self._lock_order(session, order_id)
        if order.status not in EDITABLE_STATUSES:
            raise OrderNotEditable(
                f"Order {order.order_number} is {order.status.value}; fulfillment can only change before packing",
                order_id=order.id,
                status=order.status.value,
            )
        if new_type == order.fulfillment_type:
            return order

        before = {"fulfillment_type": order.fulfillment_type, "location": order.location}
        if order.location is None or order.location == _DEFAULT_LOCATION[order.fulfillment_type]:
            order.location = _DEFAULT_LOCATION[new_type]
        order.fulfillment_type = new_type
        await audit_log(
            session,
            actor=actor.id,
            entity_type="order",
            entity_id=order.id,
            action="fulfillment_change",
            before=before,
            after={"fulfillment_type": order.fulfillment_type, "location": order.location},
        )
        return order

    def _require_privileged(self, actor: Actor, action: str) -> None:
        if not actor.is_privileged:
            raise Forbidden(f"Only admins and managers can {action}", role=actor.role)

    def _check_source(self, order: Order, target: OrderStatus, source: TransitionSource) -> None:
        current = order.status
        if target == OrderStatus.LOST_IN_TRANSIT and source != TransitionSource.DISPUTE:
            raise InvalidTransition(
                "lost_in_transit can only be set through a dispute",
                order_id=order.id,
                status=target.value,
                source=source.value,
            )
        if target == OrderStatus.RETURNED:
            if source == TransitionSource.COURIER:
                raise InvalidTransition(
                    "Courier updates cannot mark an order returned; warehouse verification is required",
                    order_id=order.id,
                    status=target.value,
                )
            if current in RTO_HOLDING_STATUSES and source != TransitionSource.WAREHOUSE:
                raise InvalidTransition(
                    f"Order {order.order_number} is {current.value}; use RTO verification to mark it returned",
                    order_id=order.id,
                    status=target.value,
                    source=source.value,
                )

    async def _apply(
        self,
        session: AsyncSession,
        *,
        order: Order,
        target: OrderStatus,
        actor: str,
        source: TransitionSource,
        notes: str | None,
    ) -> None:
        before = {
            "status": order.status,
            "stock_deducted": order.stock_deducted,
            "stock_reversed": order.stock_reversed,
        }
        stock_effect: str | None = None

        # Items are "out" while stock_deducted and not stock_reversed.
        items_out = order.stock_deducted and not order.stock_reversed
        if target in STOCK_DEDUCTING_STATUSES and not items_out:
            await self._move_items(session, order=order, sign=-1, reason=f"order_{target.value}")
            order.stock_deducted = True
            order.stock_reversed = False
            stock_effect = "deducted"
        elif target in STOCK_RESTORING_STATUSES and items_out:
            await self._move_items(session, order=order, sign=1, reason=f"order_{target.value}")
            order.stock_reversed = True
            stock_effect = "restored"

        order.status = target
        order.status_changed_at = utcnow()
        await session.flush()

        await audit_log(
            session,
            actor=actor,
            entity_type="order",
            entity_id=order.id,
            action="status_change",
            before=before,
            after={
                "status": target,
                "source": source,
                "stock_effect": stock_effect,
                "stock_deducted": order.stock_deducted,
                "stock_reversed": order.stock_reversed,
                "notes": notes,
            },
        )
        logger.info(
            "Order status changed",
            extra={
                "order_id": str(order.id),
                "from_status": before["status"].value,
                "to_status": target.value,
                "source": source.value,
                "stock_effect": stock_effect,
            },
        )

    async def _move_items(self, session: AsyncSession, *, order: Order, sign: int, reason: str) -> None:
        for item in order.items:
            await self._stock_ledger.apply_delta(
                session,
                item.variant_id,
                sign * item.quantity,
                reason=reason,
                reference_type="order",
                reference_id=order.id,
            )

    async def _lock_order(self, session: AsyncSession, order_id: uuid.UUID) -> Order:
        order = (
            await session.execute(
                select(Order)
                .where(Order.id == order_id)
                .options(selectinload(Order.items))
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFound(f"Order not found: {order_id}", order_id=order_id)
        return order
