from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from stockline.api.deps import get_order_status_engine
from stockline.core.db import get_session
from stockline.core.errors import DomainError
from stockline.core.security import Actor, current_actor
from stockline.schemas.order import (
    FulfillmentTypeChange,
    LostInTransitReport,
    OrderCreate,
    OrderOut,
    OrderStatusChange,
    RtoVerification,
)
from stockline.services.order_status import OrderStatusEngine


router = APIRouter()


@router.post("", response_model=OrderOut, status_code=201)
async def create_order(
    data: OrderCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(current_actor),
    engine: OrderStatusEngine = Depends(get_order_status_engine),
) -> OrderOut:
    try:
        async with session.begin():
            order = await engine.create_order(session, actor=actor, data=data)
            order = await engine.get_order(session, order_id=order.id)
            out = OrderOut.model_validate(order)
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return out


@router.get("", response_model=list[OrderOut])
async def list_orders(
    status: str | None = Query(default=None, max_length=500, description="Comma-separated statuses or status groups (e.g. all_rto); aliases accepted"),
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    engine: OrderStatusEngine = Depends(get_order_status_engine),
) -> list[OrderOut]:
    rows = await engine.list_orders(session, statuses=status, limit=limit)
    return [OrderOut.model_validate(r) for r in rows]


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    engine: OrderStatusEngine = Depends(get_order_status_engine),
) -> OrderOut:
    try:
        order = await engine.get_order(session, order_id=order_id)
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return OrderOut.model_validate(order)


@router.post("/{order_id}/status", response_model=OrderOut)
async def change_order_status(
    order_id: uuid.UUID,
    data: OrderStatusChange,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(current_actor),
    engine: OrderStatusEngine = Depends(get_order_status_engine),
) -> OrderOut:
    try:
        async with session.begin():
            order = await engine.transition(
                session,
                order_id=order_id,
                target_status=data.status,
                actor=actor,
                notes=data.notes,
            )
            out = OrderOut.model_validate(order)
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return out


@router.post("/{order_id}/fulfillment-type", response_model=OrderOut)
async def change_fulfillment_type(
    order_id: uuid.UUID,
    data: FulfillmentTypeChange,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(current_actor),
    engine: OrderStatusEngine = Depends(get_order_status_engine),
) -> OrderOut:
    try:
        async with session.begin():
            order = await engine.change_fulfillment_type(
                session,
                order_id=order_id,
                fulfillment_type=data.fulfillment_type,
                actor=actor,
            )
            out = OrderOut.model_validate(order)
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return out


@router.post("/{order_id}/rto/verify", response_model=OrderOut)
async def verify_rto_return(
    order_id: uuid.UUID,
    data: RtoVerification,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(current_actor),
    engine: OrderStatusEngine = Depends(get_order_status_engine),
) -> OrderOut:
    try:
        async with session.begin():
            order = await engine.verify_rto_return(session, order_id=order_id, actor=actor, notes=data.notes)
            out = OrderOut.model_validate(order)
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return out


@router.post("/{order_id}/lost-in-transit", response_model=OrderOut)
async def mark_lost_in_transit(
    order_id: uuid.UUID,
    data: LostInTransitReport,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(current_actor),
    engine: OrderStatusEngine = Depends(get_order_status_engine),
) -> OrderOut:
    try:
        async with session.begin():
            order = await engine.mark_lost_in_transit(session, order_id=order_id, actor=actor, reason=data.reason)
            out = OrderOut.model_validate(order)
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return out
