from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from stockline.api.deps import get_order_status_engine
from stockline.core.db import get_session
from stockline.core.errors import DomainError, OrderNotFound
from stockline.schemas.order import CourierStatusEvent, CourierStatusResult
from stockline.services.order_status import OrderStatusEngine


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=CourierStatusResult)
async def receive_courier_status(
    data: CourierStatusEvent,
    session: AsyncSession = Depends(get_session),
    engine: OrderStatusEngine = Depends(get_order_status_engine),
) -> CourierStatusResult:
    """
    Courier webhook/poller sink.

    Rule violations are acknowledged with `applied: false` so the courier does not retry an event
    that can never apply (e.g. a late "Delivered" for an order already marked lost).
    """
    try:
        async with session.begin():
            order = await engine.apply_courier_status(
                session,
                order_id=data.order_id,
                courier=data.courier,
                raw_status=data.status,
                tracking_id=data.tracking_id,
            )
            status = order.status if order is not None else None
    except OrderNotFound as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    except DomainError as e:
        logger.warning(
            "Courier status rejected",
            extra={"order_id": str(data.order_id), "courier": data.courier, "raw_status": data.status, "code": e.code},
        )
        return CourierStatusResult(applied=False, status=None, reason=e.code)

    if order is None:
        return CourierStatusResult(applied=False, status=None, reason="UNMAPPED_STATUS")
    return CourierStatusResult(applied=True, status=status)
