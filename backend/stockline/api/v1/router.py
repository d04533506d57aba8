from __future__ import annotations

from fastapi import APIRouter, Depends

from stockline.api.v1.endpoints import approvals, courier_events, inventory_transactions, orders, vendors
from stockline.core.security import require_basic_auth


api_router = APIRouter(dependencies=[Depends(require_basic_auth)])

api_router.include_router(
    inventory_transactions.router, prefix="/inventory/transactions", tags=["inventory-transactions"]
)
api_router.include_router(approvals.router, prefix="/inventory/approvals", tags=["approvals"])
api_router.include_router(vendors.router, prefix="/vendors", tags=["vendors"])

api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(courier_events.router, prefix="/courier-events", tags=["courier-events"])
