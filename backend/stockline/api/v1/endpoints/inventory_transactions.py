from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from stockline.api.deps import get_inventory_transaction_service
from stockline.core.config import get_settings
from stockline.core.db import get_session
from stockline.core.enums import TransactionStatus, TransactionType
from stockline.core.errors import DomainError
from stockline.core.security import Actor, current_actor
from stockline.schemas.inventory_transaction import (
    InventoryTransactionCreate,
    InventoryTransactionOut,
    InventoryTransactionPage,
    PurchaseInvoiceRefOut,
    ReturnableLineOut,
    TransactionReasonIn,
)
from stockline.services.inventory_transactions import InventoryTransactionService, TransactionFilters


router = APIRouter()


@router.post("", response_model=InventoryTransactionOut, status_code=201)
async def create_transaction(
    data: InventoryTransactionCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(current_actor),
    service: InventoryTransactionService = Depends(get_inventory_transaction_service),
) -> InventoryTransactionOut:
    try:
        async with session.begin():
            tx = await service.create(session, actor=actor, data=data)
            out = InventoryTransactionOut.model_validate(tx)
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return out


@router.get("", response_model=InventoryTransactionPage)
async def list_transactions(
    transaction_type: TransactionType | None = Query(default=None, alias="type"),
    vendor_id: uuid.UUID | None = None,
    status: TransactionStatus | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    search: str | None = Query(default=None, max_length=120),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1),
    session: AsyncSession = Depends(get_session),
    service: InventoryTransactionService = Depends(get_inventory_transaction_service),
) -> InventoryTransactionPage:
    filters = TransactionFilters(
        transaction_type=transaction_type,
        vendor_id=vendor_id,
        status=status,
        from_date=from_date,
        to_date=to_date,
        search=search,
        page=page,
        limit=limit,
    )
    rows, total = await service.list_transactions(session, filters=filters)
    return InventoryTransactionPage(
        items=[InventoryTransactionOut.model_validate(r) for r in rows],
        total=total,
        page=page,
        limit=min(limit, get_settings().transaction_page_size_max),
    )


@router.get("/purchase-invoices", response_model=list[PurchaseInvoiceRefOut])
async def search_purchase_invoices(
    vendor_id: uuid.UUID | None = None,
    search: str | None = Query(default=None, max_length=120),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    service: InventoryTransactionService = Depends(get_inventory_transaction_service),
) -> list[PurchaseInvoiceRefOut]:
    rows = await service.search_purchase_invoices(session, vendor_id=vendor_id, search=search, limit=limit)
    return [PurchaseInvoiceRefOut.model_validate(r) for r in rows]


@router.get("/{transaction_id}", response_model=InventoryTransactionOut)
async def get_transaction(
    transaction_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    service: InventoryTransactionService = Depends(get_inventory_transaction_service),
) -> InventoryTransactionOut:
    try:
        tx = await service.get(session, transaction_id=transaction_id)
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return InventoryTransactionOut.model_validate(tx)


@router.get("/{transaction_id}/returnable", response_model=list[ReturnableLineOut])
async def get_returnable_quantities(
    transaction_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    service: InventoryTransactionService = Depends(get_inventory_transaction_service),
) -> list[ReturnableLineOut]:
    try:
        lines = await service.returnable_quantities(session, purchase_id=transaction_id)
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return [
        ReturnableLineOut(
            variant_id=line.variant_id,
            purchased=line.purchased,
            already_returned=line.already_returned,
            remaining=line.remaining,
            unit_cost_paisa=line.unit_cost_paisa,
        )
        for line in lines
    ]


@router.post("/{transaction_id}/void", response_model=InventoryTransactionOut)
async def void_transaction(
    transaction_id: uuid.UUID,
    data: TransactionReasonIn,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(current_actor),
    service: InventoryTransactionService = Depends(get_inventory_transaction_service),
) -> InventoryTransactionOut:
    try:
        async with session.begin():
            tx = await service.void(session, transaction_id=transaction_id, reason=data.reason, actor=actor)
            out = InventoryTransactionOut.model_validate(tx)
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return out
