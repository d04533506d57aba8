from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from stockline.api.deps import get_vendor_balance_service
from stockline.core.db import get_session
from stockline.core.errors import DomainError
from stockline.core.security import Actor, current_actor
from stockline.schemas.inventory_transaction import PurchaseInvoiceRefOut
from stockline.schemas.vendor import VendorLedgerEntryOut, VendorOut, VendorPaymentCreate, VendorPaymentOut
from stockline.services.vendor_balance import VendorBalanceService


router = APIRouter()


@router.get("/ledger-gaps", response_model=list[PurchaseInvoiceRefOut])
async def list_ledger_gaps(
    session: AsyncSession = Depends(get_session),
    service: VendorBalanceService = Depends(get_vendor_balance_service),
) -> list[PurchaseInvoiceRefOut]:
    rows = await service.find_ledger_gaps(session)
    return [PurchaseInvoiceRefOut.model_validate(r) for r in rows]


@router.get("/{vendor_id}", response_model=VendorOut)
async def get_vendor(
    vendor_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    service: VendorBalanceService = Depends(get_vendor_balance_service),
) -> VendorOut:
    try:
        vendor = await service.get_vendor(session, vendor_id=vendor_id)
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return VendorOut.model_validate(vendor)


@router.get("/{vendor_id}/ledger", response_model=list[VendorLedgerEntryOut])
async def get_vendor_ledger(
    vendor_id: uuid.UUID,
    limit: int = Query(default=200, ge=1, le=1000),
    session: AsyncSession = Depends(get_session),
    service: VendorBalanceService = Depends(get_vendor_balance_service),
) -> list[VendorLedgerEntryOut]:
    try:
        rows = await service.list_ledger(session, vendor_id=vendor_id, limit=limit)
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return [VendorLedgerEntryOut.model_validate(r) for r in rows]


@router.post("/{vendor_id}/payments", response_model=VendorPaymentOut, status_code=201)
async def record_vendor_payment(
    vendor_id: uuid.UUID,
    data: VendorPaymentCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(current_actor),
    service: VendorBalanceService = Depends(get_vendor_balance_service),
) -> VendorPaymentOut:
    try:
        async with session.begin():
            result = await service.record_payment(
                session,
                actor=actor.id,
                vendor_id=vendor_id,
                amount_paisa=data.amount_paisa,
                reference_no=data.reference_no,
                notes=data.notes,
            )
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return VendorPaymentOut(
        payment_id=result.payment_id,
        previous_balance_paisa=result.previous_balance,
        new_balance_paisa=result.new_balance,
        ledger_entry_id=result.ledger_entry_id,
    )
