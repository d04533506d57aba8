from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from stockline.api.deps import get_approval_service
from stockline.core.db import get_session
from stockline.core.enums import TransactionType
from stockline.core.errors import DomainError
from stockline.core.security import Actor, current_actor
from stockline.schemas.inventory_transaction import ApprovalStatsOut, InventoryTransactionOut, TransactionReasonIn
from stockline.services.approvals import ApprovalWorkflowService


router = APIRouter()


@router.get("/pending", response_model=list[InventoryTransactionOut])
async def list_pending_transactions(
    transaction_type: TransactionType | None = Query(default=None, alias="type"),
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    service: ApprovalWorkflowService = Depends(get_approval_service),
) -> list[InventoryTransactionOut]:
    rows = await service.list_pending(session, transaction_type=transaction_type, limit=limit)
    return [InventoryTransactionOut.model_validate(r) for r in rows]


@router.get("/stats", response_model=ApprovalStatsOut)
async def approval_stats(
    days: int | None = Query(default=None, ge=1, le=3650),
    user_id: str | None = Query(default=None, max_length=120),
    session: AsyncSession = Depends(get_session),
    service: ApprovalWorkflowService = Depends(get_approval_service),
) -> ApprovalStatsOut:
    return ApprovalStatsOut(**await service.stats(session, since_days=days, user_id=user_id))


@router.post("/{transaction_id}/approve", response_model=InventoryTransactionOut)
async def approve_transaction(
    transaction_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(current_actor),
    service: ApprovalWorkflowService = Depends(get_approval_service),
) -> InventoryTransactionOut:
    try:
        async with session.begin():
            tx = await service.approve(session, transaction_id=transaction_id, approver=actor)
            out = InventoryTransactionOut.model_validate(tx)
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return out


@router.post("/{transaction_id}/reject", response_model=InventoryTransactionOut)
async def reject_transaction(
    transaction_id: uuid.UUID,
    data: TransactionReasonIn,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(current_actor),
    service: ApprovalWorkflowService = Depends(get_approval_service),
) -> InventoryTransactionOut:
    try:
        async with session.begin():
            tx = await service.reject(session, transaction_id=transaction_id, reason=data.reason, rejector=actor)
            out = InventoryTransactionOut.model_validate(tx)
    except DomainError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail()) from e
    return out
