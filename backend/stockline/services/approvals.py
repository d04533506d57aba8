from __future__ import annotations

import logging
import uuid
from datetime import timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from stockline.core.config import get_settings
from stockline.core.enums import TransactionStatus, TransactionType, VendorLedgerEntryType
from stockline.core.errors import Forbidden, MissingField, NotPending, TransactionNotFound, VendorBalanceUpdateFailed
from stockline.core.security import Actor
from stockline.models.base import utcnow
from stockline.models.inventory_transaction import InventoryTransaction
from stockline.services.audit import audit_log
from stockline.services.money import format_npr
from stockline.services.stock_ledger import StockLedgerPort, stock_effects
from stockline.services.vendor_balance import BalanceUpdateResult, VendorBalanceService, balance_operation_for


logger = logging.getLogger(__name__)

_LEDGER_ENTRY_TYPES: dict[TransactionType, VendorLedgerEntryType] = {
    TransactionType.PURCHASE: VendorLedgerEntryType.PURCHASE,
    TransactionType.PURCHASE_RETURN: VendorLedgerEntryType.PURCHASE_RETURN,
}


async def load_transaction(session: AsyncSession, transaction_id: uuid.UUID) -> InventoryTransaction:
    tx = (
        await session.execute(
            select(InventoryTransaction)
            .where(InventoryTransaction.id == transaction_id)
            .options(selectinload(InventoryTransaction.items))
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if tx is None:
        raise TransactionNotFound(f"Transaction not found: {transaction_id}", transaction_id=transaction_id)
    return tx


class ApprovalWorkflowService:
    """
    Checker side of maker-checker.

    Approval claims the row with a `status = 'pending'` guard, so of two concurrent approvals
    exactly one wins; the loser gets `NotPending` and causes no side effects.
    """

    def __init__(self, *, stock_ledger: StockLedgerPort, vendor_balance: VendorBalanceService) -> None:
        self._stock_ledger = stock_ledger
        self._vendor_balance = vendor_balance

    async def list_pending(
        self,
        session: AsyncSession,
        *,
        transaction_type: TransactionType | None = None,
        limit: int = 100,
    ) -> list[InventoryTransaction]:
        stmt = (
            select(InventoryTransaction)
            .where(InventoryTransaction.status == TransactionStatus.PENDING)
            .options(selectinload(InventoryTransaction.items))
            .order_by(InventoryTransaction.created_at.asc(), InventoryTransaction.invoice_no.asc())
            .limit(limit)
        )
        if transaction_type is not None:
            stmt = stmt.where(InventoryTransaction.transaction_type == transaction_type)
        return list((await session.execute(stmt)).scalars())

    async def approve(
        self,
        session: AsyncSession,
        *,
        transaction_id: uuid.UUID,
        approver: Actor,
    ) -> InventoryTransaction:
        if not approver.is_privileged:
            raise Forbidden("Only admins and managers can approve transactions", role=approver.role)

        now = utcnow()
        claimed = await session.execute(
            update(InventoryTransaction)
            .where(
                InventoryTransaction.id == transaction_id,
                InventoryTransaction.status == TransactionStatus.PENDING,
            )
            .values(status=TransactionStatus.APPROVED, approved_by=approver.id, approved_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            await self._raise_not_pending(session, transaction_id)

        tx = await load_transaction(session, transaction_id)
        for item in tx.items:
            for source, qty in stock_effects(tx.transaction_type, item.source_type, item.quantity):
                await self._stock_ledger.apply_delta(
                    session,
                    item.variant_id,
                    qty,
                    reason=f"{tx.transaction_type.value}_approved",
                    reference_type="inventory_transaction",
                    reference_id=tx.id,
                    source_type=source,
                )

        balance = await self._apply_vendor_balance(session, tx=tx, actor=approver.id)

        await audit_log(
            session,
            actor=approver.id,
            entity_type="inventory_transaction",
            entity_id=tx.id,
            action="approve",
            before={"status": TransactionStatus.PENDING},
            after={
                "status": TransactionStatus.APPROVED,
                "invoice_no": tx.invoice_no,
                "vendor_balance_paisa": balance.new_balance if balance else None,
            },
        )
        logger.info(
            "Inventory transaction approved",
            extra={"transaction_id": str(tx.id), "invoice_no": tx.invoice_no, "approved_by": approver.id},
        )
        return tx

    async def reject(
        self,
        session: AsyncSession,
        *,
        transaction_id: uuid.UUID,
        reason: str,
        rejector: Actor,
    ) -> InventoryTransaction:
        if not rejector.is_privileged:
            raise Forbidden("Only admins and managers can reject transactions", role=rejector.role)
        reason = (reason or "").strip()
        if not reason:
            raise MissingField("Rejection reason is required", field="reason")

        now = utcnow()
        claimed = await session.execute(
            update(InventoryTransaction)
            .where(
                InventoryTransaction.id == transaction_id,
                InventoryTransaction.status == TransactionStatus.PENDING,
            )
            .values(
                status=TransactionStatus.REJECTED,
                rejected_by=rejector.id,
                rejected_at=now,
                rejection_reason=reason,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            await self._raise_not_pending(session, transaction_id)

        tx = await load_transaction(session, transaction_id)
        await audit_log(
            session,
            actor=rejector.id,
            entity_type="inventory_transaction",
            entity_id=tx.id,
            action="reject",
            before={"status": TransactionStatus.PENDING},
            after={"status": TransactionStatus.REJECTED, "reason": reason},
        )
        logger.info(
            "Inventory transaction rejected",
            extra={"transaction_id": str(tx.id), "invoice_no": tx.invoice_no, "rejected_by": rejector.id},
        )
        return tx

    async def stats(
        self,
        session: AsyncSession,
        *,
        since_days: int | None = None,
        user_id: str | None = None,
    ) -> dict[str, int]:
        days = since_days if since_days is not None else get_settings().approval_stats_window_days
        since = utcnow() - timedelta(days=days)

        stmt = (
            select(InventoryTransaction.status, func.count())
            .where(InventoryTransaction.created_at >= since)
            .group_by(InventoryTransaction.status)
        )
        if user_id:
            stmt = stmt.where(InventoryTransaction.performed_by == user_id)

        out = {status.value: 0 for status in TransactionStatus}
        for status, count in (await session.execute(stmt)).all():
            out[TransactionStatus(status).value] = int(count)
        out["total"] = sum(out[status.value] for status in TransactionStatus)
        return out

    async def _raise_not_pending(self, session: AsyncSession, transaction_id: uuid.UUID) -> None:
        current = await session.scalar(
            select(InventoryTransaction.status).where(InventoryTransaction.id == transaction_id)
        )
        if current is None:
            raise TransactionNotFound(f"Transaction not found: {transaction_id}", transaction_id=transaction_id)
        raise NotPending(
            f"Transaction is {TransactionStatus(current).value}, not pending",
            transaction_id=transaction_id,
            status=TransactionStatus(current).value,
        )

    async def _apply_vendor_balance(
        self,
        session: AsyncSession,
        *,
        tx: InventoryTransaction,
        actor: str,
    ) -> BalanceUpdateResult | None:
        operation = balance_operation_for(tx.transaction_type)
        if operation is None or tx.vendor_id is None:
            return None
        if tx.total_cost_paisa <= 0:
            logger.warning(
                "Zero-amount vendor transaction; balance left unchanged",
                extra={"transaction_id": str(tx.id), "invoice_no": tx.invoice_no},
            )
            return None

        result = await self._vendor_balance.update_balance(
            session,
            vendor_id=tx.vendor_id,
            amount_paisa=tx.total_cost_paisa,
            operation=operation,
        )
        if not result.success:
            logger.error(
                "Vendor balance update failed; approval aborted",
                extra={"transaction_id": str(tx.id), "vendor_id": str(tx.vendor_id), "error": result.error},
            )
            raise VendorBalanceUpdateFailed(
                f"Vendor balance update failed: {result.error}",
                transaction_id=tx.id,
                vendor_id=tx.vendor_id,
                error=result.error,
            )

        await self._record_ledger_entry(session, tx=tx, vendor_id=tx.vendor_id, result=result, actor=actor)
        return result

    async def _record_ledger_entry(
        self,
        session: AsyncSession,
        *,
        tx: InventoryTransaction,
        vendor_id: uuid.UUID,
        result: BalanceUpdateResult,
        actor: str,
    ) -> None:
        is_purchase = tx.transaction_type == TransactionType.PURCHASE
        label = "Purchase" if is_purchase else "Purchase return"
        await self._vendor_balance.append_ledger_entry(
            session,
            vendor_id=vendor_id,
            entry_type=_LEDGER_ENTRY_TYPES[tx.transaction_type],
            debit_paisa=tx.total_cost_paisa if is_purchase else 0,
            credit_paisa=0 if is_purchase else tx.total_cost_paisa,
            result=result,
            reference_id=tx.id,
            reference_no=tx.invoice_no,
            description=f"{label} {tx.invoice_no} ({format_npr(tx.total_cost_paisa)})",
            performed_by=actor,
        )
