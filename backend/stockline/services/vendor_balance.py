from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import and_, exists, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from stockline.core.enums import TransactionStatus, TransactionType, VendorBalanceOperation, VendorLedgerEntryType
from stockline.core.errors import InvalidAmount, VendorBalanceUpdateFailed, VendorNotFound
from stockline.models.inventory_transaction import InventoryTransaction
from stockline.models.vendor import Vendor, VendorLedgerEntry
from stockline.services.audit import audit_log
from stockline.services.money import format_npr


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceUpdateResult:
    success: bool
    previous_balance: int | None = None
    new_balance: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class PaymentResult:
    payment_id: uuid.UUID
    previous_balance: int
    new_balance: int
    ledger_entry_id: uuid.UUID | None


# operation -> (balance sign, denormalized total column, total sign)
_EFFECTS: dict[VendorBalanceOperation, tuple[int, str, int]] = {
    VendorBalanceOperation.PURCHASE: (1, "total_purchases_paisa", 1),
    VendorBalanceOperation.PURCHASE_RETURN: (-1, "total_returns_paisa", 1),
    VendorBalanceOperation.PAYMENT: (-1, "total_payments_paisa", 1),
    VendorBalanceOperation.PURCHASE_VOID: (-1, "total_purchases_paisa", -1),
    VendorBalanceOperation.PURCHASE_RETURN_VOID: (1, "total_returns_paisa", -1),
}

_VENDOR_TRANSACTION_TYPES = (TransactionType.PURCHASE, TransactionType.PURCHASE_RETURN)


def balance_operation_for(transaction_type: TransactionType) -> VendorBalanceOperation | None:
    match transaction_type:
        case TransactionType.PURCHASE:
            return VendorBalanceOperation.PURCHASE
        case TransactionType.PURCHASE_RETURN:
            return VendorBalanceOperation.PURCHASE_RETURN
    return None


def void_operation_for(transaction_type: TransactionType) -> VendorBalanceOperation | None:
    match transaction_type:
        case TransactionType.PURCHASE:
            return VendorBalanceOperation.PURCHASE_VOID
        case TransactionType.PURCHASE_RETURN:
            return VendorBalanceOperation.PURCHASE_RETURN_VOID
    return None


class VendorBalanceService:
    """
    Owner of `Vendor.balance_paisa`.

    Every change goes through `update_balance`, which holds a row lock on the vendor for the
    read-modify-write so concurrent approvals against one vendor serialize. Failures come back
    as `BalanceUpdateResult(success=False)`; callers decide which domain error to raise.
    """

    async def update_balance(
        self,
        session: AsyncSession,
        *,
        vendor_id: uuid.UUID,
        amount_paisa: int,
        operation: VendorBalanceOperation | str,
    ) -> BalanceUpdateResult:
        if amount_paisa < 0:
            return BalanceUpdateResult(success=False, error="Amount cannot be negative")
        try:
            op = VendorBalanceOperation(operation)
        except ValueError:
            return BalanceUpdateResult(success=False, error=f"Invalid transaction type: {operation}")
        balance_sign, total_column, total_sign = _EFFECTS[op]

        vendor = (
            await session.execute(
                select(Vendor)
                .where(Vendor.id == vendor_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if vendor is None:
            return BalanceUpdateResult(success=False, error="Vendor not found")
        if not vendor.is_active:
            return BalanceUpdateResult(success=False, error="Vendor is inactive")

        previous = vendor.balance_paisa
        new_balance = previous + balance_sign * amount_paisa
        try:
            async with session.begin_nested():
                vendor.balance_paisa = new_balance
                setattr(vendor, total_column, getattr(vendor, total_column) + total_sign * amount_paisa)
        except IntegrityError as e:
            logger.error(
                "Vendor balance update violated a constraint",
                extra={"vendor_id": str(vendor_id), "operation": op.value, "amount_paisa": amount_paisa},
            )
            return BalanceUpdateResult(success=False, previous_balance=previous, error=str(e.orig))

        logger.info(
            "Vendor balance updated",
            extra={
                "vendor_id": str(vendor_id),
                "operation": op.value,
                "amount_paisa": amount_paisa,
                "previous_balance": previous,
                "new_balance": new_balance,
            },
        )
        return BalanceUpdateResult(success=True, previous_balance=previous, new_balance=new_balance)

    async def append_ledger_entry(
        self,
        session: AsyncSession,
        *,
        vendor_id: uuid.UUID,
        entry_type: VendorLedgerEntryType,
        debit_paisa: int,
        credit_paisa: int,
        result: BalanceUpdateResult,
        reference_id: uuid.UUID,
        reference_no: str | None,
        description: str | None,
        performed_by: str,
        reference_type: str = "inventory_transaction",
    ) -> VendorLedgerEntry | None:
        """
        Append one ledger row whose running balance is the snapshot `result` returned.

        The balance has already moved by the time this runs and other readers may have seen it,
        so an insert failure is not rolled back: it is logged, written to the audit log as
        `ledger_entry_missing`, and left for `find_ledger_gaps` / manual reconciliation.
        """
        if not result.success or result.new_balance is None:
            raise VendorBalanceUpdateFailed(
                "Refusing to record a ledger entry for a balance update that did not land",
                vendor_id=vendor_id,
                error=result.error,
            )
        entry = VendorLedgerEntry(
            vendor_id=vendor_id,
            entry_type=entry_type,
            debit_paisa=debit_paisa,
            credit_paisa=credit_paisa,
            running_balance_paisa=result.new_balance,
            reference_id=reference_id,
            reference_no=reference_no,
            description=description,
            performed_by=performed_by,
        )
        try:
            async with session.begin_nested():
                session.add(entry)
        except SQLAlchemyError:
            logger.error(
                "Vendor ledger entry insert failed after balance update; reconciliation required",
                extra={
                    "vendor_id": str(vendor_id),
                    "reference_id": str(reference_id),
                    "reference_no": reference_no,
                    "entry_type": entry_type.value,
                    "previous_balance": result.previous_balance,
                    "new_balance": result.new_balance,
                },
                exc_info=True,
            )
            await audit_log(
                session,
                actor=performed_by,
                entity_type=reference_type,
                entity_id=reference_id,
                action="ledger_entry_missing",
                after={
                    "vendor_id": vendor_id,
                    "entry_type": entry_type,
                    "debit_paisa": debit_paisa,
                    "credit_paisa": credit_paisa,
                    "previous_balance": result.previous_balance,
                    "new_balance": result.new_balance,
                },
            )
            return None
        return entry

    async def get_vendor(self, session: AsyncSession, *, vendor_id: uuid.UUID) -> Vendor:
        vendor = await session.get(Vendor, vendor_id)
        if vendor is None:
            raise VendorNotFound(f"Vendor not found: {vendor_id}", vendor_id=vendor_id)
        return vendor

    async def list_ledger(
        self,
        session: AsyncSession,
        *,
        vendor_id: uuid.UUID,
        limit: int = 200,
    ) -> list[VendorLedgerEntry]:
        await self.get_vendor(session, vendor_id=vendor_id)
        rows = (
            await session.execute(
                select(VendorLedgerEntry)
                .where(VendorLedgerEntry.vendor_id == vendor_id)
                .order_by(VendorLedgerEntry.created_at.asc(), VendorLedgerEntry.id.asc())
                .limit(limit)
            )
        ).scalars()
        return list(rows)

    async def record_payment(
        self,
        session: AsyncSession,
        *,
        actor: str,
        vendor_id: uuid.UUID,
        amount_paisa: int,
        reference_no: str | None = None,
        notes: str | None = None,
    ) -> PaymentResult:
        if amount_paisa <= 0:
            raise InvalidAmount("Payment amount must be positive", amount_paisa=amount_paisa)

        result = await self.update_balance(
            session,
            vendor_id=vendor_id,
            amount_paisa=amount_paisa,
            operation=VendorBalanceOperation.PAYMENT,
        )
        if not result.success:
            if result.error == "Vendor not found":
                raise VendorNotFound(f"Vendor not found: {vendor_id}", vendor_id=vendor_id)
            raise VendorBalanceUpdateFailed(
                f"Vendor balance update failed: {result.error}",
                vendor_id=vendor_id,
                error=result.error,
            )

        payment_id = uuid.uuid4()
        entry = await self.append_ledger_entry(
            session,
            vendor_id=vendor_id,
            entry_type=VendorLedgerEntryType.PAYMENT,
            debit_paisa=0,
            credit_paisa=amount_paisa,
            result=result,
            reference_id=payment_id,
            reference_type="vendor_payment",
            reference_no=reference_no,
            description=notes or f"Payment {format_npr(amount_paisa)}",
            performed_by=actor,
        )
        await audit_log(
            session,
            actor=actor,
            entity_type="vendor",
            entity_id=vendor_id,
            action="payment",
            before={"balance_paisa": result.previous_balance},
            after={"balance_paisa": result.new_balance, "amount_paisa": amount_paisa, "reference_no": reference_no},
        )
        return PaymentResult(
            payment_id=payment_id,
            previous_balance=result.previous_balance or 0,
            new_balance=result.new_balance or 0,
            ledger_entry_id=entry.id if entry is not None else None,
        )

    async def find_ledger_gaps(self, session: AsyncSession) -> list[InventoryTransaction]:
        """
        Approved vendor transactions whose balance moved but whose ledger entry is missing.

        This is the manual reconciliation queue: a failed ledger insert after a successful
        balance update is logged and left committed, and shows up here.
        """
        has_entry = exists().where(
            and_(
                VendorLedgerEntry.reference_id == InventoryTransaction.id,
                VendorLedgerEntry.entry_type.in_(
                    [VendorLedgerEntryType.PURCHASE, VendorLedgerEntryType.PURCHASE_RETURN]
                ),
            )
        )
        rows = (
            await session.execute(
                select(InventoryTransaction)
                .where(
                    InventoryTransaction.status == TransactionStatus.APPROVED,
                    InventoryTransaction.transaction_type.in_(_VENDOR_TRANSACTION_TYPES),
                    InventoryTransaction.vendor_id.is_not(None),
                    InventoryTransaction.total_cost_paisa > 0,
                    ~has_entry,
                )
                .order_by(InventoryTransaction.approved_at.asc())
            )
        ).scalars()
        return list(rows)
