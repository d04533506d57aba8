from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import date

from sqlalchemy import exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from stockline.core.config import get_settings
from stockline.core.enums import StockSource, TransactionStatus, TransactionType, VendorLedgerEntryType
from stockline.core.errors import (
    AlreadyVoided,
    DuplicateInvoice,
    Forbidden,
    InvalidReference,
    MissingField,
    NoValidItems,
    NotPending,
    PurchaseHasReturns,
    ReturnQuantityExceeded,
    TransactionNotFound,
    VendorBalanceUpdateFailed,
)
from stockline.core.security import Actor
from stockline.models.base import utcnow
from stockline.models.inventory_transaction import InventoryTransaction, InventoryTransactionItem
from stockline.models.product_variant import ProductVariant
from stockline.schemas.inventory_transaction import InventoryTransactionCreate, TransactionItemCreate
from stockline.services.approvals import ApprovalWorkflowService, load_transaction
from stockline.services.audit import audit_log
from stockline.services.invoices import next_invoice_number
from stockline.services.money import format_npr, line_cost_paisa
from stockline.services.stock_ledger import StockLedgerPort, reversal_effects
from stockline.services.vendor_balance import VendorBalanceService, void_operation_for


logger = logging.getLogger(__name__)

# Returns that still count against the purchased quantity.
_OPEN_RETURN_STATUSES = (TransactionStatus.PENDING, TransactionStatus.APPROVED)


@dataclass(frozen=True)
class ParsedItem:
    variant_id: uuid.UUID
    quantity: int
    unit_cost_paisa: int
    source_type: StockSource
    notes: str | None


@dataclass(frozen=True)
class ReturnableLine:
    variant_id: uuid.UUID
    purchased: int
    already_returned: int
    remaining: int
    unit_cost_paisa: int


@dataclass(frozen=True)
class TransactionFilters:
    transaction_type: TransactionType | None = None
    vendor_id: uuid.UUID | None = None
    status: TransactionStatus | None = None
    from_date: date | None = None
    to_date: date | None = None
    search: str | None = None
    page: int = 1
    limit: int = 50


def _signed(transaction_type: TransactionType, quantity: int) -> int:
    match transaction_type:
        case TransactionType.PURCHASE:
            return abs(quantity)
        case TransactionType.PURCHASE_RETURN | TransactionType.DAMAGE:
            return -abs(quantity)
    # Adjustments carry the caller's direction.
    return quantity


def parse_items(transaction_type: TransactionType, lines: list[TransactionItemCreate]) -> list[ParsedItem]:
    """Expand fresh/damaged splits, drop zero quantities, and apply the type's sign convention."""
    out: list[ParsedItem] = []
    for line in lines:
        if line.quantity_fresh is not None or line.quantity_damaged is not None:
            parts = [
                (line.quantity_fresh or 0, StockSource.FRESH),
                (line.quantity_damaged or 0, StockSource.DAMAGED),
            ]
        else:
            parts = [(line.quantity or 0, line.source_type or StockSource.FRESH)]

        for qty, source in parts:
            if qty == 0:
                continue
            out.append(
                ParsedItem(
                    variant_id=line.variant_id,
                    quantity=_signed(transaction_type, qty),
                    unit_cost_paisa=line.unit_cost_paisa,
                    source_type=source,
                    notes=line.notes,
                )
            )
    return out


class InventoryTransactionService:
    def __init__(
        self,
        *,
        approvals: ApprovalWorkflowService,
        stock_ledger: StockLedgerPort,
        vendor_balance: VendorBalanceService,
    ) -> None:
        self._approvals = approvals
        self._stock_ledger = stock_ledger
        self._vendor_balance = vendor_balance

    async def create(
        self,
        session: AsyncSession,
        *,
        actor: Actor,
        data: InventoryTransactionCreate,
    ) -> InventoryTransaction:
        items = parse_items(data.transaction_type, data.items)
        if not items:
            raise NoValidItems("Transaction has no items with a non-zero quantity")

        if not actor.is_privileged and data.transaction_type != TransactionType.PURCHASE:
            raise Forbidden(
                f"Role {actor.role!r} may only create purchase transactions",
                role=actor.role,
                transaction_type=data.transaction_type.value,
            )

        if data.vendor_id is not None:
            await self._vendor_balance.get_vendor(session, vendor_id=data.vendor_id)
        await self._ensure_variants_exist(session, {item.variant_id for item in items})

        if data.transaction_type == TransactionType.PURCHASE_RETURN:
            if data.vendor_id is None:
                raise MissingField("vendor_id is required for purchase returns", field="vendor_id")
            if data.reference_transaction_id is None:
                raise MissingField(
                    "reference_transaction_id is required for purchase returns",
                    field="reference_transaction_id",
                )
            await self._validate_return(
                session,
                vendor_id=data.vendor_id,
                purchase_id=data.reference_transaction_id,
                items=items,
            )

        invoice_no = await next_invoice_number(session, transaction_type=data.transaction_type)
        tx = InventoryTransaction(
            invoice_no=invoice_no,
            transaction_type=data.transaction_type,
            status=TransactionStatus.PENDING,
            vendor_id=data.vendor_id,
            reference_transaction_id=data.reference_transaction_id,
            transaction_date=data.transaction_date or utcnow().date(),
            total_cost_paisa=sum(line_cost_paisa(quantity=i.quantity, unit_cost_paisa=i.unit_cost_paisa) for i in items),
            total_quantity=sum(abs(i.quantity) for i in items),
            reason=data.reason,
            notes=data.notes,
            performed_by=actor.id,
            items=[
                InventoryTransactionItem(
                    line_no=idx,
                    variant_id=i.variant_id,
                    quantity=i.quantity,
                    unit_cost_paisa=i.unit_cost_paisa,
                    source_type=i.source_type,
                    notes=i.notes,
                )
                for idx, i in enumerate(items, start=1)
            ],
        )

        # Header and items share one savepoint: if any item row fails, the header goes with it.
        try:
            async with session.begin_nested():
                session.add(tx)
        except IntegrityError as e:
            taken = await session.scalar(select(exists().where(InventoryTransaction.invoice_no == invoice_no)))
            if taken:
                raise DuplicateInvoice(f"Invoice number already exists: {invoice_no}", invoice_no=invoice_no) from e
            logger.error("Inventory transaction items failed to persist; header discarded", extra={"invoice_no": invoice_no})
            raise InvalidReference("Transaction items could not be saved", invoice_no=invoice_no) from e

        await audit_log(
            session,
            actor=actor.id,
            entity_type="inventory_transaction",
            entity_id=tx.id,
            action="create",
            after={
                "invoice_no": invoice_no,
                "transaction_type": tx.transaction_type,
                "vendor_id": tx.vendor_id,
                "total_cost_paisa": tx.total_cost_paisa,
                "total_quantity": tx.total_quantity,
            },
        )
        logger.info(
            "Inventory transaction created",
            extra={
                "transaction_id": str(tx.id),
                "invoice_no": invoice_no,
                "transaction_type": tx.transaction_type.value,
                "total": format_npr(tx.total_cost_paisa),
                "performed_by": actor.id,
            },
        )

        if actor.is_privileged:
            return await self._approvals.approve(session, transaction_id=tx.id, approver=actor)
        return await load_transaction(session, tx.id)

    async def get(self, session: AsyncSession, *, transaction_id: uuid.UUID) -> InventoryTransaction:
        return await load_transaction(session, transaction_id)

    async def list_transactions(
        self,
        session: AsyncSession,
        *,
        filters: TransactionFilters,
    ) -> tuple[list[InventoryTransaction], int]:
        conditions = []
        if filters.transaction_type is not None:
            conditions.append(InventoryTransaction.transaction_type == filters.transaction_type)
        if filters.vendor_id is not None:
            conditions.append(InventoryTransaction.vendor_id == filters.vendor_id)
        if filters.status is not None:
            conditions.append(InventoryTransaction.status == filters.status)
        if filters.from_date is not None:
            conditions.append(InventoryTransaction.transaction_date >= filters.from_date)
        if filters.to_date is not None:
            conditions.append(InventoryTransaction.transaction_date <= filters.to_date)
        if filters.search and filters.search.strip():
            pattern = f"%{filters.search.strip()}%"
            conditions.append(
                or_(
                    InventoryTransaction.invoice_no.ilike(pattern),
                    InventoryTransaction.notes.ilike(pattern),
                )
            )

        limit = max(1, min(filters.limit, get_settings().transaction_page_size_max))
        page = max(1, filters.page)

        total = int(await session.scalar(select(func.count()).select_from(InventoryTransaction).where(*conditions)) or 0)
        rows = (
            await session.execute(
                select(InventoryTransaction)
                .where(*conditions)
                .options(selectinload(InventoryTransaction.items))
                .order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.invoice_no.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
        ).scalars()
        return list(rows), total

    async def void(
        self,
        session: AsyncSession,
        *,
        transaction_id: uuid.UUID,
        reason: str,
        actor: Actor,
    ) -> InventoryTransaction:
        if not actor.is_privileged:
            raise Forbidden("Only admins and managers can void transactions", role=actor.role)
        reason = (reason or "").strip()
        if not reason:
            raise MissingField("Void reason is required", field="reason")

        tx = await load_transaction(session, transaction_id)
        prior = tx.status
        if prior == TransactionStatus.VOIDED:
            raise AlreadyVoided(f"Transaction {tx.invoice_no} is already voided", transaction_id=tx.id)
        if prior == TransactionStatus.REJECTED:
            raise NotPending(
                f"Transaction {tx.invoice_no} was rejected and cannot be voided",
                transaction_id=tx.id,
                status=prior.value,
            )
        if prior == TransactionStatus.APPROVED and tx.transaction_type == TransactionType.PURCHASE:
            await self._ensure_no_open_returns(session, tx)

        now = utcnow()
        claimed = await session.execute(
            update(InventoryTransaction)
            .where(InventoryTransaction.id == tx.id, InventoryTransaction.status == prior)
            .values(status=TransactionStatus.VOIDED, voided_by=actor.id, voided_at=now, void_reason=reason, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            current = await session.scalar(select(InventoryTransaction.status).where(InventoryTransaction.id == tx.id))
            if current == TransactionStatus.VOIDED:
                raise AlreadyVoided(f"Transaction {tx.invoice_no} is already voided", transaction_id=tx.id)
            raise NotPending(
                f"Transaction {tx.invoice_no} changed state while voiding",
                transaction_id=tx.id,
                status=TransactionStatus(current).value if current is not None else None,
            )

        if prior == TransactionStatus.APPROVED:
            await self._reverse_approved(session, tx=tx, actor=actor.id)

        tx = await load_transaction(session, tx.id)
        await audit_log(
            session,
            actor=actor.id,
            entity_type="inventory_transaction",
            entity_id=tx.id,
            action="void",
            before={"status": prior},
            after={"status": TransactionStatus.VOIDED, "reason": reason},
        )
        logger.info(
            "Inventory transaction voided",
            extra={"transaction_id": str(tx.id), "invoice_no": tx.invoice_no, "prior_status": prior.value},
        )
        return tx

    async def returnable_quantities(self, session: AsyncSession, *, purchase_id: uuid.UUID) -> list[ReturnableLine]:
        purchase = await session.get(InventoryTransaction, purchase_id)
        if purchase is None or purchase.transaction_type != TransactionType.PURCHASE:
            raise TransactionNotFound(f"Purchase not found: {purchase_id}", transaction_id=purchase_id)

        purchased = await self._purchased_by_variant(session, purchase_id)
        returned = await self._returned_by_variant(session, purchase_id)
        costs = dict(
            (
                await session.execute(
                    select(InventoryTransactionItem.variant_id, func.max(InventoryTransactionItem.unit_cost_paisa))
                    .where(InventoryTransactionItem.transaction_id == purchase_id)
                    .group_by(InventoryTransactionItem.variant_id)
                )
            ).all()
        )
        return [
            ReturnableLine(
                variant_id=variant_id,
                purchased=qty,
                already_returned=returned.get(variant_id, 0),
                remaining=max(0, qty - returned.get(variant_id, 0)),
                unit_cost_paisa=int(costs.get(variant_id) or 0),
            )
            for variant_id, qty in purchased.items()
        ]

    async def search_purchase_invoices(
        self,
        session: AsyncSession,
        *,
        vendor_id: uuid.UUID | None = None,
        search: str | None = None,
        limit: int = 20,
    ) -> list[InventoryTransaction]:
        stmt = (
            select(InventoryTransaction)
            .where(
                InventoryTransaction.transaction_type == TransactionType.PURCHASE,
                InventoryTransaction.status == TransactionStatus.APPROVED,
            )
            .order_by(InventoryTransaction.transaction_date.desc(), InventoryTransaction.invoice_no.desc())
            .limit(max(1, min(limit, 100)))
        )
        if vendor_id is not None:
            stmt = stmt.where(InventoryTransaction.vendor_id == vendor_id)
        if search and search.strip():
            stmt = stmt.where(InventoryTransaction.invoice_no.ilike(f"%{search.strip()}%"))
        return list((await session.execute(stmt)).scalars())

    async def _ensure_variants_exist(self, session: AsyncSession, variant_ids: set[uuid.UUID]) -> None:
        found = set(
            (await session.execute(select(ProductVariant.id).where(ProductVariant.id.in_(variant_ids)))).scalars()
        )
        missing = sorted(str(v) for v in variant_ids - found)
        if missing:
            raise InvalidReference(f"Unknown product variant(s): {', '.join(missing)}", variant_ids=missing)

    async def _validate_return(
        self,
        session: AsyncSession,
        *,
        vendor_id: uuid.UUID,
        purchase_id: uuid.UUID,
        items: list[ParsedItem],
    ) -> None:
        # Lock the purchase so two returns against it are validated one after the other.
        purchase = (
            await session.execute(
                select(InventoryTransaction).where(InventoryTransaction.id == purchase_id).with_for_update()
            )
        ).scalar_one_or_none()
        if purchase is None:
            raise InvalidReference(f"Referenced purchase not found: {purchase_id}", reference_transaction_id=purchase_id)
        if purchase.transaction_type != TransactionType.PURCHASE:
            raise InvalidReference(
                f"Referenced transaction {purchase.invoice_no} is not a purchase",
                reference_transaction_id=purchase_id,
            )
        if purchase.vendor_id != vendor_id:
            raise InvalidReference(
                f"Referenced purchase {purchase.invoice_no} belongs to a different vendor",
                reference_transaction_id=purchase_id,
            )
        if purchase.status != TransactionStatus.APPROVED:
            raise InvalidReference(
                f"Referenced purchase {purchase.invoice_no} is {purchase.status.value}, not approved",
                reference_transaction_id=purchase_id,
            )

        purchased = await self._purchased_by_variant(session, purchase_id)
        returned = await self._returned_by_variant(session, purchase_id)

        requested: dict[uuid.UUID, int] = defaultdict(int)
        for item in items:
            requested[item.variant_id] += abs(item.quantity)

        for variant_id, qty in requested.items():
            bought = purchased.get(variant_id, 0)
            already = returned.get(variant_id, 0)
            if already + qty > bought:
                raise ReturnQuantityExceeded(
                    variant_id=variant_id,
                    purchased=bought,
                    already_returned=already,
                    requested=qty,
                )

    async def _purchased_by_variant(self, session: AsyncSession, purchase_id: uuid.UUID) -> dict[uuid.UUID, int]:
        rows = (
            await session.execute(
                select(InventoryTransactionItem.variant_id, func.sum(InventoryTransactionItem.quantity))
                .where(InventoryTransactionItem.transaction_id == purchase_id)
                .group_by(InventoryTransactionItem.variant_id)
            )
        ).all()
        return {variant_id: int(qty or 0) for variant_id, qty in rows}

    async def _returned_by_variant(self, session: AsyncSession, purchase_id: uuid.UUID) -> dict[uuid.UUID, int]:
        rows = (
            await session.execute(
                select(InventoryTransactionItem.variant_id, func.sum(func.abs(InventoryTransactionItem.quantity)))
                .join(InventoryTransaction, InventoryTransaction.id == InventoryTransactionItem.transaction_id)
                .where(
                    InventoryTransaction.reference_transaction_id == purchase_id,
                    InventoryTransaction.transaction_type == TransactionType.PURCHASE_RETURN,
                    InventoryTransaction.status.in_(_OPEN_RETURN_STATUSES),
                )
                .group_by(InventoryTransactionItem.variant_id)
            )
        ).all()
        return {variant_id: int(qty or 0) for variant_id, qty in rows}

    async def _ensure_no_open_returns(self, session: AsyncSession, purchase: InventoryTransaction) -> None:
        returned = await self._returned_by_variant(session, purchase.id)
        if not returned:
            return
        blocking = (
            await session.scalars(
                select(InventoryTransaction.invoice_no)
                .where(
                    InventoryTransaction.reference_transaction_id == purchase.id,
                    InventoryTransaction.transaction_type == TransactionType.PURCHASE_RETURN,
                    InventoryTransaction.status.in_(_OPEN_RETURN_STATUSES),
                )
                .order_by(InventoryTransaction.invoice_no)
            )
        ).all()
        raise PurchaseHasReturns(
            f"Purchase {purchase.invoice_no} has open returns ({', '.join(blocking)}); void them first",
            transaction_id=purchase.id,
            returns=list(blocking),
            returned_quantity=sum(returned.values()),
        )

    async def _reverse_approved(self, session: AsyncSession, *, tx: InventoryTransaction, actor: str) -> None:
        # Raises InsufficientStock if the goods already left; the void is then refused as a whole.
        for item in tx.items:
            for source, qty in reversal_effects(tx.transaction_type, item.source_type, item.quantity):
                await self._stock_ledger.apply_delta(
                    session,
                    item.variant_id,
                    qty,
                    reason="void_reversal",
                    reference_type="inventory_transaction",
                    reference_id=tx.id,
                    source_type=source,
                )

        operation = void_operation_for(tx.transaction_type)
        if operation is None or tx.vendor_id is None or tx.total_cost_paisa <= 0:
            return

        result = await self._vendor_balance.update_balance(
            session,
            vendor_id=tx.vendor_id,
            amount_paisa=tx.total_cost_paisa,
            operation=operation,
        )
        if not result.success:
            raise VendorBalanceUpdateFailed(
                f"Vendor balance reversal failed: {result.error}",
                transaction_id=tx.id,
                vendor_id=tx.vendor_id,
                error=result.error,
            )

        was_purchase = tx.transaction_type == TransactionType.PURCHASE
        await self._vendor_balance.append_ledger_entry(
            session,
            vendor_id=tx.vendor_id,
            entry_type=VendorLedgerEntryType.VOID_REVERSAL,
            debit_paisa=0 if was_purchase else tx.total_cost_paisa,
            credit_paisa=tx.total_cost_paisa if was_purchase else 0,
            result=result,
            reference_id=tx.id,
            reference_no=tx.invoice_no,
            description=f"Void {tx.invoice_no} ({format_npr(tx.total_cost_paisa)})",
            performed_by=actor,
        )
