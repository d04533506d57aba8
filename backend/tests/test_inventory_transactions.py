from __future__ import annotations

import uuid
from datetime import date

import pytest
from fastapi import HTTPException
from sqlalchemy import func, select

from stockline.api.v1.endpoints.inventory_transactions import create_transaction
from stockline.core.enums import StockSource, TransactionStatus, TransactionType, VendorLedgerEntryType
from stockline.core.errors import (
    AlreadyVoided,
    DuplicateInvoice,
    Forbidden,
    InsufficientStock,
    InvalidReference,
    MissingField,
    NoValidItems,
    NotPending,
    PurchaseHasReturns,
    ReturnQuantityExceeded,
    TransactionNotFound,
    VendorNotFound,
)
from stockline.models.inventory_transaction import InventoryTransaction, InventoryTransactionItem
from stockline.models.product_variant import ProductVariant
from stockline.models.vendor import Vendor
from stockline.schemas.inventory_transaction import InventoryTransactionCreate, TransactionItemCreate
from stockline.services.inventory_transactions import TransactionFilters, parse_items


def _data(transaction_type: TransactionType, *lines: dict, **kwargs) -> InventoryTransactionCreate:
    return InventoryTransactionCreate(
        transaction_type=transaction_type,
        items=[TransactionItemCreate(**line) for line in lines],
        **kwargs,
    )


async def _stock(session, variant_id: uuid.UUID) -> int:
    async with session.begin():
        return await session.scalar(select(ProductVariant.current_stock).where(ProductVariant.id == variant_id))


async def _vendor(session, vendor_id: uuid.UUID) -> Vendor:
    async with session.begin():
        return await session.get(Vendor, vendor_id, populate_existing=True)


async def _count(session, transaction_type: TransactionType) -> int:
    async with session.begin():
        return await session.scalar(
            select(func.count()).select_from(InventoryTransaction).where(
                InventoryTransaction.transaction_type == transaction_type
            )
        )


async def _approved_purchase(session, transactions, manager, *, vendor_id, variant_id, qty: int, unit_cost: int = 50_000):
    async with session.begin():
        tx = await transactions.create(
            session,
            actor=manager,
            data=_data(
                TransactionType.PURCHASE,
                {"variant_id": variant_id, "quantity": qty, "unit_cost_paisa": unit_cost},
                vendor_id=vendor_id,
            ),
        )
    return tx.id


def test_parse_items_applies_sign_convention_and_splits() -> None:
    variant_id = uuid.uuid4()
    lines = [
        TransactionItemCreate(variant_id=variant_id, quantity_fresh=3, quantity_damaged=2, unit_cost_paisa=100),
        TransactionItemCreate(variant_id=variant_id, quantity=0, unit_cost_paisa=100),
        TransactionItemCreate(variant_id=variant_id, quantity=-4, unit_cost_paisa=100),
    ]

    purchase = parse_items(TransactionType.PURCHASE, lines)
    assert [(i.quantity, i.source_type) for i in purchase] == [
        (3, StockSource.FRESH),
        (2, StockSource.DAMAGED),
        (4, StockSource.FRESH),
    ]
    assert [i.quantity for i in parse_items(TransactionType.PURCHASE_RETURN, lines)] == [-3, -2, -4]
    assert [i.quantity for i in parse_items(TransactionType.DAMAGE, lines)] == [-3, -2, -4]
    assert [i.quantity for i in parse_items(TransactionType.ADJUSTMENT, lines)] == [3, 2, -4]


def test_item_rejects_quantity_and_split_together() -> None:
    with pytest.raises(ValueError):
        TransactionItemCreate(variant_id=uuid.uuid4(), quantity=1, quantity_fresh=1)


@pytest.mark.asyncio
async def test_operator_purchase_stays_pending(db_session, catalog, transactions, operator) -> None:
    vendor_id, kurta_id, shawl_id = catalog.vendor.id, catalog.kurta.id, catalog.shawl.id

    async with db_session.begin():
        tx = await transactions.create(
            db_session,
            actor=operator,
            data=_data(
                TransactionType.PURCHASE,
                {"variant_id": kurta_id, "quantity_fresh": 4, "quantity_damaged": 1, "unit_cost_paisa": 50_000},
                {"variant_id": shawl_id, "quantity": 0, "unit_cost_paisa": 200_000},
                vendor_id=vendor_id,
                notes="Dashain restock",
            ),
        )

    assert tx.status == TransactionStatus.PENDING
    assert tx.invoice_no == "PUR-000001"
    assert tx.performed_by == "maker-1"
    assert tx.approved_by is None
    assert [(i.line_no, i.quantity, i.source_type) for i in tx.items] == [
        (1, 4, StockSource.FRESH),
        (2, 1, StockSource.DAMAGED),
    ]
    assert tx.total_quantity == 5
    assert tx.total_cost_paisa == 250_000

    assert await _stock(db_session, kurta_id) == 10
    assert (await _vendor(db_session, vendor_id)).balance_paisa == 0


@pytest.mark.asyncio
async def test_create_rejects_empty_or_zero_items(db_session, catalog, transactions, operator) -> None:
    kurta_id = catalog.kurta.id
    with pytest.raises(NoValidItems):
        async with db_session.begin():
            await transactions.create(db_session, actor=operator, data=_data(TransactionType.PURCHASE))

    with pytest.raises(NoValidItems):
        async with db_session.begin():
            await transactions.create(
                db_session,
                actor=operator,
                data=_data(TransactionType.PURCHASE, {"variant_id": kurta_id, "quantity_fresh": 0, "quantity_damaged": 0}),
            )


@pytest.mark.asyncio
async def test_operator_may_only_create_purchases(db_session, catalog, transactions, operator) -> None:
    kurta_id = catalog.kurta.id
    for transaction_type in (TransactionType.DAMAGE, TransactionType.ADJUSTMENT, TransactionType.PURCHASE_RETURN):
        with pytest.raises(Forbidden):
            async with db_session.begin():
                await transactions.create(
                    db_session,
                    actor=operator,
                    data=_data(transaction_type, {"variant_id": kurta_id, "quantity": 1}),
                )


@pytest.mark.asyncio
async def test_create_rejects_unknown_vendor_and_variant(db_session, catalog, transactions, operator) -> None:
    vendor_id, kurta_id = catalog.vendor.id, catalog.kurta.id

    with pytest.raises(VendorNotFound):
        async with db_session.begin():
            await transactions.create(
                db_session,
                actor=operator,
                data=_data(TransactionType.PURCHASE, {"variant_id": kurta_id, "quantity": 1}, vendor_id=uuid.uuid4()),
            )

    with pytest.raises(InvalidReference):
        async with db_session.begin():
            await transactions.create(
                db_session,
                actor=operator,
                data=_data(TransactionType.PURCHASE, {"variant_id": uuid.uuid4(), "quantity": 1}, vendor_id=vendor_id),
            )

    assert await _count(db_session, TransactionType.PURCHASE) == 0


@pytest.mark.asyncio
async def test_privileged_create_is_approved_immediately(db_session, catalog, transactions, vendor_balance, manager) -> None:
    vendor_id, kurta_id = catalog.vendor.id, catalog.kurta.id

    async with db_session.begin():
        tx = await transactions.create(
            db_session,
            actor=manager,
            data=_data(
                TransactionType.PURCHASE,
                {"variant_id": kurta_id, "quantity": 5, "unit_cost_paisa": 50_000},
                vendor_id=vendor_id,
            ),
        )

    assert tx.status == TransactionStatus.APPROVED
    assert tx.approved_by == "checker-1"
    assert tx.approved_at is not None
    assert await _stock(db_session, kurta_id) == 15

    vendor = await _vendor(db_session, vendor_id)
    assert vendor.balance_paisa == 250_000
    assert vendor.total_purchases_paisa == 250_000

    async with db_session.begin():
        ledger = await vendor_balance.list_ledger(db_session, vendor_id=vendor_id)
    assert [(e.entry_type, e.debit_paisa, e.running_balance_paisa) for e in ledger] == [
        (VendorLedgerEntryType.PURCHASE, 250_000, 250_000)
    ]


@pytest.mark.asyncio
async def test_damage_without_vendor_only_moves_stock(db_session, catalog, transactions, manager) -> None:
    vendor_id, shawl_id = catalog.vendor.id, catalog.shawl.id

    async with db_session.begin():
        tx = await transactions.create(
            db_session,
            actor=manager,
            data=_data(TransactionType.DAMAGE, {"variant_id": shawl_id, "quantity": 3}, reason="Water damage"),
        )

    assert tx.invoice_no == "DMG-000001"
    assert [i.quantity for i in tx.items] == [-3]
    assert await _stock(db_session, shawl_id) == 7
    assert (await _vendor(db_session, vendor_id)).balance_paisa == 0


@pytest.mark.asyncio
async def test_damage_beyond_stock_is_refused_whole(db_session, catalog, transactions, manager) -> None:
    shawl_id = catalog.shawl.id

    with pytest.raises(InsufficientStock):
        async with db_session.begin():
            await transactions.create(
                db_session,
                actor=manager,
                data=_data(TransactionType.DAMAGE, {"variant_id": shawl_id, "quantity": 11}),
            )

    assert await _stock(db_session, shawl_id) == 10
    assert await _count(db_session, TransactionType.DAMAGE) == 0


@pytest.mark.asyncio
async def test_return_within_purchased_quantity(db_session, catalog, transactions, manager) -> None:
    vendor_id, kurta_id = catalog.vendor.id, catalog.kurta.id
    purchase_id = await _approved_purchase(
        db_session, transactions, manager, vendor_id=vendor_id, variant_id=kurta_id, qty=5
    )

    async with db_session.begin():
        ret = await transactions.create(
            db_session,
            actor=manager,
            data=_data(
                TransactionType.PURCHASE_RETURN,
                {"variant_id": kurta_id, "quantity": 3, "unit_cost_paisa": 50_000},
                vendor_id=vendor_id,
                reference_transaction_id=purchase_id,
            ),
        )

    assert ret.invoice_no == "RET-000001"
    assert ret.status == TransactionStatus.APPROVED
    assert [i.quantity for i in ret.items] == [-3]
    assert await _stock(db_session, kurta_id) == 12
    assert (await _vendor(db_session, vendor_id)).balance_paisa == 100_000

    with pytest.raises(ReturnQuantityExceeded) as exc:
        async with db_session.begin():
            await transactions.create(
                db_session,
                actor=manager,
                data=_data(
                    TransactionType.PURCHASE_RETURN,
                    {"variant_id": kurta_id, "quantity": 3, "unit_cost_paisa": 50_000},
                    vendor_id=vendor_id,
                    reference_transaction_id=purchase_id,
                ),
            )
    assert exc.value.context == {"variant_id": kurta_id, "purchased": 5, "already_returned": 3, "requested": 3}
    assert exc.value.to_detail()["code"] == "RETURN_QUANTITY_EXCEEDED"

    assert await _count(db_session, TransactionType.PURCHASE_RETURN) == 1
    assert await _stock(db_session, kurta_id) == 12

    async with db_session.begin():
        lines = await transactions.returnable_quantities(db_session, purchase_id=purchase_id)
    assert [(l.purchased, l.already_returned, l.remaining, l.unit_cost_paisa) for l in lines] == [(5, 3, 2, 50_000)]


@pytest.mark.asyncio
async def test_pending_returns_count_against_purchase(db_session, catalog, transactions, manager) -> None:
    vendor_id, kurta_id = catalog.vendor.id, catalog.kurta.id
    purchase_id = await _approved_purchase(
        db_session, transactions, manager, vendor_id=vendor_id, variant_id=kurta_id, qty=5
    )

    async with db_session.begin():
        db_session.add(
            InventoryTransaction(
                invoice_no="RET-900001",
                transaction_type=TransactionType.PURCHASE_RETURN,
                status=TransactionStatus.PENDING,
                vendor_id=vendor_id,
                reference_transaction_id=purchase_id,
                transaction_date=date.today(),
                total_quantity=4,
                performed_by="maker-1",
                items=[InventoryTransactionItem(line_no=1, variant_id=kurta_id, quantity=-4)],
            )
        )

    with pytest.raises(ReturnQuantityExceeded) as exc:
        async with db_session.begin():
            await transactions.create(
                db_session,
                actor=manager,
                data=_data(
                    TransactionType.PURCHASE_RETURN,
                    {"variant_id": kurta_id, "quantity": 2},
                    vendor_id=vendor_id,
                    reference_transaction_id=purchase_id,
                ),
            )
    assert exc.value.already_returned == 4


@pytest.mark.asyncio
async def test_return_reference_must_be_an_approved_purchase_of_the_vendor(
    db_session, catalog, transactions, operator, manager
) -> None:
    vendor_id, other_vendor_id = catalog.vendor.id, catalog.other_vendor.id
    kurta_id, shawl_id = catalog.kurta.id, catalog.shawl.id
    approved_id = await _approved_purchase(
        db_session, transactions, manager, vendor_id=vendor_id, variant_id=kurta_id, qty=5
    )
    async with db_session.begin():
        pending = await transactions.create(
            db_session,
            actor=operator,
            data=_data(TransactionType.PURCHASE, {"variant_id": kurta_id, "quantity": 2}, vendor_id=vendor_id),
        )
        damage = await transactions.create(
            db_session,
            actor=manager,
            data=_data(TransactionType.DAMAGE, {"variant_id": kurta_id, "quantity": 1}),
        )
    pending_id, damage_id = pending.id, damage.id

    def _return(reference_id, *, vendor=vendor_id, variant=kurta_id):
        return _data(
            TransactionType.PURCHASE_RETURN,
            {"variant_id": variant, "quantity": 1},
            vendor_id=vendor,
            reference_transaction_id=reference_id,
        )

    with pytest.raises(MissingField) as exc:
        async with db_session.begin():
            await transactions.create(db_session, actor=manager, data=_return(None))
    assert exc.value.context["field"] == "reference_transaction_id"

    for reference_id, vendor in ((pending_id, vendor_id), (damage_id, vendor_id), (approved_id, other_vendor_id), (uuid.uuid4(), vendor_id)):
        with pytest.raises(InvalidReference):
            async with db_session.begin():
                await transactions.create(db_session, actor=manager, data=_return(reference_id, vendor=vendor))

    with pytest.raises(ReturnQuantityExceeded) as exc:
        async with db_session.begin():
            await transactions.create(db_session, actor=manager, data=_return(approved_id, variant=shawl_id))
    assert exc.value.purchased == 0

    assert await _count(db_session, TransactionType.PURCHASE_RETURN) == 0


@pytest.mark.asyncio
async def test_duplicate_invoice_number_is_reported(db_session, catalog, transactions, operator) -> None:
    vendor_id, kurta_id = catalog.vendor.id, catalog.kurta.id
    async with db_session.begin():
        db_session.add(
            InventoryTransaction(
                invoice_no="PUR-000001",
                transaction_type=TransactionType.PURCHASE,
                vendor_id=vendor_id,
                transaction_date=date.today(),
                performed_by="legacy-import",
            )
        )

    with pytest.raises(DuplicateInvoice) as exc:
        async with db_session.begin():
            await transactions.create(
                db_session,
                actor=operator,
                data=_data(TransactionType.PURCHASE, {"variant_id": kurta_id, "quantity": 1}, vendor_id=vendor_id),
            )
    assert exc.value.context["invoice_no"] == "PUR-000001"
    assert await _count(db_session, TransactionType.PURCHASE) == 1


@pytest.mark.asyncio
async def test_void_pending_has_no_side_effects(db_session, catalog, transactions, operator, manager) -> None:
    vendor_id, kurta_id = catalog.vendor.id, catalog.kurta.id
    async with db_session.begin():
        tx = await transactions.create(
            db_session,
            actor=operator,
            data=_data(TransactionType.PURCHASE, {"variant_id": kurta_id, "quantity": 2, "unit_cost_paisa": 100}, vendor_id=vendor_id),
        )
    tx_id = tx.id

    async with db_session.begin():
        voided = await transactions.void(db_session, transaction_id=tx_id, reason="Entered twice", actor=manager)

    assert voided.status == TransactionStatus.VOIDED
    assert voided.voided_by == "checker-1"
    assert voided.void_reason == "Entered twice"
    assert await _stock(db_session, kurta_id) == 10
    assert (await _vendor(db_session, vendor_id)).balance_paisa == 0


@pytest.mark.asyncio
async def test_void_approved_purchase_reverses_stock_and_balance(
    db_session, catalog, transactions, vendor_balance, manager
) -> None:
    vendor_id, kurta_id = catalog.vendor.id, catalog.kurta.id
    purchase_id = await _approved_purchase(
        db_session, transactions, manager, vendor_id=vendor_id, variant_id=kurta_id, qty=5
    )

    async with db_session.begin():
        voided = await transactions.void(db_session, transaction_id=purchase_id, reason="Wrong vendor", actor=manager)
    assert voided.status == TransactionStatus.VOIDED

    assert await _stock(db_session, kurta_id) == 10
    vendor = await _vendor(db_session, vendor_id)
    assert vendor.balance_paisa == 0
    assert vendor.total_purchases_paisa == 0

    async with db_session.begin():
        ledger = await vendor_balance.list_ledger(db_session, vendor_id=vendor_id)
    assert [(e.entry_type, e.debit_paisa, e.credit_paisa, e.running_balance_paisa) for e in ledger] == [
        (VendorLedgerEntryType.PURCHASE, 250_000, 0, 250_000),
        (VendorLedgerEntryType.VOID_REVERSAL, 0, 250_000, 0),
    ]

    with pytest.raises(AlreadyVoided):
        async with db_session.begin():
            await transactions.void(db_session, transaction_id=purchase_id, reason="again", actor=manager)


@pytest.mark.asyncio
async def test_void_approved_return_restores_payable(db_session, catalog, transactions, manager) -> None:
    vendor_id, kurta_id = catalog.vendor.id, catalog.kurta.id
    purchase_id = await _approved_purchase(
        db_session, transactions, manager, vendor_id=vendor_id, variant_id=kurta_id, qty=5
    )
    async with db_session.begin():
        ret = await transactions.create(
            db_session,
            actor=manager,
            data=_data(
                TransactionType.PURCHASE_RETURN,
                {"variant_id": kurta_id, "quantity": 2, "unit_cost_paisa": 50_000},
                vendor_id=vendor_id,
                reference_transaction_id=purchase_id,
            ),
        )
    ret_id = ret.id

    async with db_session.begin():
        await transactions.void(db_session, transaction_id=ret_id, reason="Vendor refused the goods", actor=manager)

    assert await _stock(db_session, kurta_id) == 15
    vendor = await _vendor(db_session, vendor_id)
    assert vendor.balance_paisa == 250_000
    assert vendor.total_returns_paisa == 0

    # A voided return no longer counts against the purchase.
    async with db_session.begin():
        lines = await transactions.returnable_quantities(db_session, purchase_id=purchase_id)
    assert [l.remaining for l in lines] == [5]


@pytest.mark.asyncio
async def test_void_refused_when_goods_already_left(db_session, catalog, transactions, manager) -> None:
    vendor_id, kurta_id = catalog.vendor.id, catalog.kurta.id
    purchase_id = await _approved_purchase(
        db_session, transactions, manager, vendor_id=vendor_id, variant_id=kurta_id, qty=5
    )
    async with db_session.begin():
        await transactions.create(
            db_session,
            actor=manager,
            data=_data(TransactionType.DAMAGE, {"variant_id": kurta_id, "quantity": 12}),
        )

    with pytest.raises(InsufficientStock):
        async with db_session.begin():
            await transactions.void(db_session, transaction_id=purchase_id, reason="Wrong vendor", actor=manager)

    async with db_session.begin():
        status = await db_session.scalar(
            select(InventoryTransaction.status).where(InventoryTransaction.id == purchase_id)
        )
    assert status == TransactionStatus.APPROVED
    assert await _stock(db_session, kurta_id) == 3
    assert (await _vendor(db_session, vendor_id)).balance_paisa == 250_000


@pytest.mark.asyncio
async def test_void_guards(db_session, catalog, transactions, approvals, operator, manager) -> None:
    vendor_id, kurta_id = catalog.vendor.id, catalog.kurta.id
    async with db_session.begin():
        tx = await transactions.create(
            db_session,
            actor=operator,
            data=_data(TransactionType.PURCHASE, {"variant_id": kurta_id, "quantity": 1}, vendor_id=vendor_id),
        )
    tx_id = tx.id

    with pytest.raises(Forbidden):
        async with db_session.begin():
            await transactions.void(db_session, transaction_id=tx_id, reason="mine", actor=operator)

    with pytest.raises(MissingField):
        async with db_session.begin():
            await transactions.void(db_session, transaction_id=tx_id, reason="   ", actor=manager)

    with pytest.raises(TransactionNotFound):
        async with db_session.begin():
            await transactions.void(db_session, transaction_id=uuid.uuid4(), reason="gone", actor=manager)

    async with db_session.begin():
        await approvals.reject(db_session, transaction_id=tx_id, reason="No receipt", rejector=manager)

    with pytest.raises(NotPending):
        async with db_session.begin():
            await transactions.void(db_session, transaction_id=tx_id, reason="cleanup", actor=manager)


@pytest.mark.asyncio
async def test_list_transactions_filters_and_pages(db_session, catalog, transactions, operator, manager) -> None:
    vendor_id, other_vendor_id = catalog.vendor.id, catalog.other_vendor.id
    kurta_id, shawl_id = catalog.kurta.id, catalog.shawl.id
    async with db_session.begin():
        await transactions.create(
            db_session,
            actor=operator,
            data=_data(TransactionType.PURCHASE, {"variant_id": kurta_id, "quantity": 1}, vendor_id=vendor_id, notes="Tihar lot"),
        )
        await transactions.create(
            db_session,
            actor=manager,
            data=_data(TransactionType.PURCHASE, {"variant_id": shawl_id, "quantity": 2}, vendor_id=other_vendor_id),
        )
        await transactions.create(
            db_session,
            actor=manager,
            data=_data(TransactionType.DAMAGE, {"variant_id": shawl_id, "quantity": 1}),
        )

    async def _list(**kwargs):
        async with db_session.begin():
            rows, total = await transactions.list_transactions(db_session, filters=TransactionFilters(**kwargs))
        return [r.invoice_no for r in rows], total

    assert await _list() == (["DMG-000001", "PUR-000002", "PUR-000001"], 3)
    assert await _list(transaction_type=TransactionType.PURCHASE) == (["PUR-000002", "PUR-000001"], 2)
    assert await _list(status=TransactionStatus.PENDING) == (["PUR-000001"], 1)
    assert await _list(vendor_id=other_vendor_id) == (["PUR-000002"], 1)
    assert await _list(search="tihar") == (["PUR-000001"], 1)
    assert await _list(search="DMG") == (["DMG-000001"], 1)
    assert await _list(to_date=date(2000, 1, 1)) == ([], 0)
    assert await _list(page=2, limit=2) == (["PUR-000001"], 3)


@pytest.mark.asyncio
async def test_search_purchase_invoices_only_offers_approved_purchases(
    db_session, catalog, transactions, operator, manager
) -> None:
    vendor_id, other_vendor_id, kurta_id = catalog.vendor.id, catalog.other_vendor.id, catalog.kurta.id
    async with db_session.begin():
        await transactions.create(
            db_session,
            actor=operator,
            data=_data(TransactionType.PURCHASE, {"variant_id": kurta_id, "quantity": 1}, vendor_id=vendor_id),
        )
        await transactions.create(
            db_session,
            actor=manager,
            data=_data(TransactionType.PURCHASE, {"variant_id": kurta_id, "quantity": 1}, vendor_id=vendor_id),
        )
        await transactions.create(
            db_session,
            actor=manager,
            data=_data(TransactionType.PURCHASE, {"variant_id": kurta_id, "quantity": 1}, vendor_id=other_vendor_id),
        )

    async with db_session.begin():
        everything = await transactions.search_purchase_invoices(db_session)
        mine = await transactions.search_purchase_invoices(db_session, vendor_id=vendor_id)
        searched = await transactions.search_purchase_invoices(db_session, search="0003")

    assert sorted(r.invoice_no for r in everything) == ["PUR-000002", "PUR-000003"]
    assert [r.invoice_no for r in mine] == ["PUR-000002"]
    assert [r.invoice_no for r in searched] == ["PUR-000003"]


@pytest.mark.asyncio
async def test_returnable_quantities_requires_a_purchase(db_session, catalog, transactions, manager) -> None:
    shawl_id = catalog.shawl.id
    async with db_session.begin():
        damage = await transactions.create(
            db_session,
            actor=manager,
            data=_data(TransactionType.DAMAGE, {"variant_id": shawl_id, "quantity": 1}),
        )
    damage_id = damage.id

    for purchase_id in (damage_id, uuid.uuid4()):
        with pytest.raises(TransactionNotFound):
            async with db_session.begin():
                await transactions.returnable_quantities(db_session, purchase_id=purchase_id)


@pytest.mark.asyncio
async def test_create_endpoint_maps_domain_errors(db_session, catalog, transactions, operator) -> None:
    kurta_id = catalog.kurta.id

    with pytest.raises(HTTPException) as exc:
        await create_transaction(
            data=_data(TransactionType.DAMAGE, {"variant_id": kurta_id, "quantity": 1}),
            session=db_session,
            actor=operator,
            service=transactions,
        )
    assert exc.value.status_code == 403
    assert exc.value.detail["code"] == "FORBIDDEN"

    out = await create_transaction(
        data=_data(TransactionType.PURCHASE, {"variant_id": kurta_id, "quantity": 2, "unit_cost_paisa": 700}),
        session=db_session,
        actor=operator,
        service=transactions,
    )
    assert out.status == TransactionStatus.PENDING
    assert out.total_cost_paisa == 1_400
    assert [i.quantity for i in out.items] == [2]


async def _damaged(session, variant_id: uuid.UUID) -> int:
    async with session.begin():
        return await session.scalar(select(ProductVariant.damaged_stock).where(ProductVariant.id == variant_id))


@pytest.mark.asyncio
async def test_void_purchase_refused_while_returns_reference_it(db_session, catalog, transactions, manager) -> None:
    vendor_id, kurta_id = catalog.vendor.id, catalog.kurta.id
    purchase_id = await _approved_purchase(
        db_session, transactions, manager, vendor_id=vendor_id, variant_id=kurta_id, qty=5
    )
    async with db_session.begin():
        ret = await transactions.create(
            db_session,
            actor=manager,
            data=_data(
                TransactionType.PURCHASE_RETURN,
                {"variant_id": kurta_id, "quantity": 3, "unit_cost_paisa": 50_000},
                vendor_id=vendor_id,
                reference_transaction_id=purchase_id,
            ),
        )
    ret_id = ret.id
    assert await _stock(db_session, kurta_id) == 12
    assert (await _vendor(db_session, vendor_id)).balance_paisa == 100_000

    with pytest.raises(PurchaseHasReturns) as exc:
        async with db_session.begin():
            await transactions.void(db_session, transaction_id=purchase_id, reason="Wrong vendor", actor=manager)
    assert exc.value.context["returns"] == ["RET-000001"]
    assert exc.value.to_detail()["code"] == "PURCHASE_HAS_RETURNS"

    async with db_session.begin():
        status = await db_session.scalar(select(InventoryTransaction.status).where(InventoryTransaction.id == purchase_id))
    assert status == TransactionStatus.APPROVED
    assert await _stock(db_session, kurta_id) == 12
    assert (await _vendor(db_session, vendor_id)).balance_paisa == 100_000

    # Once the return is voided the purchase can go.
    async with db_session.begin():
        await transactions.void(db_session, transaction_id=ret_id, reason="Vendor refused the goods", actor=manager)
    async with db_session.begin():
        await transactions.void(db_session, transaction_id=purchase_id, reason="Wrong vendor", actor=manager)

    assert await _stock(db_session, kurta_id) == 10
    assert (await _vendor(db_session, vendor_id)).balance_paisa == 0


@pytest.mark.asyncio
async def test_damaged_lines_use_the_damaged_bucket(db_session, catalog, transactions, manager) -> None:
    vendor_id, kurta_id = catalog.vendor.id, catalog.kurta.id
    async with db_session.begin():
        purchase = await transactions.create(
            db_session,
            actor=manager,
            data=_data(
                TransactionType.PURCHASE,
                {"variant_id": kurta_id, "quantity_fresh": 5, "quantity_damaged": 2, "unit_cost_paisa": 50_000},
                vendor_id=vendor_id,
            ),
        )
    purchase_id = purchase.id
    assert await _stock(db_session, kurta_id) == 15
    assert await _damaged(db_session, kurta_id) == 2

    async with db_session.begin():
        await transactions.create(
            db_session,
            actor=manager,
            data=_data(
                TransactionType.PURCHASE_RETURN,
                {"variant_id": kurta_id, "quantity_damaged": 2, "unit_cost_paisa": 50_000},
                vendor_id=vendor_id,
                reference_transaction_id=purchase_id,
            ),
        )

    assert await _stock(db_session, kurta_id) == 15
    assert await _damaged(db_session, kurta_id) == 0


@pytest.mark.asyncio
async def test_damaged_return_needs_damaged_units(db_session, catalog, transactions, manager) -> None:
    vendor_id, kurta_id = catalog.vendor.id, catalog.kurta.id
    purchase_id = await _approved_purchase(
        db_session, transactions, manager, vendor_id=vendor_id, variant_id=kurta_id, qty=5
    )

    with pytest.raises(InsufficientStock) as exc:
        async with db_session.begin():
            await transactions.create(
                db_session,
                actor=manager,
                data=_data(
                    TransactionType.PURCHASE_RETURN,
                    {"variant_id": kurta_id, "quantity_damaged": 2, "unit_cost_paisa": 50_000},
                    vendor_id=vendor_id,
                    reference_transaction_id=purchase_id,
                ),
            )
    assert exc.value.context["source_type"] == "damaged"

    assert await _stock(db_session, kurta_id) == 15
    assert await _damaged(db_session, kurta_id) == 0
    assert await _count(db_session, TransactionType.PURCHASE_RETURN) == 0


@pytest.mark.asyncio
async def test_damage_write_off_moves_units_to_damaged_and_void_moves_them_back(
    db_session, catalog, transactions, manager
) -> None:
    shawl_id = catalog.shawl.id
    async with db_session.begin():
        damage = await transactions.create(
            db_session,
            actor=manager,
            data=_data(TransactionType.DAMAGE, {"variant_id": shawl_id, "quantity": 3}, reason="Water damage"),
        )
    damage_id = damage.id

    assert await _stock(db_session, shawl_id) == 7
    assert await _damaged(db_session, shawl_id) == 3

    async with db_session.begin():
        await transactions.void(db_session, transaction_id=damage_id, reason="Dried out fine", actor=manager)

    assert await _stock(db_session, shawl_id) == 10
    assert await _damaged(db_session, shawl_id) == 0
