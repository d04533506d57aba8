from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stockline.core.enums import StockSource, TransactionType
from stockline.core.errors import InsufficientStock, InvalidReference
from stockline.models.product_variant import ProductVariant, StockMovement


logger = logging.getLogger(__name__)

_BUCKETS = {
    StockSource.FRESH: ProductVariant.current_stock,
    StockSource.DAMAGED: ProductVariant.damaged_stock,
}


@dataclass(frozen=True)
class StockDelta:
    variant_id: uuid.UUID
    delta: int
    stock_before: int
    stock_after: int
    source_type: StockSource = StockSource.FRESH


def stock_effects(transaction_type: TransactionType, source_type: StockSource, signed_qty: int) -> list[tuple[StockSource, int]]:
    """
    Bucket moves for one approved inventory line.

    `signed_qty` already carries the type's sign. A damage write-off takes sellable units
    out of `current_stock` and parks them in `damaged_stock`; returns and purchases land
    in the bucket named by the line's source.
    """
    if transaction_type == TransactionType.DAMAGE:
        return [(StockSource.FRESH, signed_qty), (StockSource.DAMAGED, -signed_qty)]
    if transaction_type in (TransactionType.PURCHASE, TransactionType.PURCHASE_RETURN):
        return [(source_type, signed_qty)]
    return [(StockSource.FRESH, signed_qty)]


def reversal_effects(transaction_type: TransactionType, source_type: StockSource, signed_qty: int) -> list[tuple[StockSource, int]]:
    return [(source, -qty) for source, qty in reversed(stock_effects(transaction_type, source_type, signed_qty))]


class StockLedgerPort(Protocol):
    """
    The one way on-hand stock changes.

    Implementations apply `signed_qty` atomically (no read-then-write) inside the caller's
    transaction to the bucket named by `source_type`, and refuse any delta that would take
    that bucket below zero.
    """

    async def apply_delta(
        self,
        session: AsyncSession,
        variant_id: uuid.UUID,
        signed_qty: int,
        *,
        reason: str,
        reference_type: str | None = None,
        reference_id: uuid.UUID | None = None,
        source_type: StockSource = StockSource.FRESH,
    ) -> StockDelta: ...


class SqlStockLedger:
    async def apply_delta(
        self,
        session: AsyncSession,
        variant_id: uuid.UUID,
        signed_qty: int,
        *,
        reason: str,
        reference_type: str | None = None,
        reference_id: uuid.UUID | None = None,
        source_type: StockSource = StockSource.FRESH,
    ) -> StockDelta:
        source_type = StockSource(source_type)
        column = _BUCKETS[source_type]
        if signed_qty == 0:
            current = await session.scalar(select(column).where(ProductVariant.id == variant_id))
            if current is None:
                raise InvalidReference(f"Unknown product variant: {variant_id}", variant_id=variant_id)
            return StockDelta(variant_id=variant_id, delta=0, stock_before=current, stock_after=current, source_type=source_type)

        result = await session.execute(
            update(ProductVariant)
            .where(
                ProductVariant.id == variant_id,
                column + signed_qty >= 0,
            )
            .values({column.key: column + signed_qty})
            .returning(column)
            .execution_options(synchronize_session="fetch")
        )
        row = result.first()
        if row is None:
            available = await session.scalar(select(column).where(ProductVariant.id == variant_id))
            if available is None:
                raise InvalidReference(f"Unknown product variant: {variant_id}", variant_id=variant_id)
            raise InsufficientStock(
                f"Insufficient {source_type.value} stock for variant {variant_id}: available={available} change={signed_qty}",
                variant_id=variant_id,
                available=available,
                requested=signed_qty,
                source_type=source_type.value,
            )

        stock_after = int(row[0])
        delta = StockDelta(
            variant_id=variant_id,
            delta=signed_qty,
            stock_before=stock_after - signed_qty,
            stock_after=stock_after,
            source_type=source_type,
        )
        session.add(
            StockMovement(
                variant_id=variant_id,
                source_type=source_type,
                delta=signed_qty,
                stock_before=delta.stock_before,
                stock_after=delta.stock_after,
                reason=reason,
                reference_type=reference_type,
                reference_id=reference_id,
            )
        )
        logger.debug(
            "Stock delta applied",
            extra={
                "variant_id": str(variant_id),
                "source_type": source_type.value,
                "delta": signed_qty,
                "stock_after": stock_after,
                "reason": reason,
            },
        )
        return delta
