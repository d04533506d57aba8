from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stockline.core.enums import TransactionType
from stockline.models.invoice_counter import InvoiceCounter


def invoice_prefix(transaction_type: TransactionType) -> str:
    match transaction_type:
        case TransactionType.PURCHASE:
            return "PUR"
        case TransactionType.PURCHASE_RETURN:
            return "RET"
        case TransactionType.DAMAGE:
            return "DMG"
        case TransactionType.ADJUSTMENT:
            return "ADJ"
    return "TXN"


async def next_invoice_number(session: AsyncSession, *, transaction_type: TransactionType) -> str:
    result = await session.execute(
        select(InvoiceCounter).where(InvoiceCounter.transaction_type == transaction_type).with_for_update()
    )
    counter = result.scalar_one_or_none()
    if counter is None:
        counter = InvoiceCounter(transaction_type=transaction_type, next_number=1)
        session.add(counter)
        await session.flush()

    number = counter.next_number
    counter.next_number = counter.next_number + 1
    await session.flush()

    return f"{invoice_prefix(transaction_type)}-{number:06d}"
