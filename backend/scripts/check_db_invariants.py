from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Script entrypoint: ensure `backend/` is importable.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from stockline.core.enums import (  # noqa: E402
    CourierPartner,
    FulfillmentType,
    IdempotencyState,
    LocationType,
    OrderStatus,
    PaymentStatus,
    StockSource,
    TransactionStatus,
    TransactionType,
    VendorLedgerEntryType,
)
from stockline.core.statuses import undefined_group_members  # noqa: E402
from stockline.services.money import format_npr  # noqa: E402
from stockline.services.vendor_balance import VendorBalanceService  # noqa: E402


EXPECTED_ENUMS: dict[str, list[str]] = {
    "order_status": [e.value for e in OrderStatus],
    "fulfillment_type": [e.value for e in FulfillmentType],
    "location_type": [e.value for e in LocationType],
    "courier_partner": [e.value for e in CourierPartner],
    "payment_status": [e.value for e in PaymentStatus],
    "inventory_transaction_type": [e.value for e in TransactionType],
    "inventory_transaction_status": [e.value for e in TransactionStatus],
    "stock_source": [e.value for e in StockSource],
    "vendor_ledger_entry_type": [e.value for e in VendorLedgerEntryType],
    "idempotency_state": [e.value for e in IdempotencyState],
}


async def _check_enums(session: AsyncSession) -> bool:
    ok = True
    for type_name, expected in EXPECTED_ENUMS.items():
        rows = (
            await session.execute(
                text(
                    """
                    SELECT e.enumlabel
                    FROM pg_enum e
                    JOIN pg_type t ON t.oid = e.enumtypid
                    JOIN pg_namespace n ON n.oid = t.typnamespace
                    WHERE n.nspname = 'public' AND t.typname = :type_name
                    ORDER BY e.enumsortorder
                    """
                ),
                {"type_name": type_name},
            )
        ).all()
        actual = [r[0] for r in rows]

        missing = [v for v in expected if v not in actual]
        if missing:
            print(f"Enum type '{type_name}' is missing values: {missing}", file=sys.stderr)
            print(f"Expected: {expected}", file=sys.stderr)
            print(f"Actual:   {actual}", file=sys.stderr)
            ok = False
    return ok


def _check_status_registry() -> bool:
    missing = undefined_group_members()
    if missing:
        print(f"Status groups reference undefined statuses: {missing}", file=sys.stderr)
    return not missing


async def _check_ledger_gaps(session: AsyncSession) -> bool:
    gaps = await VendorBalanceService().find_ledger_gaps(session)
    for tx in gaps:
        print(
            f"Approved {tx.transaction_type.value} {tx.invoice_no} ({format_npr(tx.total_cost_paisa)}) "
            f"moved vendor {tx.vendor_id} balance but has no ledger entry",
            file=sys.stderr,
        )
    return not gaps


async def _main() -> int:
    url = os.environ.get("DATABASE_URL")
    if not url:
        print("DATABASE_URL is required.", file=sys.stderr)
        return 2

    engine = create_async_engine(url, pool_pre_ping=True)
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    try:
        async with session_factory() as session:
            enums_ok = await _check_enums(session)
            ledger_ok = await _check_ledger_gaps(session)
    finally:
        await engine.dispose()

    if not (enums_ok and _check_status_registry()):
        return 1
    if not ledger_ok:
        print("Vendor ledger needs reconciliation (see GET /api/v1/vendors/ledger-gaps).", file=sys.stderr)
        return 3

    print("DB invariants ok (enums contain expected values, vendor ledger complete).")
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_main()))
