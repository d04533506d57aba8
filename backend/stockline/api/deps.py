from __future__ import annotations

from functools import lru_cache

from stockline.services.approvals import ApprovalWorkflowService
from stockline.services.inventory_transactions import InventoryTransactionService
from stockline.services.order_status import OrderStatusEngine
from stockline.services.stock_ledger import SqlStockLedger
from stockline.services.vendor_balance import VendorBalanceService


@lru_cache
def get_stock_ledger() -> SqlStockLedger:
    return SqlStockLedger()


@lru_cache
def get_vendor_balance_service() -> VendorBalanceService:
    return VendorBalanceService()


@lru_cache
def get_approval_service() -> ApprovalWorkflowService:
    return ApprovalWorkflowService(stock_ledger=get_stock_ledger(), vendor_balance=get_vendor_balance_service())


@lru_cache
def get_inventory_transaction_service() -> InventoryTransactionService:
    return InventoryTransactionService(
        approvals=get_approval_service(),
        stock_ledger=get_stock_ledger(),
        vendor_balance=get_vendor_balance_service(),
    )


@lru_cache
def get_order_status_engine() -> OrderStatusEngine:
    return OrderStatusEngine(stock_ledger=get_stock_ledger())
