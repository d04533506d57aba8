from stockline.models.audit_log import AuditLog
from stockline.models.idempotency_key import IdempotencyKey
from stockline.models.inventory_transaction import InventoryTransaction, InventoryTransactionItem
from stockline.models.invoice_counter import InvoiceCounter
from stockline.models.order import Order, OrderItem
from stockline.models.product_variant import ProductVariant, StockMovement
from stockline.models.vendor import Vendor, VendorLedgerEntry

__all__ = [
    "AuditLog",
    "IdempotencyKey",
    "InventoryTransaction",
    "InventoryTransactionItem",
    "InvoiceCounter",
    "Order",
    "OrderItem",
    "ProductVariant",
    "StockMovement",
    "Vendor",
    "VendorLedgerEntry",
]
