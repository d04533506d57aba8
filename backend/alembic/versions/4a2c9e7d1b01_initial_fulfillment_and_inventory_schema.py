"""initial fulfillment and inventory schema

Revision ID: 4a2c9e7d1b01
Revises:
Create Date: 2026-10-17

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "4a2c9e7d1b01"
down_revision = None
branch_labels = None
depends_on = None


_ENUM_TYPES: dict[str, tuple[str, ...]] = {
    "order_status": (
        "intake",
        "follow_up",
        "converted",
        "hold",
        "packed",
        "assigned",
        "out_for_delivery",
        "handover_to_courier",
        "in_transit",
        "store_sale",
        "delivered",
        "cancelled",
        "rejected",
        "return_initiated",
        "returned",
        "rto_initiated",
        "rto_verification_pending",
        "lost_in_transit",
    ),
    "fulfillment_type": ("inside_valley", "outside_valley", "store"),
    "location_type": ("INSIDE_VALLEY", "OUTSIDE_VALLEY", "POS"),
    "courier_partner": ("NCM", "GAAU_BESI"),
    "payment_status": ("pending", "partial", "paid", "refunded"),
    "inventory_transaction_type": ("purchase", "purchase_return", "damage", "adjustment"),
    "inventory_transaction_status": ("pending", "approved", "rejected", "voided"),
    "stock_source": ("fresh", "damaged"),
    "vendor_ledger_entry_type": ("purchase", "purchase_return", "payment", "void_reversal"),
    "idempotency_state": ("processing", "completed"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*_ENUM_TYPES[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    for name, labels in _ENUM_TYPES.items():
        quoted = ", ".join(f"'{label}'" for label in labels)
        op.execute(
            "DO $$ BEGIN "
            f"CREATE TYPE {name} AS ENUM ({quoted}); "
            "EXCEPTION WHEN duplicate_object THEN null; "
            "END $$;"
        )

    op.create_table(
        "product_variants",
        sa.Column("sku", sa.String(length=80), nullable=False),
        sa.Column("name", sa.String(length=300), nullable=False),
        sa.Column("current_stock", sa.Integer(), server_default="0", nullable=False),
        sa.Column("damaged_stock", sa.Integer(), server_default="0", nullable=False),
        sa.Column("cost_price_paisa", sa.Integer(), server_default="0", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("current_stock >= 0", name="ck_product_variants_current_stock_nonneg"),
        sa.CheckConstraint("damaged_stock >= 0", name="ck_product_variants_damaged_stock_nonneg"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
    )

    op.create_table(
        "stock_movements",
        sa.Column("variant_id", sa.UUID(), nullable=False),
        sa.Column("source_type", _enum("stock_source"), server_default="fresh", nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("stock_before", sa.Integer(), nullable=False),
        sa.Column("stock_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=100), nullable=False),
        sa.Column("reference_type", sa.String(length=100), nullable=True),
        sa.Column("reference_id", sa.UUID(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_stock_movements_variant_id"), "stock_movements", ["variant_id"], unique=False)
    op.create_index(op.f("ix_stock_movements_reference_id"), "stock_movements", ["reference_id"], unique=False)

    op.create_table(
        "vendors",
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("pan_number", sa.String(length=40), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("balance_paisa", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_purchases_paisa", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_returns_paisa", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_payments_paisa", sa.Integer(), server_default="0", nullable=False),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("total_purchases_paisa >= 0", name="ck_vendors_total_purchases_nonneg"),
        sa.CheckConstraint("total_returns_paisa >= 0", name="ck_vendors_total_returns_nonneg"),
        sa.CheckConstraint("total_payments_paisa >= 0", name="ck_vendors_total_payments_nonneg"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "vendor_ledger_entries",
        sa.Column("vendor_id", sa.UUID(), nullable=False),
        sa.Column("entry_type", _enum("vendor_ledger_entry_type"), nullable=False),
        sa.Column("debit_paisa", sa.Integer(), server_default="0", nullable=False),
        sa.Column("credit_paisa", sa.Integer(), server_default="0", nullable=False),
        sa.Column("running_balance_paisa", sa.Integer(), nullable=False),
        sa.Column("reference_id", sa.UUID(), nullable=False),
        sa.Column("reference_no", sa.String(length=64), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("performed_by", sa.String(length=200), nullable=False),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("debit_paisa >= 0 AND credit_paisa >= 0", name="ck_vendor_ledger_amounts_nonneg"),
        sa.ForeignKeyConstraint(["vendor_id"], ["vendors.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reference_id", "entry_type", name="uq_vendor_ledger_reference_entry_type"),
    )
    op.create_index(op.f("ix_vendor_ledger_entries_vendor_id"), "vendor_ledger_entries", ["vendor_id"], unique=False)
    op.create_index(
        op.f("ix_vendor_ledger_entries_reference_id"), "vendor_ledger_entries", ["reference_id"], unique=False
    )

    op.create_table(
        "inventory_transactions",
        sa.Column("invoice_no", sa.String(length=32), nullable=False),
        sa.Column("transaction_type", _enum("inventory_transaction_type"), nullable=False),
        sa.Column(
            "status",
            _enum("inventory_transaction_status"),
            server_default="pending",
            nullable=False,
        ),
        sa.Column("vendor_id", sa.UUID(), nullable=True),
        sa.Column("reference_transaction_id", sa.UUID(), nullable=True),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("total_cost_paisa", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_quantity", sa.Integer(), server_default="0", nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("performed_by", sa.String(length=200), nullable=False),
        sa.Column("approved_by", sa.String(length=200), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.String(length=200), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("voided_by", sa.String(length=200), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["vendor_id"], ["vendors.id"]),
        sa.ForeignKeyConstraint(["reference_transaction_id"], ["inventory_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_no"),
    )
    for column in ("transaction_type", "status", "vendor_id", "reference_transaction_id"):
        op.create_index(
            op.f(f"ix_inventory_transactions_{column}"), "inventory_transactions", [column], unique=False
        )

    op.create_table(
        "inventory_transaction_items",
        sa.Column("transaction_id", sa.UUID(), nullable=False),
        sa.Column("line_no", sa.Integer(), server_default="0", nullable=False),
        sa.Column("variant_id", sa.UUID(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_cost_paisa", sa.Integer(), server_default="0", nullable=False),
        sa.Column("source_type", _enum("stock_source"), server_default="fresh", nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(["transaction_id"], ["inventory_transactions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_inventory_transaction_items_transaction_id"),
        "inventory_transaction_items",
        ["transaction_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_inventory_transaction_items_variant_id"), "inventory_transaction_items", ["variant_id"], unique=False
    )

    op.create_table(
        "invoice_counters",
        sa.Column("transaction_type", _enum("inventory_transaction_type"), nullable=False),
        sa.Column("next_number", sa.Integer(), server_default="1", nullable=False),
        sa.PrimaryKeyConstraint("transaction_type"),
    )

    op.create_table(
        "orders",
        sa.Column("order_number", sa.String(length=64), nullable=False),
        sa.Column("customer_name", sa.String(length=200), nullable=False),
        sa.Column("customer_phone", sa.String(length=40), nullable=True),
        sa.Column("shipping_address", sa.Text(), nullable=True),
        sa.Column("status", _enum("order_status"), server_default="intake", nullable=False),
        sa.Column("fulfillment_type", _enum("fulfillment_type"), nullable=False),
        sa.Column("location", _enum("location_type"), nullable=True),
        sa.Column("payment_method", sa.String(length=40), nullable=True),
        sa.Column("payment_status", _enum("payment_status"), server_default="pending", nullable=False),
        sa.Column("total_amount_paisa", sa.Integer(), server_default="0", nullable=False),
        sa.Column("courier_partner", _enum("courier_partner"), nullable=True),
        sa.Column("courier_tracking_id", sa.String(length=120), nullable=True),
        sa.Column("courier_raw_status", sa.String(length=200), nullable=True),
        sa.Column("stock_deducted", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("stock_reversed", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("rto_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rto_verified_by", sa.String(length=200), nullable=True),
        sa.Column("rto_verification_notes", sa.Text(), nullable=True),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("disputed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("disputed_by", sa.String(length=200), nullable=True),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number"),
    )

    op.create_table(
        "order_items",
        sa.Column("order_id", sa.UUID(), nullable=False),
        sa.Column("variant_id", sa.UUID(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_paisa", sa.Integer(), server_default="0", nullable=False),
        sa.Column("id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_order_items_order_id"), "order_items", ["order_id"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("actor", sa.String(length=200), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.UUID(), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_audit_logs_entity_type"), "audit_logs", ["entity_type"], unique=False)
    op.create_index(op.f("ix_audit_logs_entity_id"), "audit_logs", ["entity_id"], unique=False)

    op.create_table(
        "idempotency_keys",
        sa.Column("fingerprint", sa.String(length=64), nullable=False),
        sa.Column("state", _enum("idempotency_state"), nullable=False),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("body", sa.JSON(), nullable=True),
        sa.Column("headers", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("fingerprint"),
    )
    op.create_index(op.f("ix_idempotency_keys_expires_at"), "idempotency_keys", ["expires_at"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_idempotency_keys_expires_at"), table_name="idempotency_keys")
    op.drop_table("idempotency_keys")
    op.drop_index(op.f("ix_audit_logs_entity_id"), table_name="audit_logs")
    op.drop_index(op.f("ix_audit_logs_entity_type"), table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index(op.f("ix_order_items_order_id"), table_name="order_items")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("invoice_counters")
    op.drop_index(op.f("ix_inventory_transaction_items_variant_id"), table_name="inventory_transaction_items")
    op.drop_index(op.f("ix_inventory_transaction_items_transaction_id"), table_name="inventory_transaction_items")
    op.drop_table("inventory_transaction_items")
    for column in ("reference_transaction_id", "vendor_id", "status", "transaction_type"):
        op.drop_index(op.f(f"ix_inventory_transactions_{column}"), table_name="inventory_transactions")
    op.drop_table("inventory_transactions")
    op.drop_index(op.f("ix_vendor_ledger_entries_reference_id"), table_name="vendor_ledger_entries")
    op.drop_index(op.f("ix_vendor_ledger_entries_vendor_id"), table_name="vendor_ledger_entries")
    op.drop_table("vendor_ledger_entries")
    op.drop_table("vendors")
    op.drop_index(op.f("ix_stock_movements_reference_id"), table_name="stock_movements")
    op.drop_index(op.f("ix_stock_movements_variant_id"), table_name="stock_movements")
    op.drop_table("stock_movements")
    op.drop_table("product_variants")

    for name in reversed(list(_ENUM_TYPES)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
