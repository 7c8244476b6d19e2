"""catalog, bill of materials, purchasing and event bus tables

Revision ID: 0001_inventory_engine
Revises:
Create Date: 2026-10-19T09:00:00.000000Z
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_inventory_engine"
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column("id", sa.String(length=36), primary_key=True)


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _tenant():
    return sa.Column("tenant_id", sa.String(length=64), nullable=False)


def upgrade():
    op.create_table(
        "catalog_supplier",
        _id(), _created_at(), _tenant(),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("lead_time_days", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_catalog_supplier_tenant_id", "catalog_supplier", ["tenant_id"])

    op.create_table(
        "catalog_product",
        _id(), _created_at(), _tenant(),
        sa.Column("external_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("sku", sa.String(length=128), nullable=True),
        sa.Column("product_type", sa.String(length=32), nullable=False, server_default="simple"),
        sa.Column("manage_stock", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("stock_quantity", sa.Integer(), nullable=True),
        sa.Column("stock_status", sa.String(length=16), nullable=True),
        sa.Column("cogs", sa.Numeric(18, 4), nullable=True),
        sa.Column("weight", sa.Numeric(10, 3), nullable=True),
        sa.Column("raw_data", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_catalog_product_tenant_id", "catalog_product", ["tenant_id"])
    op.create_index("ix_catalog_product_external_id", "catalog_product", ["external_id"])
    op.create_index("ix_catalog_product_sku", "catalog_product", ["sku"])
    op.create_index("ix_catalog_product_tenant_sku", "catalog_product", ["tenant_id", "sku"])

    op.create_table(
        "catalog_product_variation",
        _id(), _created_at(),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("catalog_product.id"), nullable=False),
        sa.Column("variation_id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=128), nullable=True),
        sa.Column("manage_stock", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("stock_quantity", sa.Integer(), nullable=True),
        sa.Column("stock_status", sa.String(length=16), nullable=True),
        sa.Column("cogs", sa.Numeric(18, 4), nullable=True),
        sa.Column("weight", sa.Numeric(10, 3), nullable=True),
        sa.Column("attributes", sa.JSON(), nullable=False),
        sa.UniqueConstraint("product_id", "variation_id", name="uq_variation_product_variation"),
    )
    op.create_index("ix_catalog_product_variation_product_id", "catalog_product_variation", ["product_id"])
    op.create_index("ix_catalog_product_variation_sku", "catalog_product_variation", ["sku"])

    op.create_table(
        "catalog_supplier_item",
        _id(), _created_at(),
        sa.Column("supplier_id", sa.String(length=36), sa.ForeignKey("catalog_supplier.id"), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("sku", sa.String(length=128), nullable=True),
        sa.Column("cost", sa.Numeric(18, 4), nullable=False, server_default="0"),
        sa.Column("quantity_available", sa.Integer(), nullable=True),
    )
    op.create_index("ix_catalog_supplier_item_supplier_id", "catalog_supplier_item", ["supplier_id"])

    op.create_table(
        "catalog_internal_product",
        _id(), _created_at(), _tenant(),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("sku", sa.String(length=128), nullable=True),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cogs", sa.Numeric(18, 4), nullable=True),
        sa.Column("supplier_id", sa.String(length=36), sa.ForeignKey("catalog_supplier.id"), nullable=True),
    )
    op.create_index("ix_catalog_internal_product_tenant_id", "catalog_internal_product", ["tenant_id"])

    op.create_table(
        "bom",
        _id(), _created_at(), _tenant(),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("catalog_product.id"), nullable=False),
        sa.Column("variation_id", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("product_id", "variation_id", name="uq_bom_product_variation"),
    )
    op.create_index("ix_bom_tenant_id", "bom", ["tenant_id"])
    op.create_index("ix_bom_product_id", "bom", ["product_id"])

    op.create_table(
        "bom_item",
        _id(), _created_at(),
        sa.Column("bom_id", sa.String(length=36), sa.ForeignKey("bom.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("supplier_item_id", sa.String(length=36), sa.ForeignKey("catalog_supplier_item.id"), nullable=True),
        sa.Column("child_product_id", sa.String(length=36), sa.ForeignKey("catalog_product.id"), nullable=True),
        sa.Column("child_variation_id", sa.Integer(), nullable=True),
        sa.Column("internal_product_id", sa.String(length=36), nullable=True),
        sa.Column("quantity", sa.Numeric(18, 6), nullable=False),
        sa.Column("waste_factor", sa.Numeric(10, 4), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_bom_item_bom_id", "bom_item", ["bom_id"])
    op.create_index("ix_bom_item_supplier_item_id", "bom_item", ["supplier_item_id"])
    op.create_index("ix_bom_item_child_product_id", "bom_item", ["child_product_id"])
    op.create_index("ix_bom_item_internal_product_id", "bom_item", ["internal_product_id"])
    op.create_index("ix_bom_item_bom_position", "bom_item", ["bom_id", "position"])

    op.create_table(
        "purchase_order",
        _id(), _created_at(), _tenant(),
        sa.Column("order_number", sa.String(length=64), nullable=True),
        sa.Column("supplier_id", sa.String(length=36), sa.ForeignKey("catalog_supplier.id"), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="DRAFT"),
        sa.Column("order_date", sa.Date(), nullable=True),
        sa.Column("expected_date", sa.Date(), nullable=True),
        sa.Column("tracking_number", sa.String(length=128), nullable=True),
        sa.Column("tracking_link", sa.String(length=512), nullable=True),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_purchase_order_tenant_id", "purchase_order", ["tenant_id"])
    op.create_index("ix_purchase_order_order_number", "purchase_order", ["order_number"])
    op.create_index("ix_purchase_order_supplier_id", "purchase_order", ["supplier_id"])
    op.create_index("ix_purchase_order_status", "purchase_order", ["status"])
    op.create_index("ix_po_tenant_status", "purchase_order", ["tenant_id", "status"])

    op.create_table(
        "purchase_order_item",
        _id(), _created_at(),
        sa.Column("purchase_order_id", sa.String(length=36), sa.ForeignKey("purchase_order.id"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("catalog_product.id"), nullable=True),
        sa.Column("supplier_item_id", sa.String(length=36), sa.ForeignKey("catalog_supplier_item.id"), nullable=True),
        sa.Column("variation_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("sku", sa.String(length=128), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_cost", sa.Numeric(18, 4), nullable=False, server_default="0"),
        sa.Column("total_cost", sa.Numeric(18, 2), nullable=False, server_default="0"),
    )
    op.create_index("ix_purchase_order_item_purchase_order_id", "purchase_order_item", ["purchase_order_id"])
    op.create_index("ix_purchase_order_item_product_id", "purchase_order_item", ["product_id"])

    op.create_table(
        "outbox_event",
        _id(), _created_at(), _tenant(),
        sa.Column("topic", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outbox_event_tenant_id", "outbox_event", ["tenant_id"])
    op.create_index("ix_outbox_event_topic", "outbox_event", ["topic"])
    op.create_index("ix_outbox_delivery", "outbox_event", ["delivered", "available_at"])

    op.create_table(
        "event_subscription",
        _id(), _created_at(),
        sa.Column("tenant_id", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("topic_pattern", sa.String(length=128), nullable=False),
        sa.Column("target_url", sa.Text(), nullable=False),
        sa.Column("headers", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_event_subscription_tenant_id", "event_subscription", ["tenant_id"])
    op.create_index("ix_event_subscription_topic_pattern", "event_subscription", ["topic_pattern"])
    op.create_index("ix_event_sub_active", "event_subscription", ["is_active", "topic_pattern"])


def downgrade():
    for table in (
        "event_subscription",
        "outbox_event",
        "purchase_order_item",
        "purchase_order",
        "bom_item",
        "bom",
        "catalog_internal_product",
        "catalog_supplier_item",
        "catalog_product_variation",
        "catalog_product",
        "catalog_supplier",
    ):
        op.drop_table(table)
