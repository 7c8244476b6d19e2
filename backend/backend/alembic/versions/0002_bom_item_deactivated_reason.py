"""bom_item.deactivated_reason

Revision ID: 0002_bom_item_deactivated_reason
Revises: 0001_inventory_engine
Create Date: 2026-10-19T15:00:00.000000Z
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002_bom_item_deactivated_reason"
down_revision = "0001_inventory_engine"
branch_labels = None
depends_on = None


def upgrade():
    op.add_column("bom_item", sa.Column("deactivated_reason", sa.String(length=64), nullable=True))
    op.create_index("ix_bom_item_inactive", "bom_item", ["is_active", "bom_id"])


def downgrade():
    op.drop_index("ix_bom_item_inactive", table_name="bom_item")
    op.drop_column("bom_item", "deactivated_reason")
