"""single items table

Revision ID: 202610170900
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610170900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "items",
        sa.Column("pk", sa.String(length=512), primary_key=True),
        sa.Column("sk", sa.String(length=512), primary_key=True),
        sa.Column("gsi1pk", sa.String(length=512)),
        sa.Column("gsi1sk", sa.String(length=512)),
        sa.Column("attributes", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_items_gsi1", "items", ["gsi1pk", "gsi1sk"])


def downgrade():
    op.drop_index("ix_items_gsi1", table_name="items")
    op.drop_table("items")
