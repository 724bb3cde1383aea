"""store nodes

Revision ID: 0001_store_nodes
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa


revision = "0001_store_nodes"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # One row per leaf of the hierarchical store, keyed by its slash path
    op.create_table(
        "store_nodes",
        sa.Column("path", sa.String(length=768), primary_key=True),
        sa.Column("value", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    # prefix scans: WHERE path LIKE 'users/%'
    op.create_index(
        "ix_store_nodes_path_pattern",
        "store_nodes",
        ["path"],
        postgresql_ops={"path": "varchar_pattern_ops"},
    )


def downgrade() -> None:
    op.drop_index("ix_store_nodes_path_pattern", table_name="store_nodes")
    op.drop_table("store_nodes")
