"""one link-carrying share per node

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 12:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


_INDEX = "uq_shares_link_per_node"


def _index_exists(table_name: str, index_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return any(ix.get("name") == index_name for ix in insp.get_indexes(table_name))


def upgrade() -> None:
    if _index_exists("shares", _INDEX):
        return
    # Keep the oldest link share of each node.
    op.execute(
        sa.text(
            """
            DELETE FROM shares
            WHERE token IS NOT NULL
              AND EXISTS (
                SELECT 1 FROM shares AS older
                WHERE older.node_id = shares.node_id
                  AND older.token IS NOT NULL
                  AND (older.created_at < shares.created_at
                       OR (older.created_at = shares.created_at AND older.id < shares.id))
              )
            """
        )
    )
    op.create_index(
        _INDEX,
        "shares",
        ["node_id"],
        unique=True,
        sqlite_where=sa.text("token IS NOT NULL"),
        postgresql_where=sa.text("token IS NOT NULL"),
    )


def downgrade() -> None:
    op.drop_index(_INDEX, table_name="shares")
