"""init schema (users + nodes + shares)

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return table_name in insp.get_table_names()


def upgrade() -> None:
    if not _table_exists("users"):
        _ = op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("email", sa.String(length=320), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=True),
            sa.Column("api_token", sa.String(length=255), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)
        op.create_index("ix_users_api_token", "users", ["api_token"], unique=True)
        op.create_index("ix_users_is_active", "users", ["is_active"], unique=False)
        op.create_index("ix_users_created_at", "users", ["created_at"], unique=False)

    if not _table_exists("nodes"):
        _ = op.create_table(
            "nodes",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("parent_id", sa.String(length=36), sa.ForeignKey("nodes.id"), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("is_folder", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("content_key", sa.String(length=512), nullable=True),
            sa.Column("size_bytes", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
            sa.Column("mime_type", sa.String(length=255), nullable=True),
            sa.Column("is_starred", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
            sa.Column("trash_root_id", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("last_accessed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_nodes_user_id", "nodes", ["user_id"], unique=False)
        op.create_index("ix_nodes_parent_id", "nodes", ["parent_id"], unique=False)
        op.create_index("ix_nodes_is_folder", "nodes", ["is_folder"], unique=False)
        op.create_index("ix_nodes_is_starred", "nodes", ["is_starred"], unique=False)
        op.create_index("ix_nodes_trash_root_id", "nodes", ["trash_root_id"], unique=False)
        op.create_index("ix_nodes_created_at", "nodes", ["created_at"], unique=False)
        op.create_index("ix_nodes_updated_at", "nodes", ["updated_at"], unique=False)
        op.create_index("ix_nodes_deleted_at", "nodes", ["deleted_at"], unique=False)
        # Live siblings of one kind never share a name; trashed rows are exempt.
        op.create_index(
            "uq_nodes_live_sibling_name",
            "nodes",
            ["user_id", sa.text("coalesce(parent_id, '')"), "is_folder", "name"],
            unique=True,
            sqlite_where=sa.text("deleted_at IS NULL"),
            postgresql_where=sa.text("deleted_at IS NULL"),
        )

    if not _table_exists("shares"):
        _ = op.create_table(
            "shares",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("node_id", sa.String(length=36), sa.ForeignKey("nodes.id"), nullable=False),
            sa.Column("grantor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column(
                "access_level",
                sa.String(length=16),
                nullable=False,
                server_default=sa.text("'restricted'"),
            ),
            sa.Column(
                "permission", sa.String(length=16), nullable=False, server_default=sa.text("'viewer'")
            ),
            sa.Column("token", sa.String(length=128), nullable=True),
            sa.Column("shared_with_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("shared_with_email", sa.String(length=320), nullable=True),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_shares_node_id", "shares", ["node_id"], unique=False)
        op.create_index("ix_shares_grantor_id", "shares", ["grantor_id"], unique=False)
        op.create_index("ix_shares_token", "shares", ["token"], unique=True)
        op.create_index(
            "ix_shares_shared_with_user_id", "shares", ["shared_with_user_id"], unique=False
        )
        op.create_index("ix_shares_shared_with_email", "shares", ["shared_with_email"], unique=False)
        op.create_index("ix_shares_expires_at", "shares", ["expires_at"], unique=False)
        op.create_index("ix_shares_created_at", "shares", ["created_at"], unique=False)
        op.create_index("ix_shares_updated_at", "shares", ["updated_at"], unique=False)


def downgrade() -> None:
    op.drop_table("shares")
    op.drop_index("uq_nodes_live_sibling_name", table_name="nodes")
    op.drop_table("nodes")
    op.drop_table("users")
