# basedpyright: reportAssignmentType=false
# basedpyright: reportIncompatibleVariableOverride=false

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, Index, text
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def assume_utc(dt: datetime | None) -> datetime | None:
    # SQLite returns naive datetimes even for timezone-aware columns.
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class User(SQLModel, table=True):
    __tablename__ = "users"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: Optional[int] = Field(default=None, primary_key=True)
    # Stored lowercased; share grants match on it case-insensitively.
    email: str = Field(index=True, unique=True, min_length=3, max_length=320)
    name: Optional[str] = Field(default=None, max_length=200)
    # Bearer credential issued by the identity provider.
    api_token: Optional[str] = Field(default=None, index=True, unique=True, max_length=255)

    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utc_now, index=True)


class Node(SQLModel, table=True):
    """A file or folder in an owner's tree."""

    __tablename__ = "nodes"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        Index(
            "uq_nodes_live_sibling_name",
            "user_id",
            text("coalesce(parent_id, '')"),
            "is_folder",
            "name",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    id: str = Field(primary_key=True, min_length=1, max_length=36)
    user_id: int = Field(index=True, foreign_key="users.id")
    parent_id: Optional[str] = Field(default=None, index=True, foreign_key="nodes.id", max_length=36)

    name: str = Field(min_length=1, max_length=255)
    is_folder: bool = Field(default=False, index=True)

    content_key: Optional[str] = Field(default=None, max_length=512)
    size_bytes: int = Field(default=0, sa_type=BigInteger)
    mime_type: Optional[str] = Field(default=None, max_length=255)

    is_starred: bool = Field(default=False, index=True)

    # Incremented on every structural write; stale writers lose.
    version: int = Field(default=1)
    # Id of the node whose soft-delete trashed this row.
    trash_root_id: Optional[str] = Field(default=None, index=True, max_length=36)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, index=True)
    last_accessed_at: Optional[datetime] = Field(default=None)
    deleted_at: Optional[datetime] = Field(default=None, index=True)


class Share(SQLModel, table=True):
    """Capability grant on one node.

    The link-carrying row holds `token`; named grants target a user or an email.
    """

    __tablename__ = "shares"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        Index(
            "uq_shares_link_per_node",
            "node_id",
            unique=True,
            sqlite_where=text("token IS NOT NULL"),
            postgresql_where=text("token IS NOT NULL"),
        ),
    )

    id: str = Field(primary_key=True, min_length=1, max_length=36)
    node_id: str = Field(index=True, foreign_key="nodes.id", max_length=36)
    grantor_id: int = Field(index=True, foreign_key="users.id")

    access_level: str = Field(default="restricted", max_length=16)
    permission: str = Field(default="viewer", max_length=16)
    token: Optional[str] = Field(default=None, index=True, unique=True, max_length=128)

    shared_with_user_id: Optional[int] = Field(default=None, index=True, foreign_key="users.id")
    shared_with_email: Optional[str] = Field(default=None, index=True, max_length=320)

    expires_at: Optional[datetime] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, index=True)
