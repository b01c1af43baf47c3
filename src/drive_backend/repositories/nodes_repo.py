from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import cast

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession as SAAsyncSession
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from drive_backend.models import Node


def _col(attr: object) -> ColumnElement[object]:
    return cast(ColumnElement[object], cast(object, attr))


def _live() -> ColumnElement[bool]:
    return _col(Node.deleted_at).is_(None)


def _trashed() -> ColumnElement[bool]:
    return _col(Node.deleted_at).is_not(None)


def _parent_is(parent_id: str | None) -> ColumnElement[bool]:
    if parent_id is None:
        return _col(Node.parent_id).is_(None)
    return _col(Node.parent_id) == parent_id


def _folders_first_newest() -> list[ColumnElement[object]]:
    return [_col(Node.is_folder).desc(), _col(Node.created_at).desc()]


async def get_node(session: AsyncSession, *, node_id: str) -> Node | None:
    return (await session.exec(select(Node).where(Node.id == node_id))).first()


async def get_owned_node(
    session: AsyncSession,
    *,
    user_id: int,
    node_id: str,
    live: bool | None = True,
) -> Node | None:
    """Owner-scoped lookup; `live=None` ignores trash state."""
    stmt = select(Node).where(Node.user_id == user_id).where(Node.id == node_id)
    if live is True:
        stmt = stmt.where(_live())
    elif live is False:
        stmt = stmt.where(_trashed())
    return (await session.exec(stmt)).first()


async def get_live_folder(session: AsyncSession, *, user_id: int, folder_id: str) -> Node | None:
    stmt = (
        select(Node)
        .where(Node.user_id == user_id)
        .where(Node.id == folder_id)
        .where(_col(Node.is_folder).is_(True))
        .where(_live())
    )
    return (await session.exec(stmt)).first()


async def find_live_sibling(
    session: AsyncSession,
    *,
    user_id: int,
    parent_id: str | None,
    is_folder: bool,
    name: str,
    exclude_id: str | None = None,
) -> Node | None:
    stmt = (
        select(Node)
        .where(Node.user_id == user_id)
        .where(_parent_is(parent_id))
        .where(Node.is_folder == is_folder)
        .where(Node.name == name)
        .where(_live())
    )
    if exclude_id is not None:
        stmt = stmt.where(_col(Node.id) != exclude_id)
    return (await session.exec(stmt)).first()


async def list_live_sibling_names(
    session: AsyncSession,
    *,
    user_id: int,
    parent_id: str | None,
    is_folder: bool,
) -> set[str]:
    stmt = (
        select(Node.name)
        .where(Node.user_id == user_id)
        .where(_parent_is(parent_id))
        .where(Node.is_folder == is_folder)
        .where(_live())
    )
    return set((await session.exec(stmt)).all())


async def list_children(
    session: AsyncSession,
    *,
    user_id: int,
    parent_ids: Sequence[str],
    live: bool | None = True,
    folders_only: bool = False,
) -> list[Node]:
    if not parent_ids:
        return []
    stmt = (
        select(Node)
        .where(Node.user_id == user_id)
        .where(_col(Node.parent_id).in_(list(parent_ids)))
    )
    if live is True:
        stmt = stmt.where(_live())
    elif live is False:
        stmt = stmt.where(_trashed())
    if folders_only:
        stmt = stmt.where(_col(Node.is_folder).is_(True))
    return list((await session.exec(stmt.order_by(_col(Node.created_at).asc()))).all())


async def claim_version(session: AsyncSession, *, node: Node) -> bool:
    """Compare-and-swap on `version`; False means another writer got there first."""
    stmt = (
        sa.update(Node)
        .where(_col(Node.id) == node.id)
        .where(_col(Node.version) == node.version)
        .values(version=node.version + 1)
        .execution_options(synchronize_session=False)
    )
    result = await cast(SAAsyncSession, session).execute(stmt)
    if int(getattr(result, "rowcount", 0) or 0) != 1:
        return False
    node.version += 1
    return True


async def delete_node_row(session: AsyncSession, *, node_id: str) -> None:
    stmt = sa.delete(Node).where(_col(Node.id) == node_id)
    await cast(SAAsyncSession, session).execute(stmt)


async def sum_live_file_bytes(session: AsyncSession, *, user_id: int) -> int:
    stmt = (
        select(sa.func.coalesce(sa.func.sum(Node.size_bytes), 0))
        .where(Node.user_id == user_id)
        .where(_col(Node.is_folder).is_(False))
        .where(_live())
    )
    return int((await session.exec(stmt)).one() or 0)


async def count_live_files(session: AsyncSession, *, user_id: int) -> int:
    stmt = (
        select(sa.func.count())
        .select_from(Node)
        .where(Node.user_id == user_id)
        .where(_col(Node.is_folder).is_(False))
        .where(_live())
    )
    return int((await session.exec(stmt)).one() or 0)


async def list_live_nodes(
    session: AsyncSession,
    *,
    user_id: int,
    parent_ids: Sequence[str | None] | None,
    is_folder: bool | None = None,
    updated_from: datetime | None = None,
    updated_to: datetime | None = None,
) -> list[Node]:
    """Live nodes of one owner, folders first then newest.

    `parent_ids=None` means anywhere in the owner's tree.
    """
    stmt = select(Node).where(Node.user_id == user_id).where(_live())
    if parent_ids is not None:
        ids = [p for p in parent_ids if p is not None]
        clauses: list[ColumnElement[bool]] = []
        if ids:
            clauses.append(_col(Node.parent_id).in_(ids))
        if any(p is None for p in parent_ids):
            clauses.append(_col(Node.parent_id).is_(None))
        if not clauses:
            return []
        stmt = stmt.where(sa.or_(*clauses))
    if is_folder is not None:
        stmt = stmt.where(Node.is_folder == is_folder)
    if updated_from is not None:
        stmt = stmt.where(_col(Node.updated_at) >= updated_from)
    if updated_to is not None:
        stmt = stmt.where(_col(Node.updated_at) <= updated_to)
    return list((await session.exec(stmt.order_by(*_folders_first_newest()))).all())


async def list_live_by_ids(session: AsyncSession, *, node_ids: Sequence[str]) -> list[Node]:
    if not node_ids:
        return []
    stmt = (
        select(Node)
        .where(_col(Node.id).in_(list(node_ids)))
        .where(_live())
        .order_by(*_folders_first_newest())
    )
    return list((await session.exec(stmt)).all())


async def search_by_name(
    session: AsyncSession,
    *,
    user_id: int,
    query: str,
    limit: int,
    include_deleted: bool,
) -> list[Node]:
    stmt = (
        select(Node)
        .where(Node.user_id == user_id)
        .where(sa.func.lower(Node.name).contains(query.lower(), autoescape=True))
    )
    if not include_deleted:
        stmt = stmt.where(_live())
    stmt = stmt.order_by(_col(Node.is_folder).desc(), _col(Node.updated_at).desc()).limit(limit)
    return list((await session.exec(stmt)).all())


async def list_starred(session: AsyncSession, *, user_id: int) -> list[Node]:
    stmt = (
        select(Node)
        .where(Node.user_id == user_id)
        .where(_col(Node.is_starred).is_(True))
        .where(_live())
        .order_by(_col(Node.is_folder).desc(), _col(Node.updated_at).desc())
    )
    return list((await session.exec(stmt)).all())


async def list_trash(session: AsyncSession, *, user_id: int) -> list[Node]:
    stmt = (
        select(Node)
        .where(Node.user_id == user_id)
        .where(_trashed())
        .order_by(_col(Node.is_folder).desc(), _col(Node.deleted_at).desc())
    )
    return list((await session.exec(stmt)).all())
