from __future__ import annotations

from collections.abc import Sequence
from typing import cast

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession as SAAsyncSession
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from drive_backend.models import Share


def _col(attr: object) -> ColumnElement[object]:
    return cast(ColumnElement[object], cast(object, attr))


async def list_for_node(session: AsyncSession, *, node_id: str) -> list[Share]:
    stmt = (
        select(Share)
        .where(Share.node_id == node_id)
        .order_by(_col(Share.created_at).asc())
    )
    return list((await session.exec(stmt)).all())


async def get_link_share(session: AsyncSession, *, node_id: str) -> Share | None:
    stmt = (
        select(Share)
        .where(Share.node_id == node_id)
        .where(_col(Share.token).is_not(None))
        .order_by(_col(Share.created_at).asc())
    )
    return (await session.exec(stmt)).first()


async def get_by_token(session: AsyncSession, *, token: str) -> Share | None:
    stmt = select(Share).where(Share.token == token)
    return (await session.exec(stmt)).first()


async def get_named_grant(
    session: AsyncSession,
    *,
    node_id: str,
    share_id: str,
) -> Share | None:
    stmt = (
        select(Share)
        .where(Share.node_id == node_id)
        .where(Share.id == share_id)
        .where(_col(Share.token).is_(None))
    )
    return (await session.exec(stmt)).first()


async def find_named_grant(
    session: AsyncSession,
    *,
    node_id: str,
    user_id: int | None,
    email: str | None,
) -> Share | None:
    """Existing restricted grant for a user id, else for a raw email."""
    stmt = (
        select(Share)
        .where(Share.node_id == node_id)
        .where(_col(Share.token).is_(None))
        .where(Share.access_level == "restricted")
    )
    if user_id is not None:
        stmt = stmt.where(Share.shared_with_user_id == user_id)
    elif email:
        stmt = stmt.where(sa.func.lower(Share.shared_with_email) == email.lower())
    else:
        return None
    return (await session.exec(stmt)).first()


async def list_named_grants_for_principal(
    session: AsyncSession,
    *,
    user_id: int,
    email: str,
) -> list[Share]:
    stmt = (
        select(Share)
        .where(_col(Share.token).is_(None))
        .where(Share.access_level == "restricted")
        .where(
            sa.or_(
                _col(Share.shared_with_user_id) == user_id,
                sa.func.lower(Share.shared_with_email) == email.lower(),
            )
        )
    )
    return list((await session.exec(stmt)).all())


async def delete_for_nodes(session: AsyncSession, *, node_ids: Sequence[str]) -> int:
    if not node_ids:
        return 0
    stmt = sa.delete(Share).where(_col(Share.node_id).in_(list(node_ids)))
    result = await cast(SAAsyncSession, session).execute(stmt)
    return int(getattr(result, "rowcount", 0) or 0)
