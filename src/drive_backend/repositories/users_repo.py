from __future__ import annotations

from collections.abc import Sequence
from typing import cast

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from drive_backend.models import User


async def get_by_id(session: AsyncSession, *, user_id: int) -> User | None:
    return (await session.exec(select(User).where(User.id == user_id))).first()


async def get_by_token(session: AsyncSession, *, token: str) -> User | None:
    return (await session.exec(select(User).where(User.api_token == token))).first()


async def get_by_email(session: AsyncSession, *, email: str) -> User | None:
    stmt = select(User).where(sa.func.lower(User.email) == email.strip().lower())
    return (await session.exec(stmt)).first()


async def get_many(session: AsyncSession, *, user_ids: Sequence[int]) -> dict[int, User]:
    if not user_ids:
        return {}
    stmt = select(User).where(
        cast(ColumnElement[object], cast(object, User.id)).in_(list(set(user_ids)))
    )
    rows = (await session.exec(stmt)).all()
    return {int(u.id): u for u in rows if u.id is not None}
