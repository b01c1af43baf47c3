from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError
from sqlmodel.ext.asyncio.session import AsyncSession

from drive_backend.errors import NameConflictError


T = TypeVar("T")


async def _rollback_quietly(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except Exception:
        pass


async def run_unit_of_work(
    session: AsyncSession,
    apply: Callable[[], Awaitable[T]],
    *,
    conflict_message: str = "A file with this name already exists",
) -> T:
    """Run `apply` in one transaction and commit it.

    Dependencies (auth) may already have opened an implicit transaction on the
    request-scoped session; in that case `session.begin()` would raise, so we
    commit explicitly instead. An IntegrityError escaping `apply` can only come
    from the live sibling-name index and surfaces as NameConflictError.
    """
    try:
        if session.in_transaction():
            out = await apply()
            await session.commit()
            return out
        async with session.begin():
            return await apply()
    except IntegrityError as exc:
        await _rollback_quietly(session)
        raise NameConflictError(conflict_message) from exc
    except Exception:
        await _rollback_quietly(session)
        raise
