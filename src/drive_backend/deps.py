from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel.ext.asyncio.session import AsyncSession

from drive_backend.db import get_session
from drive_backend.domain.access import Principal
from drive_backend.models import User
from drive_backend.repositories import users_repo

_bearer = HTTPBearer(auto_error=False)


def _bearer_token(creds: HTTPAuthorizationCredentials | None) -> str | None:
    raw = creds.credentials if creds is not None else None
    if raw and raw.strip():
        return raw.strip()
    return None


def _principal_for(user: User) -> Principal:
    if user.id is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user missing id"
        )
    return Principal(user_id=int(user.id), email=user.email, name=user.name)


async def _resolve(
    request: Request, session: AsyncSession, token: str
) -> Principal:
    user = await users_repo.get_by_token(session, token=token)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="user disabled")
    principal = _principal_for(user)
    # Stash auth context for post-response middleware and error logs.
    request.state.auth_user_id = principal.user_id
    return principal


async def get_current_principal(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    # Use a dedicated session for auth so services can own tx boundaries
    # on a separate request-scoped session.
    session: AsyncSession = Depends(get_session, use_cache=False),
) -> Principal:
    token = _bearer_token(creds)
    if token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not authenticated")
    return await _resolve(request, session, token)


async def get_optional_principal(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    session: AsyncSession = Depends(get_session, use_cache=False),
) -> Principal | None:
    """Like get_current_principal, but anonymous callers get None.

    A token that is present but wrong is still rejected.
    """
    token = _bearer_token(creds)
    if token is None:
        return None
    return await _resolve(request, session, token)
