from __future__ import annotations

import hmac
import logging
import re
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Literal

from sqlalchemy.exc import IntegrityError
from sqlmodel.ext.asyncio.session import AsyncSession

from drive_backend.config import settings
from drive_backend.domain.access import (
    ACCESS_LEVELS,
    DEFAULT_ACCESS_LEVEL,
    DEFAULT_PERMISSION,
    NO_ACCESS,
    PERMISSIONS,
    AccessDecision,
    GrantView,
    Principal,
    resolve_access as resolve_access_pure,
)
from drive_backend.errors import (
    ForbiddenError,
    InvalidOperationError,
    NotFoundError,
    ShareExpiredError,
)
from drive_backend.models import Node, Share, User, assume_utc, utc_now
from drive_backend.repositories import nodes_repo, shares_repo, users_repo
from drive_backend.services.unit_of_work import run_unit_of_work


logger = logging.getLogger(__name__)

PUBLIC_DENIED_MESSAGE = (
    "Sorry, unable to open the file at present. Please check the address and try again."
)

_TOKEN_BYTES = 32
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class PersonEntry:
    role: Literal["owner", "grantee"]
    share_id: str | None
    user_id: int | None
    email: str | None
    name: str | None
    permission: str


@dataclass(frozen=True)
class ShareInfo:
    node_id: str
    access_level: str
    permission: str
    share_url: str
    people: list[PersonEntry] = field(default_factory=list)


@dataclass(frozen=True)
class GrantResult:
    email: str
    status: Literal["added", "updated", "invalid", "skipped", "failed"]
    share_id: str | None = None
    message: str | None = None


def generate_share_token() -> str:
    return secrets.token_hex(_TOKEN_BYTES)


def build_share_url(*, token: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/shared/{token}"


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def _validate_access_level(value: str) -> str:
    if value not in ACCESS_LEVELS:
        raise InvalidOperationError(
            "Invalid access level", details={"allowed": list(ACCESS_LEVELS)}
        )
    return value


def _validate_permission(value: str) -> str:
    if value not in PERMISSIONS:
        raise InvalidOperationError("Invalid permission", details={"allowed": list(PERMISSIONS)})
    return value


def _grant_view(share: Share) -> GrantView:
    return GrantView(
        access_level=share.access_level,
        permission=share.permission,
        token=share.token,
        shared_with_user_id=share.shared_with_user_id,
        shared_with_email=share.shared_with_email,
        expires_at=assume_utc(share.expires_at),
    )


def _share_expired(share: Share) -> bool:
    expires_at = assume_utc(share.expires_at)
    return expires_at is not None and expires_at <= utc_now()


async def _get_owned_live_node(
    session: AsyncSession, *, principal: Principal, node_id: str
) -> Node:
    node = await nodes_repo.get_owned_node(
        session, user_id=principal.user_id, node_id=node_id, live=True
    )
    if node is None:
        raise NotFoundError("File not found")
    return node


async def resolve_access(
    session: AsyncSession, *, node: Node, principal: Principal | None
) -> AccessDecision:
    """What `principal` (None = anonymous) may do on `node`."""
    if principal is not None and principal.user_id == node.user_id:
        return resolve_access_pure(
            owner_id=node.user_id,
            node_live=node.deleted_at is None,
            grants=[],
            principal=principal,
            now=utc_now(),
        )
    if node.deleted_at is not None:
        return NO_ACCESS
    shares = await shares_repo.list_for_node(session, node_id=node.id)
    return resolve_access_pure(
        owner_id=node.user_id,
        node_live=True,
        grants=[_grant_view(s) for s in shares],
        principal=principal,
        now=utc_now(),
    )


async def get_accessible_node(
    session: AsyncSession,
    *,
    principal: Principal,
    node_id: str,
) -> tuple[Node, AccessDecision]:
    """Live node the principal owns or was granted; NotFound otherwise.

    Denied and missing look the same so private ids stay hidden.
    """
    node = await nodes_repo.get_node(session, node_id=node_id)
    if node is None or node.deleted_at is not None:
        raise NotFoundError("File not found")
    decision = await resolve_access(session, node=node, principal=principal)
    if not decision.allows("viewer"):
        raise NotFoundError("File not found")
    return node, decision


async def ensure_link_share(
    session: AsyncSession,
    *,
    node: Node,
    grantor_id: int,
    access_level: str | None = None,
    permission: str | None = None,
) -> Share:
    """Find or create the node's single link-carrying share.

    The token is minted once and never rotated by setting changes, so links
    already handed out keep working. A concurrent request that minted first
    wins (unique index on the node's link share); this call then updates
    that row. Caller owns the transaction.
    """
    share = await shares_repo.get_link_share(session, node_id=node.id)
    now = utc_now()
    if share is None:
        created = Share(
            id=str(uuid.uuid4()),
            node_id=node.id,
            grantor_id=grantor_id,
            access_level=access_level or DEFAULT_ACCESS_LEVEL,
            permission=permission or DEFAULT_PERMISSION,
            token=generate_share_token(),
            created_at=now,
            updated_at=now,
        )
        try:
            async with session.begin_nested():
                session.add(created)
        except IntegrityError:
            logger.info("link share already minted node_id=%s", node.id)
            share = await shares_repo.get_link_share(session, node_id=node.id)
            if share is None:
                raise
        else:
            logger.info("link share created node_id=%s share_id=%s", node.id, created.id)
            return created

    changed = False
    if access_level is not None and share.access_level != access_level:
        share.access_level = access_level
        changed = True
    if permission is not None and share.permission != permission:
        share.permission = permission
        changed = True
    if changed:
        share.updated_at = now
        session.add(share)
    return share


async def _people(session: AsyncSession, *, node: Node) -> list[PersonEntry]:
    shares = await shares_repo.list_for_node(session, node_id=node.id)
    named = [s for s in shares if s.token is None]
    user_ids = [node.user_id] + [
        s.shared_with_user_id for s in named if s.shared_with_user_id is not None
    ]
    users = await users_repo.get_many(session, user_ids=user_ids)

    owner = users.get(node.user_id)
    people = [
        PersonEntry(
            role="owner",
            share_id=None,
            user_id=node.user_id,
            email=owner.email if owner else None,
            name=owner.name if owner else None,
            permission="owner",
        )
    ]
    for s in named:
        user: User | None = (
            users.get(s.shared_with_user_id) if s.shared_with_user_id is not None else None
        )
        people.append(
            PersonEntry(
                role="grantee",
                share_id=s.id,
                user_id=s.shared_with_user_id,
                email=user.email if user else s.shared_with_email,
                name=user.name if user else None,
                permission=s.permission,
            )
        )
    return people


async def get_share_info(
    *, session: AsyncSession, principal: Principal, node_id: str
) -> ShareInfo:
    async def _apply() -> tuple[Node, Share]:
        node = await _get_owned_live_node(session, principal=principal, node_id=node_id)
        share = await ensure_link_share(session, node=node, grantor_id=principal.user_id)
        return node, share

    node, share = await run_unit_of_work(session, _apply)
    if share.token is None:
        raise NotFoundError("Share link not found")
    return ShareInfo(
        node_id=node.id,
        access_level=share.access_level,
        permission=share.permission,
        share_url=build_share_url(token=share.token),
        people=await _people(session, node=node),
    )


async def update_share_settings(
    *,
    session: AsyncSession,
    principal: Principal,
    node_id: str,
    access_level: str | None,
    permission: str | None,
) -> Share:
    if access_level is not None:
        _validate_access_level(access_level)
    if permission is not None:
        _validate_permission(permission)

    async def _apply() -> Share:
        node = await _get_owned_live_node(session, principal=principal, node_id=node_id)
        return await ensure_link_share(
            session,
            node=node,
            grantor_id=principal.user_id,
            access_level=access_level,
            permission=permission,
        )

    share = await run_unit_of_work(session, _apply)
    logger.info(
        "share settings node_id=%s access_level=%s permission=%s",
        node_id,
        share.access_level,
        share.permission,
    )
    return share


async def get_copy_link(*, session: AsyncSession, principal: Principal, node_id: str) -> str:
    await _get_owned_live_node(session, principal=principal, node_id=node_id)
    share = await shares_repo.get_link_share(session, node_id=node_id)
    if share is None or share.token is None:
        raise NotFoundError("Share link not found. Please share the file first.")
    return build_share_url(token=share.token)


async def add_named_grants(
    *,
    session: AsyncSession,
    principal: Principal,
    node_id: str,
    emails: list[str],
    permission: str,
) -> list[GrantResult]:
    """Grant each address `permission`; every address succeeds or fails alone.

    Each address runs in its own savepoint, so one bad row doesn't undo the
    others. The node's link share is created as a side effect.
    """
    _validate_permission(permission)

    async def _grant_one(node: Node, raw_email: str) -> GrantResult:
        email = normalize_email(raw_email)
        if not _EMAIL_RE.match(email):
            return GrantResult(email=raw_email, status="invalid", message="Invalid email address")
        if email == normalize_email(principal.email):
            return GrantResult(email=raw_email, status="skipped", message="You own this file")

        user = await users_repo.get_by_email(session, email=email)
        target_user_id = int(user.id) if user is not None and user.id is not None else None

        existing = await shares_repo.find_named_grant(
            session, node_id=node.id, user_id=target_user_id, email=email
        )
        if existing is None and target_user_id is not None:
            # A grant made before the address had an account.
            existing = await shares_repo.find_named_grant(
                session, node_id=node.id, user_id=None, email=email
            )

        now = utc_now()
        if existing is not None:
            existing.permission = permission
            existing.shared_with_user_id = target_user_id
            existing.shared_with_email = None if target_user_id is not None else email
            existing.updated_at = now
            session.add(existing)
            return GrantResult(email=raw_email, status="updated", share_id=existing.id)

        share = Share(
            id=str(uuid.uuid4()),
            node_id=node.id,
            grantor_id=principal.user_id,
            access_level="restricted",
            permission=permission,
            token=None,
            shared_with_user_id=target_user_id,
            shared_with_email=None if target_user_id is not None else email,
            created_at=now,
            updated_at=now,
        )
        session.add(share)
        return GrantResult(email=raw_email, status="added", share_id=share.id)

    async def _apply() -> list[GrantResult]:
        node = await _get_owned_live_node(session, principal=principal, node_id=node_id)
        await ensure_link_share(session, node=node, grantor_id=principal.user_id)

        results: list[GrantResult] = []
        for raw in emails:
            if not isinstance(raw, str) or not raw.strip():
                continue
            try:
                async with session.begin_nested():
                    results.append(await _grant_one(node, raw))
            except Exception as exc:
                logger.warning("share grant failed node_id=%s email=%s", node_id, raw, exc_info=True)
                results.append(
                    GrantResult(email=raw, status="failed", message=type(exc).__name__)
                )
        return results

    results = await run_unit_of_work(session, _apply)
    logger.info(
        "named grants node_id=%s added=%s updated=%s",
        node_id,
        sum(1 for r in results if r.status == "added"),
        sum(1 for r in results if r.status == "updated"),
    )
    return results


async def update_named_grant(
    *,
    session: AsyncSession,
    principal: Principal,
    node_id: str,
    share_id: str,
    permission: str,
) -> Share:
    _validate_permission(permission)

    async def _apply() -> Share:
        await _get_owned_live_node(session, principal=principal, node_id=node_id)
        share = await shares_repo.get_named_grant(session, node_id=node_id, share_id=share_id)
        if share is None:
            raise NotFoundError("Share not found")
        share.permission = permission
        share.updated_at = utc_now()
        session.add(share)
        return share

    return await run_unit_of_work(session, _apply)


async def remove_named_grant(
    *,
    session: AsyncSession,
    principal: Principal,
    node_id: str,
    share_id: str,
) -> None:
    async def _apply() -> None:
        await _get_owned_live_node(session, principal=principal, node_id=node_id)
        share = await shares_repo.get_named_grant(session, node_id=node_id, share_id=share_id)
        if share is None:
            raise NotFoundError("Share not found")
        await session.delete(share)

    await run_unit_of_work(session, _apply)
    logger.info("named grant removed node_id=%s share_id=%s", node_id, share_id)


@dataclass(frozen=True)
class PublicShareView:
    share: Share
    node: Node
    owner: User | None
    decision: AccessDecision


async def resolve_public_share(
    *,
    session: AsyncSession,
    token: str,
    principal: Principal | None,
) -> PublicShareView:
    """Resolve a link token for the public surface.

    Expired links are 410; every other failure (unknown token, trashed node,
    no access) carries the same generic message.
    """
    raw = (token or "").strip()
    share = await shares_repo.get_by_token(session, token=raw) if raw else None
    if share is None or share.token is None or not hmac.compare_digest(share.token, raw):
        raise NotFoundError(PUBLIC_DENIED_MESSAGE)

    if _share_expired(share):
        raise ShareExpiredError("This link has expired")

    node = await nodes_repo.get_node(session, node_id=share.node_id)
    if node is None or node.deleted_at is not None:
        raise NotFoundError(PUBLIC_DENIED_MESSAGE)

    decision = await resolve_access(session, node=node, principal=principal)
    if not decision.allows("viewer"):
        raise ForbiddenError(PUBLIC_DENIED_MESSAGE)

    owner = await users_repo.get_by_id(session, user_id=node.user_id)
    return PublicShareView(share=share, node=node, owner=owner, decision=decision)


async def list_shared_with_me(*, session: AsyncSession, principal: Principal) -> list[Node]:
    grants = await shares_repo.list_named_grants_for_principal(
        session, user_id=principal.user_id, email=principal.email
    )
    node_ids = sorted({g.node_id for g in grants if not _share_expired(g)})
    nodes = await nodes_repo.list_live_by_ids(session, node_ids=node_ids)
    return [n for n in nodes if n.user_id != principal.user_id]
