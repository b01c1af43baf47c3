from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, cast


AccessLevel = Literal["restricted", "anyone"]
Permission = Literal["viewer", "commenter", "editor"]

ACCESS_LEVELS: tuple[AccessLevel, ...] = ("restricted", "anyone")
PERMISSIONS: tuple[Permission, ...] = ("viewer", "commenter", "editor")

DEFAULT_ACCESS_LEVEL: AccessLevel = "restricted"
DEFAULT_PERMISSION: Permission = "viewer"

_RANK: dict[str, int] = {p: i for i, p in enumerate(PERMISSIONS)}


def permission_rank(permission: str) -> int:
    return _RANK.get(permission, -1)


def permission_at_least(permission: str, floor: Permission) -> bool:
    return permission_rank(permission) >= _RANK[floor]


@dataclass(frozen=True)
class Principal:
    """Acting identity resolved by the auth layer; None means anonymous."""

    user_id: int
    email: str
    name: str | None = None


@dataclass(frozen=True)
class GrantView:
    """The fields of a Share row that access resolution looks at."""

    access_level: str
    permission: str
    token: str | None
    shared_with_user_id: int | None
    shared_with_email: str | None
    expires_at: datetime | None


@dataclass(frozen=True)
class AccessDecision:
    kind: Literal["none", "owner", "shared"]
    permission: Permission | None = None

    @property
    def allowed(self) -> bool:
        return self.kind != "none"

    def allows(self, floor: Permission) -> bool:
        if self.kind == "owner":
            return True
        if self.kind == "shared" and self.permission is not None:
            return permission_at_least(self.permission, floor)
        return False


NO_ACCESS = AccessDecision(kind="none")
OWNER = AccessDecision(kind="owner", permission="editor")


def _is_expired(grant: GrantView, now: datetime) -> bool:
    return grant.expires_at is not None and grant.expires_at <= now


def _matches_principal(grant: GrantView, principal: Principal) -> bool:
    if grant.shared_with_user_id is not None:
        return grant.shared_with_user_id == principal.user_id
    if grant.shared_with_email:
        return grant.shared_with_email.strip().lower() == principal.email.strip().lower()
    return False


def resolve_access(
    *,
    owner_id: int,
    node_live: bool,
    grants: list[GrantView],
    principal: Principal | None,
    now: datetime,
) -> AccessDecision:
    """Decide what `principal` may do on a node.

    Pure: no DB, no clock. Expired grants count as absent; a trashed node is
    invisible to everyone but its owner. When several grants apply, the
    strongest permission wins.
    """

    if principal is not None and principal.user_id == owner_id:
        return OWNER
    if not node_live:
        return NO_ACCESS

    best: str | None = None
    for grant in grants:
        if _is_expired(grant, now):
            continue

        applies = False
        if grant.token is not None and grant.access_level == "anyone":
            applies = True
        elif principal is not None and grant.token is None:
            applies = _matches_principal(grant, principal)

        if applies and (best is None or permission_rank(grant.permission) > permission_rank(best)):
            best = grant.permission

    if best is None or best not in _RANK:
        return NO_ACCESS
    return AccessDecision(kind="shared", permission=cast(Permission, best))
