from __future__ import annotations

from datetime import datetime, timedelta, timezone

from drive_backend.domain.access import GrantView, Principal, resolve_access

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
OWNER = Principal(user_id=1, email="owner@example.com")
BOB = Principal(user_id=2, email="bob@example.com")


def _link(*, access_level: str, permission: str = "viewer", expires_at=None) -> GrantView:  # type: ignore[no-untyped-def]
    return GrantView(
        access_level=access_level,
        permission=permission,
        token="t" * 64,
        shared_with_user_id=None,
        shared_with_email=None,
        expires_at=expires_at,
    )


def _named(*, user_id=None, email=None, permission="viewer", expires_at=None) -> GrantView:  # type: ignore[no-untyped-def]
    return GrantView(
        access_level="restricted",
        permission=permission,
        token=None,
        shared_with_user_id=user_id,
        shared_with_email=email,
        expires_at=expires_at,
    )


def test_owner_always_has_access_even_in_trash():
    decision = resolve_access(owner_id=1, node_live=False, grants=[], principal=OWNER, now=NOW)
    assert decision.kind == "owner"
    assert decision.allows("editor")


def test_trashed_node_is_invisible_to_grantees():
    grants = [_link(access_level="anyone")]
    decision = resolve_access(owner_id=1, node_live=False, grants=grants, principal=BOB, now=NOW)
    assert not decision.allowed


def test_anyone_link_applies_to_anonymous():
    grants = [_link(access_level="anyone", permission="commenter")]
    decision = resolve_access(owner_id=1, node_live=True, grants=grants, principal=None, now=NOW)
    assert decision.kind == "shared"
    assert decision.permission == "commenter"


def test_restricted_link_denies_anonymous_and_unnamed_users():
    grants = [_link(access_level="restricted")]
    assert not resolve_access(
        owner_id=1, node_live=True, grants=grants, principal=None, now=NOW
    ).allowed
    assert not resolve_access(
        owner_id=1, node_live=True, grants=grants, principal=BOB, now=NOW
    ).allowed


def test_named_grant_matches_email_case_insensitively():
    grants = [_named(email="Bob@Example.com", permission="editor")]
    decision = resolve_access(owner_id=1, node_live=True, grants=grants, principal=BOB, now=NOW)
    assert decision.permission == "editor"


def test_expired_grant_counts_as_absent():
    grants = [_named(user_id=2, expires_at=NOW - timedelta(seconds=1))]
    decision = resolve_access(owner_id=1, node_live=True, grants=grants, principal=BOB, now=NOW)
    assert not decision.allowed


def test_strongest_applicable_permission_wins():
    grants = [
        _link(access_level="anyone", permission="viewer"),
        _named(user_id=2, permission="editor"),
    ]
    decision = resolve_access(owner_id=1, node_live=True, grants=grants, principal=BOB, now=NOW)
    assert decision.permission == "editor"
    assert decision.allows("commenter")
