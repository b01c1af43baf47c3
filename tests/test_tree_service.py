from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import cast

import pytest
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession as SAAsyncSession
from alembic import command
from alembic.config import Config
from sqlmodel import select

from drive_backend.config import settings
from drive_backend.db import reset_engine_cache, session_scope
from drive_backend.domain.access import Principal
from drive_backend.errors import (
    ConcurrentModificationError,
    InvalidOperationError,
    NameConflictError,
    NotFoundError,
    QuotaExceededError,
    UpstreamFailureError,
)
from drive_backend.integrations.storage.local_storage import LocalObjectStorage
from drive_backend.models import Node, Share, User
from drive_backend.repositories import nodes_repo
from drive_backend.services import files_service, tree_service


def _alembic_upgrade_head() -> None:
    cfg = Config("alembic.ini")
    command.upgrade(cfg, "head")


@pytest.fixture
def fresh_db(tmp_path: Path) -> Iterator[Path]:
    old_db = settings.database_url
    old_quota = settings.storage_quota_bytes
    try:
        settings.database_url = f"sqlite:///{tmp_path / 'test-tree.db'}"
        reset_engine_cache()
        _alembic_upgrade_head()
        yield tmp_path
    finally:
        settings.database_url = old_db
        settings.storage_quota_bytes = old_quota


def _storage(tmp_path: Path) -> LocalObjectStorage:
    return LocalObjectStorage(
        root_dir=str(tmp_path / "objects"),
        signing_secret="test-secret",
        base_url="http://test/api/v1",
    )


async def _make_user(email: str = "owner@example.com", token: str = "tok-owner") -> Principal:
    async with session_scope() as session:
        user = User(email=email, name=email.split("@")[0], api_token=token, is_active=True)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        assert user.id is not None
        return Principal(user_id=int(user.id), email=user.email, name=user.name)


async def _folder(principal: Principal, name: str, parent_id: str | None = None) -> Node:
    async with session_scope() as session:
        return await files_service.create_folder(
            session=session, principal=principal, name=name, parent_id=parent_id
        )


async def _file(
    storage: LocalObjectStorage,
    principal: Principal,
    name: str,
    data: bytes = b"hello",
    parent_id: str | None = None,
) -> Node:
    async with session_scope() as session:
        return await files_service.upload_via_proxy(
            session=session,
            storage=storage,
            principal=principal,
            file_name=name,
            content_type="text/plain",
            data=data,
            parent_id=parent_id,
        )


async def _load(node_id: str) -> Node | None:
    async with session_scope() as session:
        return await nodes_repo.get_node(session, node_id=node_id)


@pytest.mark.anyio
async def test_delete_then_purge_folder_scenario(fresh_db: Path):
    storage = _storage(fresh_db)
    owner = await _make_user()

    a = await _folder(owner, "A")
    b = await _folder(owner, "B", a.id)
    f = await _file(storage, owner, "f.txt", b"x" * 100, b.id)
    assert f.content_key is not None
    assert storage.resolve_path(f.content_key).exists()

    async with session_scope() as session:
        trashed = await tree_service.soft_delete_node(
            session=session, principal=owner, node_id=a.id
        )
    # Children flip before their parents; the named node goes last.
    assert [n.id for n in trashed] == [f.id, b.id, a.id]

    async with session_scope() as session:
        trash = await files_service.list_trash(session=session, principal=owner)
    assert {n.id for n in trash} == {a.id, b.id, f.id}
    assert len({n.deleted_at for n in trash}) == 1
    assert {n.trash_root_id for n in trash} == {a.id}

    async with session_scope() as session:
        result = await tree_service.purge_node(
            session=session, storage=storage, principal=owner, node_id=a.id
        )
    assert set(result.purged_ids) == {a.id, b.id, f.id}
    assert result.released_keys == [f.content_key]
    assert result.unreleased_keys == []
    assert not storage.resolve_path(f.content_key).exists()

    for node_id in (a.id, b.id, f.id):
        assert await _load(node_id) is None

    async with session_scope() as session:
        with pytest.raises(NotFoundError):
            await tree_service.purge_node(
                session=session, storage=storage, principal=owner, node_id=a.id
            )


@pytest.mark.anyio
async def test_rename_enforces_sibling_uniqueness_per_kind(fresh_db: Path):
    storage = _storage(fresh_db)
    owner = await _make_user()

    await _file(storage, owner, "a.txt")
    b = await _file(storage, owner, "b.txt")

    async with session_scope() as session:
        with pytest.raises(NameConflictError):
            await tree_service.rename_node(
                session=session, principal=owner, node_id=b.id, new_name="a.txt"
            )

    # A folder may share a name with a file.
    folder = await _folder(owner, "a.txt")
    assert folder.name == "a.txt"

    async with session_scope() as session:
        with pytest.raises(InvalidOperationError):
            await tree_service.rename_node(
                session=session, principal=owner, node_id=b.id, new_name="   "
            )
        with pytest.raises(InvalidOperationError):
            await tree_service.rename_node(
                session=session, principal=owner, node_id=b.id, new_name="x/y"
            )

    async with session_scope() as session:
        renamed = await tree_service.rename_node(
            session=session, principal=owner, node_id=b.id, new_name="  c.txt  "
        )
    assert renamed.name == "c.txt"
    assert renamed.version == 2

    # Same name again is a no-op.
    async with session_scope() as session:
        same = await tree_service.rename_node(
            session=session, principal=owner, node_id=b.id, new_name="c.txt"
        )
    assert same.version == 2


@pytest.mark.anyio
async def test_move_rejects_cycles_and_missing_targets(fresh_db: Path):
    storage = _storage(fresh_db)
    owner = await _make_user()

    a = await _folder(owner, "A")
    b = await _folder(owner, "B", a.id)
    c = await _folder(owner, "C", b.id)
    f = await _file(storage, owner, "f.txt")

    async with session_scope() as session:
        with pytest.raises(InvalidOperationError):
            await tree_service.move_node(
                session=session, principal=owner, node_id=a.id, new_parent_id=a.id
            )
        with pytest.raises(InvalidOperationError):
            await tree_service.move_node(
                session=session, principal=owner, node_id=a.id, new_parent_id=c.id
            )
        with pytest.raises(NotFoundError):
            await tree_service.move_node(
                session=session, principal=owner, node_id=f.id, new_parent_id="missing"
            )
        # Files are not folders.
        g = await _file(storage, owner, "g.txt")
        with pytest.raises(NotFoundError):
            await tree_service.move_node(
                session=session, principal=owner, node_id=f.id, new_parent_id=g.id
            )

    async with session_scope() as session:
        moved = await tree_service.move_node(
            session=session, principal=owner, node_id=f.id, new_parent_id=c.id
        )
    assert moved.parent_id == c.id

    # A same-named file in the target blocks the move.
    await _file(storage, owner, "f.txt")
    async with session_scope() as session:
        dup = (
            await session.exec(
                select(Node).where(Node.parent_id == None).where(Node.name == "f.txt")  # noqa: E711
            )
        ).first()
        assert dup is not None
        with pytest.raises(NameConflictError):
            await tree_service.move_node(
                session=session, principal=owner, node_id=dup.id, new_parent_id=c.id
            )

    async with session_scope() as session:
        back = await tree_service.move_node(
            session=session, principal=owner, node_id=c.id, new_parent_id=None
        )
    assert back.parent_id is None


@pytest.mark.anyio
async def test_restore_brings_back_only_the_same_delete_action(fresh_db: Path):
    storage = _storage(fresh_db)
    owner = await _make_user()

    a = await _folder(owner, "A")
    f1 = await _file(storage, owner, "f1.txt", parent_id=a.id)
    f2 = await _file(storage, owner, "f2.txt", parent_id=a.id)

    async with session_scope() as session:
        await tree_service.soft_delete_node(session=session, principal=owner, node_id=f1.id)
    async with session_scope() as session:
        await tree_service.soft_delete_node(session=session, principal=owner, node_id=a.id)

    async with session_scope() as session:
        restored = await tree_service.restore_node(session=session, principal=owner, node_id=a.id)
    assert restored.deleted_at is None

    f1_row = await _load(f1.id)
    f2_row = await _load(f2.id)
    assert f1_row is not None and f1_row.deleted_at is not None
    assert f2_row is not None and f2_row.deleted_at is None
    assert f2_row.trash_root_id is None

    async with session_scope() as session:
        with pytest.raises(InvalidOperationError):
            await tree_service.restore_node(session=session, principal=owner, node_id=a.id)


@pytest.mark.anyio
async def test_restore_renames_on_conflict_and_falls_back_to_root(fresh_db: Path):
    storage = _storage(fresh_db)
    owner = await _make_user()

    x = await _file(storage, owner, "x.txt")
    async with session_scope() as session:
        await tree_service.soft_delete_node(session=session, principal=owner, node_id=x.id)
    await _file(storage, owner, "x.txt")

    async with session_scope() as session:
        restored = await tree_service.restore_node(session=session, principal=owner, node_id=x.id)
    assert restored.name == "x (1).txt"

    a = await _folder(owner, "A")
    f = await _file(storage, owner, "f.txt", parent_id=a.id)
    async with session_scope() as session:
        await tree_service.soft_delete_node(session=session, principal=owner, node_id=f.id)
    async with session_scope() as session:
        await tree_service.soft_delete_node(session=session, principal=owner, node_id=a.id)

    async with session_scope() as session:
        back = await tree_service.restore_node(session=session, principal=owner, node_id=f.id)
    assert back.parent_id is None
    assert back.deleted_at is None


@pytest.mark.anyio
async def test_state_preconditions(fresh_db: Path):
    storage = _storage(fresh_db)
    owner = await _make_user()
    other = await _make_user("other@example.com", "tok-other")
    f = await _file(storage, owner, "f.txt")

    async with session_scope() as session:
        with pytest.raises(InvalidOperationError):
            await tree_service.purge_node(
                session=session, storage=storage, principal=owner, node_id=f.id
            )
        # Other tenants can't see the node at all.
        with pytest.raises(NotFoundError):
            await tree_service.soft_delete_node(session=session, principal=other, node_id=f.id)

    async with session_scope() as session:
        await tree_service.soft_delete_node(session=session, principal=owner, node_id=f.id)
    async with session_scope() as session:
        with pytest.raises(NotFoundError):
            await tree_service.soft_delete_node(session=session, principal=owner, node_id=f.id)
        with pytest.raises(NotFoundError):
            await tree_service.rename_node(
                session=session, principal=owner, node_id=f.id, new_name="g.txt"
            )


@pytest.mark.anyio
async def test_duplicate_file_and_folder(fresh_db: Path):
    storage = _storage(fresh_db)
    owner = await _make_user()

    f = await _file(storage, owner, "f.txt", b"payload")
    async with session_scope() as session:
        copy = await tree_service.duplicate_node(
            session=session, storage=storage, principal=owner, node_id=f.id
        )
    assert copy.id != f.id
    assert copy.name == "f (1).txt"
    assert copy.content_key and copy.content_key != f.content_key
    assert storage.resolve_path(copy.content_key).read_bytes() == b"payload"

    a = await _folder(owner, "A")
    b = await _folder(owner, "B", a.id)
    await _file(storage, owner, "inner.txt", b"1234", b.id)

    async with session_scope() as session:
        a_copy = await tree_service.duplicate_node(
            session=session, storage=storage, principal=owner, node_id=a.id
        )
    assert a_copy.name == "A (1)"
    assert a_copy.is_folder

    async with session_scope() as session:
        level1 = await nodes_repo.list_children(session, user_id=owner.user_id, parent_ids=[a_copy.id])
        assert [n.name for n in level1] == ["B"]
        level2 = await nodes_repo.list_children(
            session, user_id=owner.user_id, parent_ids=[level1[0].id]
        )
    assert [n.name for n in level2] == ["inner.txt"]
    assert level2[0].size_bytes == 4
    assert level2[0].content_key is not None
    assert storage.resolve_path(level2[0].content_key).read_bytes() == b"1234"


@pytest.mark.anyio
async def test_duplicate_checks_quota_for_whole_subtree(fresh_db: Path):
    storage = _storage(fresh_db)
    owner = await _make_user()

    a = await _folder(owner, "A")
    await _file(storage, owner, "big.bin", b"x" * 600, a.id)
    settings.storage_quota_bytes = 1000

    async with session_scope() as session:
        with pytest.raises(QuotaExceededError) as excinfo:
            await tree_service.duplicate_node(
                session=session, storage=storage, principal=owner, node_id=a.id
            )
    assert excinfo.value.status_code == 413
    assert excinfo.value.details == {"quota": 1000, "used": 600, "required": 600}

    async with session_scope() as session:
        count = len(list((await session.exec(select(Node))).all()))
    assert count == 2


@pytest.mark.anyio
async def test_duplicate_failure_releases_copies_and_writes_no_rows(
    fresh_db: Path, monkeypatch: pytest.MonkeyPatch
):
    storage = _storage(fresh_db)
    owner = await _make_user()

    a = await _folder(owner, "A")
    await _file(storage, owner, "one.txt", b"1", a.id)
    await _file(storage, owner, "two.txt", b"2", a.id)

    real_copy = storage.copy
    copied: list[str] = []

    async def _flaky_copy(source_key: str, dest_key: str, **kwargs: object) -> None:
        if copied:
            raise OSError("disk full")
        await real_copy(source_key, dest_key, **kwargs)  # type: ignore[arg-type]
        copied.append(dest_key)

    monkeypatch.setattr(storage, "copy", _flaky_copy)

    async with session_scope() as session:
        with pytest.raises(UpstreamFailureError):
            await tree_service.duplicate_node(
                session=session, storage=storage, principal=owner, node_id=a.id
            )

    assert len(copied) == 1
    assert not storage.resolve_path(copied[0]).exists()
    async with session_scope() as session:
        names = sorted(n.name for n in (await session.exec(select(Node))).all())
    assert names == ["A", "one.txt", "two.txt"]


@pytest.mark.anyio
async def test_purge_survives_content_release_failure(
    fresh_db: Path, monkeypatch: pytest.MonkeyPatch
):
    storage = _storage(fresh_db)
    owner = await _make_user()
    f = await _file(storage, owner, "f.txt")

    async with session_scope() as session:
        await tree_service.soft_delete_node(session=session, principal=owner, node_id=f.id)

    async def _broken_delete(key: str) -> None:
        raise OSError(f"cannot delete {key}")

    monkeypatch.setattr(storage, "delete", _broken_delete)

    async with session_scope() as session:
        result = await tree_service.purge_node(
            session=session, storage=storage, principal=owner, node_id=f.id
        )
    assert result.purged_ids == [f.id]
    assert result.unreleased_keys == [f.content_key]
    assert await _load(f.id) is None


@pytest.mark.anyio
async def test_purge_removes_shares(fresh_db: Path):
    storage = _storage(fresh_db)
    owner = await _make_user()
    f = await _file(storage, owner, "f.txt")

    async with session_scope() as session:
        session.add(
            Share(
                id="share-1",
                node_id=f.id,
                grantor_id=owner.user_id,
                access_level="anyone",
                permission="viewer",
                token="t" * 64,
            )
        )
        await session.commit()

    async with session_scope() as session:
        await tree_service.soft_delete_node(session=session, principal=owner, node_id=f.id)
    async with session_scope() as session:
        result = await tree_service.purge_node(
            session=session, storage=storage, principal=owner, node_id=f.id
        )
    assert result.shares_deleted == 1

    async with session_scope() as session:
        assert (await session.exec(select(Share))).first() is None


@pytest.mark.anyio
async def test_stale_version_is_rejected(fresh_db: Path):
    storage = _storage(fresh_db)
    owner = await _make_user()
    f = await _file(storage, owner, "f.txt")

    async with session_scope() as session:
        node = await nodes_repo.get_node(session, node_id=f.id)
        assert node is not None
        # Another writer bumps the version behind this session's back.
        await cast(SAAsyncSession, session).execute(
            sa.update(Node)
            .where(Node.id == f.id)
            .values(version=7)
            .execution_options(synchronize_session=False)
        )
        assert node.version == 1
        assert await nodes_repo.claim_version(session, node=node) is False

        with pytest.raises(ConcurrentModificationError):
            await tree_service.rename_node(
                session=session, principal=owner, node_id=f.id, new_name="g.txt"
            )


@pytest.mark.anyio
async def test_repeated_move_is_a_no_op(fresh_db: Path):
    storage = _storage(fresh_db)
    owner = await _make_user()

    b = await _folder(owner, "B")
    f = await _file(storage, owner, "f.txt")

    async with session_scope() as session:
        first = await tree_service.move_node(
            session=session, principal=owner, node_id=f.id, new_parent_id=b.id
        )
    assert first.parent_id == b.id
    assert first.version == 2

    async with session_scope() as session:
        second = await tree_service.move_node(
            session=session, principal=owner, node_id=f.id, new_parent_id=b.id
        )
    assert second.parent_id == b.id
    assert second.version == 2

    stored = await _load(f.id)
    assert stored is not None
    assert stored.parent_id == b.id
    assert stored.version == 2


@pytest.mark.anyio
async def test_duplicate_twice_picks_next_free_suffix(fresh_db: Path):
    storage = _storage(fresh_db)
    owner = await _make_user()
    report = await _file(storage, owner, "Report.pdf", b"%PDF")

    names: list[str] = []
    for _ in range(2):
        async with session_scope() as session:
            copy = await tree_service.duplicate_node(
                session=session, storage=storage, principal=owner, node_id=report.id
            )
        names.append(copy.name)
    assert names == ["Report (1).pdf", "Report (2).pdf"]

    async with session_scope() as session:
        siblings = sorted(
            n.name for n in (await session.exec(select(Node).where(Node.parent_id == None))).all()  # noqa: E711
        )
    assert siblings == ["Report (1).pdf", "Report (2).pdf", "Report.pdf"]


@pytest.mark.anyio
async def test_purge_releases_content_after_rows_are_gone(
    fresh_db: Path, monkeypatch: pytest.MonkeyPatch
):
    storage = _storage(fresh_db)
    owner = await _make_user()
    a = await _folder(owner, "A")
    f = await _file(storage, owner, "f.txt", b"abc", a.id)
    assert f.content_key is not None

    async with session_scope() as session:
        await tree_service.soft_delete_node(session=session, principal=owner, node_id=a.id)

    real_delete = storage.delete
    seen: list[tuple[str, bool]] = []

    async def _recording_delete(key: str) -> None:
        seen.append((key, await _load(f.id) is None))
        await real_delete(key)

    monkeypatch.setattr(storage, "delete", _recording_delete)

    async with session_scope() as session:
        result = await tree_service.purge_node(
            session=session, storage=storage, principal=owner, node_id=a.id
        )
    assert seen == [(f.content_key, True)]
    assert result.released_keys == [f.content_key]
    assert not storage.resolve_path(f.content_key).exists()
