"""Structural mutations on an owner's file/folder tree.

All walks are iterative (explicit frontier lists, no recursion), so tree depth
is bounded only by the database. Each operation runs in a single transaction:
validation happens before the first write, and the node the caller named is
guarded by a compare-and-swap on its `version` column.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlmodel.ext.asyncio.session import AsyncSession

from drive_backend.domain.access import Principal
from drive_backend.domain.naming import next_available_name, normalize_name
from drive_backend.errors import (
    ConcurrentModificationError,
    InvalidOperationError,
    NameConflictError,
    NotFoundError,
)
from drive_backend.integrations.storage.object_storage import ObjectStorage
from drive_backend.models import Node, utc_now
from drive_backend.repositories import nodes_repo, shares_repo
from drive_backend.services import content_service, quota_service
from drive_backend.services.unit_of_work import run_unit_of_work


logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255


@dataclass
class PurgeResult:
    purged_ids: list[str] = field(default_factory=list)
    released_keys: list[str] = field(default_factory=list)
    unreleased_keys: list[str] = field(default_factory=list)
    shares_deleted: int = 0


def new_node_id() -> str:
    return str(uuid.uuid4())


def validate_name(name: str | None) -> str:
    v = normalize_name(name)
    if not v:
        raise InvalidOperationError("Name is required")
    if len(v) > MAX_NAME_LENGTH:
        raise InvalidOperationError(f"Name must be at most {MAX_NAME_LENGTH} characters")
    if "/" in v or "\\" in v or "\x00" in v:
        raise InvalidOperationError("Name cannot contain path separators")
    return v


def _kind(node: Node) -> str:
    return "folder" if node.is_folder else "file"


def _not_found(message: str = "File not found") -> NotFoundError:
    return NotFoundError(message)


async def _claim(session: AsyncSession, node: Node) -> None:
    if not await nodes_repo.claim_version(session, node=node):
        raise ConcurrentModificationError(
            f"The {_kind(node)} was modified by another request; reload and retry"
        )


async def _collect_levels(
    session: AsyncSession,
    *,
    user_id: int,
    root_id: str,
    live: bool | None,
    include: Callable[[Node], bool] | None = None,
) -> list[list[Node]]:
    """Breadth-first levels below `root_id` (level 0 = direct children).

    Children rejected by `include` are skipped along with their subtrees.
    """
    levels: list[list[Node]] = []
    visited: set[str] = {root_id}
    frontier: list[str] = [root_id]

    while frontier:
        children = await nodes_repo.list_children(
            session, user_id=user_id, parent_ids=frontier, live=live
        )
        level: list[Node] = []
        next_frontier: list[str] = []
        for child in children:
            if child.id in visited:
                continue
            if include is not None and not include(child):
                continue
            visited.add(child.id)
            level.append(child)
            if child.is_folder:
                next_frontier.append(child.id)
        if level:
            levels.append(level)
        frontier = next_frontier
    return levels


async def _is_descendant(
    session: AsyncSession, *, user_id: int, folder_id: str, target_id: str
) -> bool:
    visited: set[str] = {folder_id}
    frontier: list[str] = [folder_id]

    while frontier:
        children = await nodes_repo.list_children(
            session, user_id=user_id, parent_ids=frontier, live=True
        )
        next_frontier: list[str] = []
        for child in children:
            if child.id == target_id:
                return True
            if child.id in visited:
                continue
            visited.add(child.id)
            if child.is_folder:
                next_frontier.append(child.id)
        frontier = next_frontier
    return False


def _name_conflict(is_folder: bool, *, in_target: bool = False) -> NameConflictError:
    kind = "folder" if is_folder else "file"
    where = " in the target location" if in_target else ""
    return NameConflictError(f"A {kind} with this name already exists{where}")


async def _check_move_target(
    session: AsyncSession, *, user_id: int, node: Node, target_id: str | None
) -> None:
    if target_id is None:
        return
    if target_id == node.id:
        raise InvalidOperationError("Cannot move an item into itself")
    if node.is_folder and await _is_descendant(
        session, user_id=user_id, folder_id=node.id, target_id=target_id
    ):
        raise InvalidOperationError("Cannot move a folder into its own subfolder")

    parent = await nodes_repo.get_live_folder(session, user_id=user_id, folder_id=target_id)
    if parent is None:
        raise _not_found("Target folder not found")


async def update_node(
    *,
    session: AsyncSession,
    principal: Principal,
    node_id: str,
    new_name: str | None = None,
    move: bool = False,
    new_parent_id: str | None = None,
) -> Node:
    """Rename and/or move a node in one transaction.

    Every check (name, cycle, target folder, uniqueness at the destination)
    runs before the single write, so a rejected request changes nothing.
    Unchanged name and parent is a no-op that keeps `version`.
    """
    name = validate_name(new_name) if new_name is not None else None
    target_id = (new_parent_id or "").strip() or None

    async def _apply() -> Node:
        node = await nodes_repo.get_owned_node(
            session, user_id=principal.user_id, node_id=node_id, live=True
        )
        if node is None:
            raise _not_found()

        dest_parent_id = target_id if move else node.parent_id
        dest_name = name if name is not None else node.name
        moving = dest_parent_id != node.parent_id
        if not moving and dest_name == node.name:
            return node

        if moving:
            await _check_move_target(
                session, user_id=principal.user_id, node=node, target_id=dest_parent_id
            )

        existing = await nodes_repo.find_live_sibling(
            session,
            user_id=principal.user_id,
            parent_id=dest_parent_id,
            is_folder=node.is_folder,
            name=dest_name,
            exclude_id=node.id,
        )
        if existing is not None:
            raise _name_conflict(node.is_folder, in_target=moving)

        await _claim(session, node)
        node.name = dest_name
        node.parent_id = dest_parent_id
        node.updated_at = utc_now()
        session.add(node)
        return node

    node = await run_unit_of_work(session, _apply)
    logger.info(
        "update node_id=%s parent_id=%s user_id=%s", node.id, node.parent_id, principal.user_id
    )
    return node


async def rename_node(
    *,
    session: AsyncSession,
    principal: Principal,
    node_id: str,
    new_name: str | None,
) -> Node:
    return await update_node(
        session=session,
        principal=principal,
        node_id=node_id,
        new_name=new_name if new_name is not None else "",
    )


async def move_node(
    *,
    session: AsyncSession,
    principal: Principal,
    node_id: str,
    new_parent_id: str | None,
) -> Node:
    return await update_node(
        session=session,
        principal=principal,
        node_id=node_id,
        move=True,
        new_parent_id=new_parent_id,
    )


async def soft_delete_node(
    *,
    session: AsyncSession,
    principal: Principal,
    node_id: str,
) -> list[Node]:
    """Move a node and its live subtree to trash.

    Children are flipped before their parents (deepest level first) and the
    named node last; every row gets the same `deleted_at` and records the
    named node as `trash_root_id`. Returns the trashed rows in that order.
    """

    async def _apply() -> list[Node]:
        root = await nodes_repo.get_owned_node(
            session, user_id=principal.user_id, node_id=node_id, live=True
        )
        if root is None:
            raise _not_found()

        await _claim(session, root)
        now = utc_now()

        ordered: list[Node] = []
        if root.is_folder:
            levels = await _collect_levels(
                session, user_id=principal.user_id, root_id=root.id, live=True
            )
            for level in reversed(levels):
                ordered.extend(level)
        ordered.append(root)

        for row in ordered:
            row.deleted_at = now
            row.trash_root_id = root.id
            row.updated_at = now
            if row is not root:
                row.version += 1
            session.add(row)
        return ordered

    trashed = await run_unit_of_work(session, _apply)
    logger.info(
        "soft_delete node_id=%s user_id=%s count=%s", node_id, principal.user_id, len(trashed)
    )
    return trashed


async def restore_node(
    *,
    session: AsyncSession,
    principal: Principal,
    node_id: str,
) -> Node:
    """Bring a trashed node back, together with what was trashed alongside it.

    Descendants are restored only if the same soft-delete removed them; items
    trashed earlier on their own stay in trash. The node returns to its parent
    when that parent is a live folder, else to the root. A name already taken
    by a live sibling gets the next free "Name (n)" variant.
    """

    async def _apply() -> Node:
        node = await nodes_repo.get_owned_node(
            session, user_id=principal.user_id, node_id=node_id, live=None
        )
        if node is None:
            raise _not_found()
        if node.deleted_at is None:
            raise InvalidOperationError(f"The {_kind(node)} is not in trash")

        await _claim(session, node)
        action_root_id = node.trash_root_id or node.id

        ordered: list[Node] = []
        if node.is_folder:
            levels = await _collect_levels(
                session,
                user_id=principal.user_id,
                root_id=node.id,
                live=False,
                include=lambda n: n.trash_root_id == action_root_id,
            )
            for level in reversed(levels):
                ordered.extend(level)

        if node.parent_id is not None:
            parent = await nodes_repo.get_live_folder(
                session, user_id=principal.user_id, folder_id=node.parent_id
            )
            if parent is None:
                node.parent_id = None
        ordered.append(node)

        taken_by_slot: dict[tuple[str | None, bool], set[str]] = {}
        now = utc_now()
        for row in ordered:
            slot = (row.parent_id, row.is_folder)
            taken = taken_by_slot.get(slot)
            if taken is None:
                taken = await nodes_repo.list_live_sibling_names(
                    session,
                    user_id=principal.user_id,
                    parent_id=row.parent_id,
                    is_folder=row.is_folder,
                )
                taken_by_slot[slot] = taken
            if row.name in taken:
                renamed = next_available_name(row.name, is_folder=row.is_folder, taken=taken)
                logger.info("restore rename node_id=%s name=%r -> %r", row.id, row.name, renamed)
                row.name = renamed
            taken.add(row.name)

            row.deleted_at = None
            row.trash_root_id = None
            row.updated_at = now
            if row is not node:
                row.version += 1
            session.add(row)
        return node

    node = await run_unit_of_work(session, _apply)
    logger.info("restore node_id=%s user_id=%s", node.id, principal.user_id)
    return node


async def purge_node(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    principal: Principal,
    node_id: str,
) -> PurgeResult:
    """Irrevocably destroy a trashed node and its subtree.

    Deepest rows go first; shares of purged nodes go too. File contents are
    released best-effort once the row deletion has committed, so slow store
    calls never hold the write lock. A failed release is logged and recorded
    in the result; the object is orphaned but no row points at it.
    """
    result = PurgeResult()
    keys: list[str] = []

    async def _apply() -> PurgeResult:
        node = await nodes_repo.get_owned_node(
            session, user_id=principal.user_id, node_id=node_id, live=None
        )
        if node is None:
            raise _not_found()
        if node.deleted_at is None:
            raise InvalidOperationError(
                f"Cannot permanently delete a {_kind(node)} that is not in trash"
            )

        await _claim(session, node)

        ordered: list[Node] = []
        if node.is_folder:
            levels = await _collect_levels(
                session, user_id=principal.user_id, root_id=node.id, live=None
            )
            for level in reversed(levels):
                for row in level:
                    if row.deleted_at is None:
                        # A live row under a trashed folder breaks the tree
                        # invariant; keep it reachable instead of orphaning it.
                        logger.warning(
                            "purge found live descendant node_id=%s; moving to root", row.id
                        )
                        row.parent_id = None
                        session.add(row)
                        continue
                    ordered.append(row)
        ordered.append(node)

        keys.extend(
            row.content_key for row in ordered if not row.is_folder and row.content_key
        )
        ids = [row.id for row in ordered]
        result.shares_deleted = await shares_repo.delete_for_nodes(session, node_ids=ids)
        await session.flush()
        for row in ordered:
            await nodes_repo.delete_node_row(session, node_id=row.id)
            session.expunge(row)
        result.purged_ids = ids
        return result

    out = await run_unit_of_work(session, _apply)
    for key in keys:
        if await content_service.release_content(storage, key=key):
            out.released_keys.append(key)
        else:
            out.unreleased_keys.append(key)
    logger.info(
        "purge node_id=%s user_id=%s count=%s unreleased=%s",
        node_id,
        principal.user_id,
        len(out.purged_ids),
        len(out.unreleased_keys),
    )
    return out


def _clone_row(source: Node, *, node_id: str, parent_id: str | None, name: str) -> Node:
    now = utc_now()
    return Node(
        id=node_id,
        user_id=source.user_id,
        parent_id=parent_id,
        name=name,
        is_folder=source.is_folder,
        content_key=None,
        size_bytes=0 if source.is_folder else int(source.size_bytes or 0),
        mime_type=None if source.is_folder else source.mime_type,
        is_starred=False,
        created_at=now,
        updated_at=now,
    )


async def _subtree_file_bytes(session: AsyncSession, *, user_id: int, folder_id: str) -> int:
    levels = await _collect_levels(session, user_id=user_id, root_id=folder_id, live=True)
    return sum(int(n.size_bytes or 0) for level in levels for n in level if not n.is_folder)


async def duplicate_node(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    principal: Principal,
    node_id: str,
) -> Node:
    """Copy a node (and for folders its live subtree) next to the original.

    File bytes are copied in the store before the new row is written. If any
    copy fails the transaction is rolled back and the objects already copied
    are released, so no row ever points at missing content.
    """
    user_id = principal.user_id
    copied_keys: list[str] = []

    async def _copy_file(source: Node, *, parent_id: str | None, name: str) -> Node:
        new_id = new_node_id()
        row = _clone_row(source, node_id=new_id, parent_id=parent_id, name=name)
        if source.content_key:
            dest_key = content_service.generate_key(
                user_id=user_id, node_id=new_id, file_name=name
            )
            await content_service.copy_content(
                storage,
                source_key=source.content_key,
                dest_key=dest_key,
                content_type=source.mime_type,
                metadata=content_service.object_metadata(
                    user_id=user_id, node_id=new_id, file_name=name
                ),
            )
            copied_keys.append(dest_key)
            row.content_key = dest_key
        session.add(row)
        return row

    async def _apply() -> Node:
        source = await nodes_repo.get_owned_node(
            session, user_id=user_id, node_id=node_id, live=True
        )
        if source is None:
            raise _not_found()

        if source.is_folder:
            needed = await _subtree_file_bytes(session, user_id=user_id, folder_id=source.id)
        else:
            needed = int(source.size_bytes or 0)
        await quota_service.ensure_capacity(session, user_id=user_id, additional_bytes=needed)

        taken = await nodes_repo.list_live_sibling_names(
            session, user_id=user_id, parent_id=source.parent_id, is_folder=source.is_folder
        )
        name = next_available_name(source.name, is_folder=source.is_folder, taken=taken)

        if not source.is_folder:
            return await _copy_file(source, parent_id=source.parent_id, name=name)

        root_copy = _clone_row(
            source, node_id=new_node_id(), parent_id=source.parent_id, name=name
        )
        session.add(root_copy)

        stack: list[tuple[str, str]] = [(source.id, root_copy.id)]
        while stack:
            src_folder_id, dst_folder_id = stack.pop()
            children = await nodes_repo.list_children(
                session, user_id=user_id, parent_ids=[src_folder_id], live=True
            )
            taken_in_dest: dict[bool, set[str]] = {True: set(), False: set()}
            for child in children:
                child_name = next_available_name(
                    child.name, is_folder=child.is_folder, taken=taken_in_dest[child.is_folder]
                )
                taken_in_dest[child.is_folder].add(child_name)
                if child.is_folder:
                    folder_copy = _clone_row(
                        child, node_id=new_node_id(), parent_id=dst_folder_id, name=child_name
                    )
                    session.add(folder_copy)
                    stack.append((child.id, folder_copy.id))
                else:
                    await _copy_file(child, parent_id=dst_folder_id, name=child_name)
            # Parents must exist before children on FK-enforcing stores.
            await session.flush()
        return root_copy

    try:
        copy = await run_unit_of_work(session, _apply)
    except Exception:
        for key in copied_keys:
            await content_service.release_content(storage, key=key)
        raise

    logger.info(
        "duplicate node_id=%s copy_id=%s user_id=%s objects=%s",
        node_id,
        copy.id,
        user_id,
        len(copied_keys),
    )
    return copy

