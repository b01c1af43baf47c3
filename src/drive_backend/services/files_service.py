from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from sqlmodel.ext.asyncio.session import AsyncSession

from drive_backend.domain.access import AccessDecision, Principal
from drive_backend.domain.file_types import (
    FileTypeCategory,
    ModifiedWindow,
    category_for_mime_type,
    modified_window_bounds,
)
from drive_backend.errors import InvalidOperationError, NameConflictError, NotFoundError
from drive_backend.integrations.storage.object_storage import ObjectStorage
from drive_backend.models import Node, User, utc_now
from drive_backend.repositories import nodes_repo, users_repo
from drive_backend.services import content_service, quota_service, sharing_service
from drive_backend.services.tree_service import new_node_id, validate_name
from drive_backend.services.unit_of_work import run_unit_of_work


logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
SEARCH_QUERY_MAX_LENGTH = 200
SEARCH_LIMIT_MAX = 100


@dataclass(frozen=True)
class RegisteredUpload:
    node: Node
    grant: content_service.UploadGrant


@dataclass(frozen=True)
class FileDownload:
    node: Node
    chunks: AsyncIterator[bytes]


async def _require_parent(
    session: AsyncSession, *, user_id: int, parent_id: str | None
) -> None:
    if parent_id is None:
        return
    parent = await nodes_repo.get_live_folder(session, user_id=user_id, folder_id=parent_id)
    if parent is None:
        raise NotFoundError("Parent folder not found")


async def _require_free_name(
    session: AsyncSession,
    *,
    user_id: int,
    parent_id: str | None,
    is_folder: bool,
    name: str,
) -> None:
    clash = await nodes_repo.find_live_sibling(
        session, user_id=user_id, parent_id=parent_id, is_folder=is_folder, name=name
    )
    if clash is not None:
        if is_folder:
            raise NameConflictError("A folder with this name already exists")
        raise NameConflictError("A file with this name already exists")


def _normalize_parent_id(parent_id: str | None) -> str | None:
    v = (parent_id or "").strip()
    return v or None


async def create_folder(
    *,
    session: AsyncSession,
    principal: Principal,
    name: str | None,
    parent_id: str | None,
) -> Node:
    folder_name = validate_name(name)
    parent_id = _normalize_parent_id(parent_id)

    async def _apply() -> Node:
        await _require_parent(session, user_id=principal.user_id, parent_id=parent_id)
        await _require_free_name(
            session, user_id=principal.user_id, parent_id=parent_id, is_folder=True, name=folder_name
        )
        now = utc_now()
        folder = Node(
            id=new_node_id(),
            user_id=principal.user_id,
            parent_id=parent_id,
            name=folder_name,
            is_folder=True,
            size_bytes=0,
            created_at=now,
            updated_at=now,
        )
        session.add(folder)
        return folder

    folder = await run_unit_of_work(
        session, _apply, conflict_message="A folder with this name already exists"
    )
    logger.info("create folder node_id=%s user_id=%s", folder.id, principal.user_id)
    return folder


async def register_upload(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    principal: Principal,
    file_name: str | None,
    size_bytes: int,
    mime_type: str | None,
    parent_id: str | None,
) -> RegisteredUpload:
    """Create the file row and a short-lived direct-upload grant for it.

    The grant is issued before the row is written, so a store failure leaves
    no metadata behind.
    """
    name = validate_name(file_name)
    if size_bytes < 0:
        raise InvalidOperationError("Size must not be negative")
    content_type = (mime_type or "").strip() or DEFAULT_MIME_TYPE
    parent_id = _normalize_parent_id(parent_id)
    user_id = principal.user_id

    async def _apply() -> RegisteredUpload:
        await quota_service.ensure_capacity(session, user_id=user_id, additional_bytes=size_bytes)
        await _require_parent(session, user_id=user_id, parent_id=parent_id)
        await _require_free_name(
            session, user_id=user_id, parent_id=parent_id, is_folder=False, name=name
        )

        node_id = new_node_id()
        key = content_service.generate_key(user_id=user_id, node_id=node_id, file_name=name)
        grant = await content_service.issue_upload_grant(
            storage,
            key=key,
            mime_type=content_type,
            metadata=content_service.object_metadata(
                user_id=user_id, node_id=node_id, file_name=name
            ),
        )
        now = utc_now()
        node = Node(
            id=node_id,
            user_id=user_id,
            parent_id=parent_id,
            name=name,
            is_folder=False,
            content_key=key,
            size_bytes=int(size_bytes),
            mime_type=content_type,
            created_at=now,
            updated_at=now,
        )
        session.add(node)
        return RegisteredUpload(node=node, grant=grant)

    out = await run_unit_of_work(session, _apply)
    logger.info(
        "register upload node_id=%s user_id=%s size=%s", out.node.id, user_id, size_bytes
    )
    return out


async def upload_via_proxy(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    principal: Principal,
    file_name: str | None,
    content_type: str | None,
    data: bytes,
    parent_id: str | None,
) -> Node:
    """Write the bytes through the server, then commit the row.

    If the commit fails after the put, the stored object is released.
    """
    name = validate_name(file_name)
    mime_type = (content_type or "").strip() or DEFAULT_MIME_TYPE
    parent_id = _normalize_parent_id(parent_id)
    user_id = principal.user_id
    node_id = new_node_id()
    key = content_service.generate_key(user_id=user_id, node_id=node_id, file_name=name)

    async def _apply() -> Node:
        await quota_service.ensure_capacity(session, user_id=user_id, additional_bytes=len(data))
        await _require_parent(session, user_id=user_id, parent_id=parent_id)
        await _require_free_name(
            session, user_id=user_id, parent_id=parent_id, is_folder=False, name=name
        )
        now = utc_now()
        node = Node(
            id=node_id,
            user_id=user_id,
            parent_id=parent_id,
            name=name,
            is_folder=False,
            content_key=key,
            size_bytes=len(data),
            mime_type=mime_type,
            created_at=now,
            updated_at=now,
        )
        session.add(node)
        await session.flush()
        await content_service.put_content(
            storage,
            key=key,
            data=data,
            content_type=mime_type,
            metadata=content_service.object_metadata(
                user_id=user_id, node_id=node_id, file_name=name
            ),
        )
        return node

    try:
        node = await run_unit_of_work(session, _apply)
    except Exception:
        await content_service.release_content(storage, key=key)
        raise

    logger.info("proxy upload node_id=%s user_id=%s size=%s", node.id, user_id, len(data))
    return node


async def complete_upload(*, session: AsyncSession, principal: Principal, node_id: str) -> Node:
    node = await nodes_repo.get_owned_node(
        session, user_id=principal.user_id, node_id=node_id, live=True
    )
    if node is None or node.is_folder:
        raise NotFoundError("File not found")
    return node


async def set_starred(
    *,
    session: AsyncSession,
    principal: Principal,
    node_id: str,
    is_starred: bool,
) -> Node:
    async def _apply() -> Node:
        node = await nodes_repo.get_owned_node(
            session, user_id=principal.user_id, node_id=node_id, live=True
        )
        if node is None:
            raise NotFoundError("File not found")
        node.is_starred = bool(is_starred)
        session.add(node)
        return node

    return await run_unit_of_work(session, _apply)


async def get_node_for_principal(
    *, session: AsyncSession, principal: Principal, node_id: str
) -> tuple[Node, AccessDecision]:
    return await sharing_service.get_accessible_node(
        session, principal=principal, node_id=node_id
    )


def _matches_category(node: Node, category: FileTypeCategory | None) -> bool:
    if category is None or category == "all":
        return True
    if category == "folders":
        return node.is_folder
    if node.is_folder:
        return False
    return category_for_mime_type(node.mime_type) == category


async def list_nodes(
    *,
    session: AsyncSession,
    principal: Principal,
    parent_id: str | None = None,
    recursive: bool = False,
    category: FileTypeCategory | None = None,
    modified: ModifiedWindow | None = None,
) -> list[Node]:
    """Live children of `parent_id` (root when None), folders first then newest.

    `recursive` walks every live descendant folder. The caller may list a
    folder they were granted, in which case the owner's rows are returned.
    """
    parent_id = _normalize_parent_id(parent_id)
    owner_id = principal.user_id
    if parent_id is not None:
        folder, _ = await sharing_service.get_accessible_node(
            session, principal=principal, node_id=parent_id
        )
        if not folder.is_folder:
            raise InvalidOperationError("Not a folder")
        owner_id = folder.user_id

    updated_from, updated_to = modified_window_bounds(modified, now=utc_now())

    if recursive:
        parent_ids: list[str | None] | None
        if parent_id is None and owner_id == principal.user_id:
            parent_ids = None
        else:
            parent_ids = [parent_id]
            frontier = [parent_id] if parent_id is not None else []
            while frontier:
                sub = await nodes_repo.list_children(
                    session, user_id=owner_id, parent_ids=frontier, folders_only=True
                )
                frontier = [f.id for f in sub]
                parent_ids.extend(frontier)
    else:
        parent_ids = [parent_id]

    nodes = await nodes_repo.list_live_nodes(
        session,
        user_id=owner_id,
        parent_ids=parent_ids,
        is_folder=True if category == "folders" else None,
        updated_from=updated_from,
        updated_to=updated_to,
    )
    return [n for n in nodes if _matches_category(n, category)]


async def breadcrumb(
    *, session: AsyncSession, principal: Principal, folder_id: str
) -> list[Node]:
    """Ancestor chain of `folder_id`, root first.

    The walk stops below the first ancestor the caller can't see.
    """
    folder, _ = await sharing_service.get_accessible_node(
        session, principal=principal, node_id=folder_id
    )
    chain = [folder]
    seen = {folder.id}
    current = folder
    while current.parent_id is not None and current.parent_id not in seen:
        parent = await nodes_repo.get_node(session, node_id=current.parent_id)
        if parent is None or parent.deleted_at is not None:
            break
        decision = await sharing_service.resolve_access(session, node=parent, principal=principal)
        if not decision.allows("viewer"):
            break
        chain.append(parent)
        seen.add(parent.id)
        current = parent
    chain.reverse()
    return chain


async def search(
    *,
    session: AsyncSession,
    principal: Principal,
    query: str | None,
    limit: int = 50,
    include_deleted: bool = False,
) -> list[Node]:
    q = (query or "").strip()
    if not q:
        return []
    if len(q) > SEARCH_QUERY_MAX_LENGTH:
        raise InvalidOperationError(
            f"Search query must be at most {SEARCH_QUERY_MAX_LENGTH} characters"
        )
    limit = max(1, min(int(limit), SEARCH_LIMIT_MAX))
    return await nodes_repo.search_by_name(
        session,
        user_id=principal.user_id,
        query=q,
        limit=limit,
        include_deleted=include_deleted,
    )


async def list_starred(*, session: AsyncSession, principal: Principal) -> list[Node]:
    return await nodes_repo.list_starred(session, user_id=principal.user_id)


async def list_trash(*, session: AsyncSession, principal: Principal) -> list[Node]:
    return await nodes_repo.list_trash(session, user_id=principal.user_id)


async def list_shared_with_me(
    *, session: AsyncSession, principal: Principal
) -> list[tuple[Node, User | None]]:
    nodes = await sharing_service.list_shared_with_me(session=session, principal=principal)
    owners = await users_repo.get_many(session, user_ids=sorted({n.user_id for n in nodes}))
    return [(n, owners.get(n.user_id)) for n in nodes]


async def _touch_last_accessed(session: AsyncSession, *, node: Node) -> None:
    try:
        node.last_accessed_at = utc_now()
        session.add(node)
        await session.commit()
    except Exception:
        logger.warning("last_accessed_at update failed node_id=%s", node.id, exc_info=True)
        try:
            await session.rollback()
        except Exception:
            pass


def _require_file_content(node: Node) -> str:
    if node.is_folder:
        raise InvalidOperationError("Folders cannot be downloaded")
    if not node.content_key:
        raise NotFoundError("File content not found")
    return node.content_key


async def open_download(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    node: Node,
) -> FileDownload:
    """Stream an already-authorized live file."""
    key = _require_file_content(node)
    chunks = await content_service.open_content_stream(storage, key=key)
    await _touch_last_accessed(session, node=node)
    return FileDownload(node=node, chunks=chunks)


async def download(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    principal: Principal,
    node_id: str,
) -> FileDownload:
    node, _ = await sharing_service.get_accessible_node(
        session, principal=principal, node_id=node_id
    )
    return await open_download(session=session, storage=storage, node=node)


async def download_url(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    principal: Principal,
    node_id: str,
) -> content_service.DownloadGrant:
    node, _ = await sharing_service.get_accessible_node(
        session, principal=principal, node_id=node_id
    )
    key = _require_file_content(node)
    return await content_service.issue_download_grant(
        storage, key=key, response_filename=node.name
    )
