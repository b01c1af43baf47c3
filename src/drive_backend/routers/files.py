"""Files router: tree browsing, uploads, structural mutations and downloads."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlmodel.ext.asyncio.session import AsyncSession

from drive_backend.config import settings
from drive_backend.db import get_session
from drive_backend.deps import get_current_principal
from drive_backend.domain.access import AccessDecision, Principal
from drive_backend.domain.file_types import FileTypeCategory, ModifiedWindow
from drive_backend.errors import InvalidOperationError
from drive_backend.http_headers import build_download_headers
from drive_backend.integrations.storage.object_storage import ObjectStorage, get_object_storage
from drive_backend.models import Node
from drive_backend.schemas import (
    BreadcrumbItem,
    BreadcrumbResponse,
    CreateFolderRequest,
    DownloadUrlResponse,
    FileItem,
    FileList,
    NodePatchRequest,
    OkResponse,
    PurgeResponse,
    SharedFileItem,
    SharedFileList,
    StarRequest,
    UploadCompleteRequest,
    UploadUrlRequest,
    UploadUrlResponse,
)
from drive_backend.services import files_service, tree_service

router = APIRouter(prefix="/files", tags=["files"])


def to_file_item(node: Node, *, decision: AccessDecision | None = None) -> FileItem:
    permission = None
    if decision is not None and decision.kind == "shared":
        permission = decision.permission
    return FileItem(
        id=node.id,
        name=node.name,
        is_folder=node.is_folder,
        parent_id=node.parent_id,
        size_bytes=int(node.size_bytes or 0),
        mime_type=node.mime_type,
        is_starred=node.is_starred,
        version=node.version,
        created_at=node.created_at,
        updated_at=node.updated_at,
        last_accessed_at=node.last_accessed_at,
        deleted_at=node.deleted_at,
        permission=permission,
    )


def _file_list(nodes: list[Node]) -> FileList:
    return FileList(items=[to_file_item(n) for n in nodes])


async def _read_upload_file_limited(*, file: UploadFile, max_bytes: int) -> bytes:
    # Read the file in chunks and hard-stop once size exceeds max_bytes.
    buf = bytearray()
    chunk_size = 1024 * 1024
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        buf.extend(chunk)
        if len(buf) > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_CONTENT_TOO_LARGE,
                detail="file too large",
            )
    return bytes(buf)


@router.get("", response_model=FileList)
async def list_files(
    parent_id: Annotated[str | None, Query(max_length=36)] = None,
    recursive: Annotated[bool, Query()] = False,
    file_type: Annotated[FileTypeCategory | None, Query(alias="type")] = None,
    modified: Annotated[ModifiedWindow | None, Query()] = None,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> FileList:
    nodes = await files_service.list_nodes(
        session=session,
        principal=principal,
        parent_id=parent_id,
        recursive=recursive,
        category=file_type,
        modified=modified,
    )
    return _file_list(nodes)


@router.post("/folders", response_model=FileItem, status_code=status.HTTP_201_CREATED)
async def create_folder(
    payload: CreateFolderRequest,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> FileItem:
    folder = await files_service.create_folder(
        session=session, principal=principal, name=payload.name, parent_id=payload.parent_id
    )
    return to_file_item(folder)


@router.post("/upload-url", response_model=UploadUrlResponse, status_code=status.HTTP_201_CREATED)
async def create_upload_url(
    payload: UploadUrlRequest,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> UploadUrlResponse:
    out = await files_service.register_upload(
        session=session,
        storage=storage,
        principal=principal,
        file_name=payload.file_name,
        size_bytes=payload.size_bytes,
        mime_type=payload.mime_type,
        parent_id=payload.parent_id,
    )
    return UploadUrlResponse(
        file=to_file_item(out.node),
        upload_url=out.grant.url,
        method=out.grant.method,
        headers=out.grant.headers,
        key=out.grant.key,
        expires_in=out.grant.expires_in,
    )


@router.post("/upload-complete", response_model=FileItem)
async def complete_upload(
    payload: UploadCompleteRequest,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> FileItem:
    node = await files_service.complete_upload(
        session=session, principal=principal, node_id=payload.file_id
    )
    return to_file_item(node)


@router.post("/upload", response_model=FileItem, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: Annotated[UploadFile, File()],
    parent_id: Annotated[str | None, Form(max_length=36)] = None,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> FileItem:
    max_bytes = int(settings.upload_max_size_bytes)
    if max_bytes > 0:
        data = await _read_upload_file_limited(file=file, max_bytes=max_bytes)
    else:
        data = await file.read()
    node = await files_service.upload_via_proxy(
        session=session,
        storage=storage,
        principal=principal,
        file_name=file.filename,
        content_type=file.content_type,
        data=data,
        parent_id=parent_id,
    )
    return to_file_item(node)


@router.get("/search", response_model=FileList)
async def search_files(
    q: Annotated[str, Query(max_length=200)] = "",
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    include_deleted: Annotated[bool, Query()] = False,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> FileList:
    nodes = await files_service.search(
        session=session,
        principal=principal,
        query=q,
        limit=limit,
        include_deleted=include_deleted,
    )
    return _file_list(nodes)


@router.get("/starred", response_model=FileList)
async def list_starred(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> FileList:
    return _file_list(await files_service.list_starred(session=session, principal=principal))


@router.get("/trash", response_model=FileList)
async def list_trash(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> FileList:
    return _file_list(await files_service.list_trash(session=session, principal=principal))


@router.get("/shared", response_model=SharedFileList)
async def list_shared_with_me(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> SharedFileList:
    rows = await files_service.list_shared_with_me(session=session, principal=principal)
    return SharedFileList(
        items=[
            SharedFileItem(
                **to_file_item(node).model_dump(),
                owner_name=owner.name if owner else None,
                owner_email=owner.email if owner else None,
            )
            for node, owner in rows
        ]
    )


@router.get("/path", response_model=BreadcrumbResponse)
async def get_path(
    folder_id: Annotated[str, Query(min_length=1, max_length=36)],
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> BreadcrumbResponse:
    chain = await files_service.breadcrumb(
        session=session, principal=principal, folder_id=folder_id
    )
    return BreadcrumbResponse(items=[BreadcrumbItem(id=n.id, name=n.name) for n in chain])


@router.get("/{node_id}", response_model=FileItem)
async def get_file(
    node_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> FileItem:
    node, decision = await files_service.get_node_for_principal(
        session=session, principal=principal, node_id=node_id
    )
    return to_file_item(node, decision=decision)


@router.patch("/{node_id}", response_model=FileItem)
async def patch_file(
    node_id: str,
    payload: NodePatchRequest,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> FileItem:
    fields = payload.model_fields_set
    if "parent_id" not in fields and payload.name is None:
        raise InvalidOperationError("Nothing to update")

    node = await tree_service.update_node(
        session=session,
        principal=principal,
        node_id=node_id,
        new_name=payload.name,
        move="parent_id" in fields,
        new_parent_id=payload.parent_id,
    )
    return to_file_item(node)


@router.delete("/{node_id}", response_model=OkResponse)
async def delete_file(
    node_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> OkResponse:
    await tree_service.soft_delete_node(session=session, principal=principal, node_id=node_id)
    return OkResponse()


@router.post("/{node_id}/restore", response_model=FileItem)
async def restore_file(
    node_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> FileItem:
    node = await tree_service.restore_node(session=session, principal=principal, node_id=node_id)
    return to_file_item(node)


@router.delete("/{node_id}/permanent", response_model=PurgeResponse)
async def purge_file(
    node_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> PurgeResponse:
    result = await tree_service.purge_node(
        session=session, storage=storage, principal=principal, node_id=node_id
    )
    return PurgeResponse(purged_ids=result.purged_ids, unreleased_keys=result.unreleased_keys)


@router.post("/{node_id}/duplicate", response_model=FileItem, status_code=status.HTTP_201_CREATED)
async def duplicate_file(
    node_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> FileItem:
    copy = await tree_service.duplicate_node(
        session=session, storage=storage, principal=principal, node_id=node_id
    )
    return to_file_item(copy)


@router.patch("/{node_id}/star", response_model=FileItem)
async def star_file(
    node_id: str,
    payload: StarRequest,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> FileItem:
    node = await files_service.set_starred(
        session=session, principal=principal, node_id=node_id, is_starred=payload.is_starred
    )
    return to_file_item(node)


@router.get("/{node_id}/download")
async def download_file(
    node_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> StreamingResponse:
    out = await files_service.download(
        session=session, storage=storage, principal=principal, node_id=node_id
    )
    return StreamingResponse(
        out.chunks,
        media_type=out.node.mime_type or files_service.DEFAULT_MIME_TYPE,
        headers=build_download_headers(filename=out.node.name, file_size=out.node.size_bytes),
    )


@router.get("/{node_id}/download-url", response_model=DownloadUrlResponse)
async def get_download_url(
    node_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> DownloadUrlResponse:
    grant = await files_service.download_url(
        session=session, storage=storage, principal=principal, node_id=node_id
    )
    return DownloadUrlResponse(url=grant.url, expires_in=grant.expires_in)
