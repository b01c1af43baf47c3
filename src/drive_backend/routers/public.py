"""Public share-link routes; authentication is optional."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlmodel.ext.asyncio.session import AsyncSession

from drive_backend.db import get_session
from drive_backend.deps import get_optional_principal
from drive_backend.domain.access import Principal
from drive_backend.errors import InvalidOperationError
from drive_backend.http_headers import build_download_headers
from drive_backend.integrations.storage.object_storage import ObjectStorage, get_object_storage
from drive_backend.routers.files import to_file_item
from drive_backend.schemas import PublicShareResponse
from drive_backend.services import files_service, sharing_service

router = APIRouter(prefix="/shared", tags=["public"])


@router.get("/{token}", response_model=PublicShareResponse)
async def get_shared_file(
    token: str,
    principal: Principal | None = Depends(get_optional_principal),
    session: AsyncSession = Depends(get_session),
) -> PublicShareResponse:
    view = await sharing_service.resolve_public_share(
        session=session, token=token, principal=principal
    )
    item = to_file_item(view.node, decision=view.decision)
    return PublicShareResponse(
        file=item,
        owner_name=(view.owner.name or view.owner.email) if view.owner else None,
        permission=item.permission,
        can_download=not view.node.is_folder,
    )


@router.get("/{token}/download")
async def download_shared_file(
    token: str,
    principal: Principal | None = Depends(get_optional_principal),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> StreamingResponse:
    view = await sharing_service.resolve_public_share(
        session=session, token=token, principal=principal
    )
    if view.node.is_folder:
        raise InvalidOperationError("Folders cannot be downloaded")
    out = await files_service.open_download(session=session, storage=storage, node=view.node)
    return StreamingResponse(
        out.chunks,
        media_type=out.node.mime_type or files_service.DEFAULT_MIME_TYPE,
        headers=build_download_headers(filename=out.node.name, file_size=out.node.size_bytes),
    )
