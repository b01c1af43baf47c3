"""Signed-URL endpoints backing the local object store.

With S3 configured these routes answer 404; clients talk to the bucket.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import FileResponse, Response

from drive_backend.config import settings
from drive_backend.http_headers import build_content_disposition_attachment
from drive_backend.integrations.storage.local_storage import LocalObjectStorage
from drive_backend.integrations.storage.object_storage import ObjectStorage, get_object_storage

router = APIRouter(prefix="/blobs", tags=["blobs"])


def _local_or_404(storage: ObjectStorage) -> LocalObjectStorage:
    if not isinstance(storage, LocalObjectStorage):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    return storage


def _require_signature(
    storage: LocalObjectStorage, *, method: str, key: str, expires: int, extra: str, sig: str
) -> None:
    if not storage.verify(method=method, key=key, expires=expires, extra=extra, signature=sig):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="invalid or expired signature")


@router.get("/{key:path}")
async def read_blob(
    key: str,
    expires: Annotated[int, Query()],
    sig: Annotated[str, Query(min_length=1)],
    filename: Annotated[str, Query()] = "",
    storage: ObjectStorage = Depends(get_object_storage),
) -> FileResponse:
    local = _local_or_404(storage)
    _require_signature(local, method="GET", key=key, expires=expires, extra=filename, sig=sig)
    try:
        path = local.resolve_path(key)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="blob not found")
    if not path.exists():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="blob not found")
    return FileResponse(
        path,
        media_type="application/octet-stream",
        headers={"Content-Disposition": build_content_disposition_attachment(filename or None)},
    )


@router.put("/{key:path}", status_code=status.HTTP_204_NO_CONTENT)
async def write_blob(
    key: str,
    request: Request,
    expires: Annotated[int, Query()],
    sig: Annotated[str, Query(min_length=1)],
    content_type: Annotated[str, Query()] = "",
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response:
    local = _local_or_404(storage)
    _require_signature(local, method="PUT", key=key, expires=expires, extra=content_type, sig=sig)

    max_bytes = int(settings.upload_max_size_bytes)
    buf = bytearray()
    async for chunk in request.stream():
        buf.extend(chunk)
        if max_bytes > 0 and len(buf) > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_CONTENT_TOO_LARGE,
                detail="file too large",
            )
    try:
        await local.put_bytes(key, bytes(buf), content_type=content_type or None)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid storage key")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
