"""Content references: object-store keys, transfers and grants.

Every store call is bounded by `settings.storage_timeout_seconds`. Copies and
grants fail loudly (UpstreamFailureError); releases never do.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable
from dataclasses import dataclass, field
from typing import TypeVar
from urllib.parse import quote

from botocore.exceptions import BotoCoreError, ClientError

from drive_backend.config import settings
from drive_backend.domain.naming import storage_extension
from drive_backend.errors import UpstreamFailureError
from drive_backend.integrations.storage.object_storage import ObjectStorage, build_content_key


logger = logging.getLogger(__name__)

T = TypeVar("T")

_STORE_ERRORS: tuple[type[BaseException], ...] = (
    asyncio.TimeoutError,
    BotoCoreError,
    ClientError,
    OSError,
    ValueError,
)

_METADATA_VALUE_MAX = 255


@dataclass(frozen=True)
class UploadGrant:
    url: str
    key: str
    expires_in: int
    method: str = "PUT"
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DownloadGrant:
    url: str
    expires_in: int


def _timeout() -> float:
    return float(settings.storage_timeout_seconds)


async def _bounded(awaitable: Awaitable[T], *, op: str, key: str) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout=_timeout())
    except _STORE_ERRORS as exc:
        logger.warning("object store %s failed key=%s", op, key, exc_info=True)
        raise UpstreamFailureError(f"Object store {op} failed") from exc


def generate_key(*, user_id: int, node_id: str, file_name: str) -> str:
    return build_content_key(
        user_id=user_id, node_id=node_id, extension=storage_extension(file_name)
    )


def _metadata_value(value: str) -> str:
    v = value[:_METADATA_VALUE_MAX]
    # S3 user metadata must be US-ASCII.
    if v.isascii():
        return v
    return quote(v, safe=" ")


def object_metadata(*, user_id: int, node_id: str, file_name: str) -> dict[str, str]:
    return {
        "userid": str(user_id),
        "fileid": node_id,
        "originalname": _metadata_value(file_name.strip()),
    }


async def issue_upload_grant(
    storage: ObjectStorage,
    *,
    key: str,
    mime_type: str,
    metadata: dict[str, str] | None = None,
) -> UploadGrant:
    expires_in = int(settings.upload_url_expires_seconds)
    url = await _bounded(
        storage.presign_put(key, expires_in=expires_in, content_type=mime_type, metadata=metadata),
        op="upload grant",
        key=key,
    )
    headers = {"Content-Type": mime_type}
    for k, v in (metadata or {}).items():
        headers[f"x-amz-meta-{k}"] = v
    return UploadGrant(url=url, key=key, expires_in=expires_in, headers=headers)


async def issue_download_grant(
    storage: ObjectStorage, *, key: str, response_filename: str
) -> DownloadGrant:
    expires_in = int(settings.download_url_expires_seconds)
    url = await _bounded(
        storage.presign_get(key, expires_in=expires_in, download_filename=response_filename),
        op="download grant",
        key=key,
    )
    return DownloadGrant(url=url, expires_in=expires_in)


async def put_content(
    storage: ObjectStorage,
    *,
    key: str,
    data: bytes,
    content_type: str | None,
    metadata: dict[str, str] | None = None,
) -> None:
    await _bounded(
        storage.put_bytes(key, data, content_type=content_type, metadata=metadata),
        op="put",
        key=key,
    )


async def copy_content(
    storage: ObjectStorage,
    *,
    source_key: str,
    dest_key: str,
    content_type: str | None,
    metadata: dict[str, str] | None = None,
) -> None:
    """Server-side copy; returns only once the destination object exists."""
    await _bounded(
        storage.copy(source_key, dest_key, content_type=content_type, metadata=metadata),
        op="copy",
        key=source_key,
    )


async def release_content(storage: ObjectStorage, *, key: str | None) -> bool:
    """Best-effort delete.

    Returns False when the store call failed or timed out; the failure is
    logged and never raised, so metadata transitions always proceed.
    """
    if not key:
        return True
    try:
        await asyncio.wait_for(storage.delete(key), timeout=_timeout())
    except Exception:
        logger.warning("content release failed key=%s", key, exc_info=True)
        return False
    return True


async def open_content_stream(storage: ObjectStorage, *, key: str) -> AsyncIterator[bytes]:
    """Start streaming `key`.

    The first chunk is fetched eagerly so a missing object or an unreachable
    store fails before response headers are sent.
    """
    iterator = storage.iter_chunks(key)

    async def _first_chunk() -> bytes:
        async for chunk in iterator:
            return chunk
        return b""

    try:
        first = await asyncio.wait_for(_first_chunk(), timeout=_timeout())
    except _STORE_ERRORS as exc:
        logger.warning("object store read failed key=%s", key, exc_info=True)
        raise UpstreamFailureError("Object store read failed") from exc

    async def _stream() -> AsyncIterator[bytes]:
        if first:
            yield first
        async for chunk in iterator:
            yield chunk

    return _stream()
