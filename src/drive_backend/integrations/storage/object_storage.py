from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol

from drive_backend.config import settings


DEFAULT_CHUNK_SIZE = 1024 * 1024


class ObjectStorage(Protocol):
    async def put_bytes(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None: ...

    async def get_bytes(self, key: str) -> bytes: ...

    def iter_chunks(self, key: str, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]: ...

    async def copy(
        self,
        source_key: str,
        dest_key: str,
        *,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def presign_get(self, key: str, *, expires_in: int, download_filename: str) -> str: ...

    async def presign_put(
        self,
        key: str,
        *,
        expires_in: int,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> str: ...


def build_content_key(*, user_id: int, node_id: str, extension: str = "") -> str:
    # Keyed by the node id, never by the display name: renames never touch
    # stored bytes and user input can't steer the key.
    ext = extension.lstrip(".")
    suffix = f".{ext}" if ext else ""
    return f"files/{user_id}/{node_id}{suffix}"


def get_object_storage() -> ObjectStorage:
    # Default to local storage when S3 config is incomplete.
    if settings.s3_configured():
        from .s3_storage import S3ObjectStorage

        return S3ObjectStorage(
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
            bucket=settings.s3_bucket,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            force_path_style=settings.s3_force_path_style,
        )

    from .local_storage import LocalObjectStorage

    return LocalObjectStorage(
        root_dir=settings.local_storage_dir,
        signing_secret=settings.storage_signing_secret,
        base_url=settings.api_base_url.rstrip("/") + settings.api_prefix,
    )
