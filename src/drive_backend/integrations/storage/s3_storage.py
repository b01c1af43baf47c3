from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from botocore.config import Config
from starlette.concurrency import run_in_threadpool

from drive_backend.http_headers import build_content_disposition_attachment

from .object_storage import DEFAULT_CHUNK_SIZE


@dataclass(frozen=True)
class S3Config:
    endpoint_url: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    force_path_style: bool


class S3ObjectStorage:
    def __init__(
        self,
        *,
        endpoint_url: str,
        region: str,
        bucket: str,
        access_key_id: str,
        secret_access_key: str,
        force_path_style: bool,
    ) -> None:
        self._cfg = S3Config(
            endpoint_url=endpoint_url,
            region=region,
            bucket=bucket,
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            force_path_style=force_path_style,
        )

        import boto3

        addressing_style = "path" if force_path_style else "virtual"
        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            region_name=region or None,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": addressing_style},
            ),
        )

    @property
    def bucket(self) -> str:
        return self._cfg.bucket

    async def put_bytes(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        def _put() -> None:
            kwargs: dict[str, object] = {
                "Bucket": self._cfg.bucket,
                "Key": key,
                "Body": data,
            }
            if content_type:
                kwargs["ContentType"] = content_type
            if metadata:
                kwargs["Metadata"] = dict(metadata)
            self._client.put_object(**kwargs)

        await run_in_threadpool(_put)

    async def get_bytes(self, key: str) -> bytes:
        def _get() -> bytes:
            resp = self._client.get_object(Bucket=self._cfg.bucket, Key=key)
            body = resp.get("Body")
            # StreamingBody.read() is blocking; run in threadpool.
            return body.read() if body is not None else b""

        return await run_in_threadpool(_get)

    async def iter_chunks(
        self, key: str, *, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> AsyncIterator[bytes]:
        def _open() -> Any:
            return self._client.get_object(Bucket=self._cfg.bucket, Key=key).get("Body")

        body = await run_in_threadpool(_open)
        if body is None:
            return
        try:
            while True:
                chunk = await run_in_threadpool(body.read, chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            body.close()

    async def copy(
        self,
        source_key: str,
        dest_key: str,
        *,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        def _copy() -> None:
            kwargs: dict[str, object] = {
                "Bucket": self._cfg.bucket,
                "Key": dest_key,
                "CopySource": {"Bucket": self._cfg.bucket, "Key": source_key},
                "MetadataDirective": "REPLACE",
                "Metadata": dict(metadata or {}),
            }
            if content_type:
                kwargs["ContentType"] = content_type
            self._client.copy_object(**kwargs)

        await run_in_threadpool(_copy)

    async def delete(self, key: str) -> None:
        def _delete() -> None:
            self._client.delete_object(Bucket=self._cfg.bucket, Key=key)

        await run_in_threadpool(_delete)

    async def presign_get(self, key: str, *, expires_in: int, download_filename: str) -> str:
        def _sign() -> str:
            return self._client.generate_presigned_url(
                "get_object",
                Params={
                    "Bucket": self._cfg.bucket,
                    "Key": key,
                    "ResponseContentDisposition": build_content_disposition_attachment(
                        download_filename
                    ),
                },
                ExpiresIn=int(expires_in),
            )

        return await run_in_threadpool(_sign)

    async def presign_put(
        self,
        key: str,
        *,
        expires_in: int,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> str:
        def _sign() -> str:
            params: dict[str, object] = {
                "Bucket": self._cfg.bucket,
                "Key": key,
                "ContentType": content_type,
            }
            if metadata:
                params["Metadata"] = dict(metadata)
            return self._client.generate_presigned_url(
                "put_object",
                Params=params,
                ExpiresIn=int(expires_in),
            )

        return await run_in_threadpool(_sign)
