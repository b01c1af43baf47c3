from __future__ import annotations

import hashlib
import hmac
import shutil
import time
from collections.abc import AsyncIterator
from pathlib import Path, PurePosixPath
from urllib.parse import quote, urlencode

from starlette.concurrency import run_in_threadpool

from .object_storage import DEFAULT_CHUNK_SIZE


def _safe_join(root: Path, key: str) -> Path:
    parts = [p for p in PurePosixPath(key).parts if p not in {"/", ""}]
    if not parts or any(p in {"..", "."} for p in parts):
        raise ValueError("invalid storage key")
    return root.joinpath(*parts)


class LocalObjectStorage:
    """Filesystem object store.

    Grants are HMAC-signed, expiring URLs served by the `/blobs` routes, so
    clients follow the same direct-transfer flow as with S3.
    """

    def __init__(self, *, root_dir: str, signing_secret: str, base_url: str) -> None:
        self._root = Path(root_dir)
        self._secret = signing_secret.encode("utf-8")
        self._base_url = base_url.rstrip("/")

    def resolve_path(self, key: str) -> Path:
        return _safe_join(self._root, key)

    async def put_bytes(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        _ = content_type, metadata
        path = self.resolve_path(key)
        tmp_path = path.with_name(path.name + ".tmp")

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            _ = tmp_path.write_bytes(data)
            _ = tmp_path.replace(path)

        await run_in_threadpool(_write)

    async def get_bytes(self, key: str) -> bytes:
        path = self.resolve_path(key)
        return await run_in_threadpool(path.read_bytes)

    async def iter_chunks(
        self, key: str, *, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> AsyncIterator[bytes]:
        path = self.resolve_path(key)
        fh = await run_in_threadpool(path.open, "rb")
        try:
            while True:
                chunk = await run_in_threadpool(fh.read, chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            fh.close()

    async def copy(
        self,
        source_key: str,
        dest_key: str,
        *,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        _ = content_type, metadata
        src = self.resolve_path(source_key)
        dst = self.resolve_path(dest_key)
        tmp_path = dst.with_name(dst.name + ".tmp")

        def _copy() -> None:
            dst.parent.mkdir(parents=True, exist_ok=True)
            _ = shutil.copyfile(src, tmp_path)
            _ = tmp_path.replace(dst)

        await run_in_threadpool(_copy)

    async def delete(self, key: str) -> None:
        path = self.resolve_path(key)
        if not path.exists():
            return
        await run_in_threadpool(path.unlink)

    def sign(self, *, method: str, key: str, expires: int, extra: str = "") -> str:
        msg = f"{method.upper()}\n{key}\n{int(expires)}\n{extra}"
        return hmac.new(self._secret, msg.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify(self, *, method: str, key: str, expires: int, extra: str, signature: str) -> bool:
        if int(expires) < int(time.time()):
            return False
        expected = self.sign(method=method, key=key, expires=expires, extra=extra)
        return hmac.compare_digest(expected, signature or "")

    def _signed_url(self, *, method: str, key: str, expires_in: int, extra_name: str, extra: str) -> str:
        expires = int(time.time()) + int(expires_in)
        sig = self.sign(method=method, key=key, expires=expires, extra=extra)
        query = urlencode({"expires": expires, extra_name: extra, "sig": sig})
        return f"{self._base_url}/blobs/{quote(key)}?{query}"

    async def presign_get(self, key: str, *, expires_in: int, download_filename: str) -> str:
        _ = self.resolve_path(key)
        return self._signed_url(
            method="GET",
            key=key,
            expires_in=expires_in,
            extra_name="filename",
            extra=download_filename,
        )

    async def presign_put(
        self,
        key: str,
        *,
        expires_in: int,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> str:
        _ = metadata
        _ = self.resolve_path(key)
        return self._signed_url(
            method="PUT",
            key=key,
            expires_in=expires_in,
            extra_name="content_type",
            extra=content_type,
        )
