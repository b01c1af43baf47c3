from __future__ import annotations

from pathlib import Path
from typing import cast
from urllib.parse import urlsplit

import httpx
import pytest
from alembic import command
from alembic.config import Config

from drive_backend.config import settings
from drive_backend.db import reset_engine_cache, session_scope
from drive_backend.main import app  # pyright: ignore[reportMissingTypeStubs]
from drive_backend.models import User


def _make_async_client() -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


def _alembic_upgrade_head() -> None:
    cfg = Config("alembic.ini")
    command.upgrade(cfg, "head")


async def _seed_user(email: str, token: str) -> int:
    async with session_scope() as session:
        user = User(email=email, name=email.split("@")[0], api_token=token, is_active=True)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        assert user.id is not None
        return int(user.id)


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _path_and_query(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.path}?{parts.query}"


@pytest.mark.anyio
async def test_files_lifecycle_via_api(tmp_path: Path):
    old_db = settings.database_url
    old_dir = settings.local_storage_dir
    old_api_base = settings.api_base_url
    try:
        settings.database_url = f"sqlite:///{tmp_path / 'test-files.db'}"
        settings.local_storage_dir = str(tmp_path / "objects")
        settings.api_base_url = "http://test"
        reset_engine_cache()
        _alembic_upgrade_head()
        await _seed_user("owner@example.com", "tok-owner")

        h = _auth("tok-owner")
        async with _make_async_client() as client:
            r = await client.post("/api/v1/files/folders", headers=h, json={"name": "Docs"})
            assert r.status_code == 201
            docs_id = cast(str, r.json()["id"])

            r_dup = await client.post("/api/v1/files/folders", headers=h, json={"name": "Docs"})
            assert r_dup.status_code == 409
            assert r_dup.json()["error"] == "name_conflict"

            r_up = await client.post(
                "/api/v1/files/upload",
                headers=h,
                data={"parent_id": docs_id},
                files={"file": ("notes.txt", b"hello world", "text/plain")},
            )
            assert r_up.status_code == 201
            file_body = cast(dict[str, object], r_up.json())
            file_id = cast(str, file_body["id"])
            assert file_body["parent_id"] == docs_id
            assert file_body["size_bytes"] == 11

            r_list = await client.get("/api/v1/files", headers=h, params={"parent_id": docs_id})
            assert r_list.status_code == 200
            assert [i["name"] for i in r_list.json()["items"]] == ["notes.txt"]

            r_root = await client.get("/api/v1/files", headers=h)
            assert [i["name"] for i in r_root.json()["items"]] == ["Docs"]

            r_rec = await client.get(
                "/api/v1/files", headers=h, params={"recursive": "true", "type": "documents"}
            )
            assert [i["id"] for i in r_rec.json()["items"]] == [file_id]

            r_dl = await client.get(f"/api/v1/files/{file_id}/download", headers=h)
            assert r_dl.status_code == 200
            assert r_dl.content == b"hello world"
            assert "filename*=UTF-8''notes.txt" in r_dl.headers["content-disposition"]
            assert r_dl.headers["x-file-size"] == "11"

            r_path = await client.get(
                "/api/v1/files/path", headers=h, params={"folder_id": docs_id}
            )
            assert [i["name"] for i in r_path.json()["items"]] == ["Docs"]

            r_ren = await client.patch(
                f"/api/v1/files/{file_id}", headers=h, json={"name": "renamed.txt"}
            )
            assert r_ren.status_code == 200
            assert r_ren.json()["name"] == "renamed.txt"

            r_mv = await client.patch(f"/api/v1/files/{file_id}", headers=h, json={"parent_id": None})
            assert r_mv.status_code == 200
            assert r_mv.json()["parent_id"] is None

            r_cycle = await client.patch(
                f"/api/v1/files/{docs_id}", headers=h, json={"parent_id": docs_id}
            )
            assert r_cycle.status_code == 400
            assert r_cycle.json()["error"] == "invalid_operation"

            r_star = await client.patch(
                f"/api/v1/files/{file_id}/star", headers=h, json={"is_starred": True}
            )
            assert r_star.json()["is_starred"] is True
            r_starred = await client.get("/api/v1/files/starred", headers=h)
            assert [i["id"] for i in r_starred.json()["items"]] == [file_id]

            r_search = await client.get("/api/v1/files/search", headers=h, params={"q": "RENAMED"})
            assert [i["id"] for i in r_search.json()["items"]] == [file_id]

            r_copy = await client.post(f"/api/v1/files/{file_id}/duplicate", headers=h)
            assert r_copy.status_code == 201
            assert r_copy.json()["name"] == "renamed (1).txt"

            r_usage = await client.get("/api/v1/storage", headers=h)
            usage = r_usage.json()
            assert usage["used_bytes"] == 22
            assert usage["file_count"] == 2

            r_del = await client.delete(f"/api/v1/files/{file_id}", headers=h)
            assert r_del.status_code == 200
            r_trash = await client.get("/api/v1/files/trash", headers=h)
            assert [i["id"] for i in r_trash.json()["items"]] == [file_id]

            r_gone = await client.get(f"/api/v1/files/{file_id}", headers=h)
            assert r_gone.status_code == 404

            r_res = await client.post(f"/api/v1/files/{file_id}/restore", headers=h)
            assert r_res.status_code == 200
            assert r_res.json()["deleted_at"] is None

            _ = await client.delete(f"/api/v1/files/{file_id}", headers=h)
            r_purge = await client.delete(f"/api/v1/files/{file_id}/permanent", headers=h)
            assert r_purge.status_code == 200
            assert r_purge.json()["purged_ids"] == [file_id]

            r_purge2 = await client.delete(f"/api/v1/files/{file_id}/permanent", headers=h)
            assert r_purge2.status_code == 404
            assert r_purge2.json()["error"] == "not_found"
            assert r_purge2.headers.get("x-request-id")
    finally:
        settings.database_url = old_db
        settings.local_storage_dir = old_dir
        settings.api_base_url = old_api_base


@pytest.mark.anyio
async def test_direct_upload_through_signed_urls(tmp_path: Path):
    old_db = settings.database_url
    old_dir = settings.local_storage_dir
    old_api_base = settings.api_base_url
    try:
        settings.database_url = f"sqlite:///{tmp_path / 'test-direct.db'}"
        settings.local_storage_dir = str(tmp_path / "objects")
        settings.api_base_url = "http://test"
        reset_engine_cache()
        _alembic_upgrade_head()
        user_id = await _seed_user("owner@example.com", "tok-owner")

        h = _auth("tok-owner")
        async with _make_async_client() as client:
            r = await client.post(
                "/api/v1/files/upload-url",
                headers=h,
                json={"file_name": "Photo.JPG", "size_bytes": 3, "mime_type": "image/jpeg"},
            )
            assert r.status_code == 201
            body = cast(dict[str, object], r.json())
            file_obj = cast(dict[str, object], body["file"])
            file_id = cast(str, file_obj["id"])
            assert body["key"] == f"files/{user_id}/{file_id}.jpg"
            assert body["expires_in"] == 300
            headers = cast(dict[str, str], body["headers"])
            assert headers["x-amz-meta-originalname"] == "Photo.JPG"

            upload_url = cast(str, body["upload_url"])
            r_put = await client.put(_path_and_query(upload_url), content=b"abc")
            assert r_put.status_code == 204

            # A tampered signature is refused.
            r_bad = await client.put(_path_and_query(upload_url).replace("sig=", "sig=0"), content=b"x")
            assert r_bad.status_code == 403

            r_done = await client.post(
                "/api/v1/files/upload-complete", headers=h, json={"file_id": file_id}
            )
            assert r_done.status_code == 200

            r_url = await client.get(f"/api/v1/files/{file_id}/download-url", headers=h)
            assert r_url.status_code == 200
            r_get = await client.get(_path_and_query(cast(str, r_url.json()["url"])))
            assert r_get.status_code == 200
            assert r_get.content == b"abc"
    finally:
        settings.database_url = old_db
        settings.local_storage_dir = old_dir
        settings.api_base_url = old_api_base


@pytest.mark.anyio
async def test_quota_and_auth_errors(tmp_path: Path):
    old_db = settings.database_url
    old_dir = settings.local_storage_dir
    old_quota = settings.storage_quota_bytes
    try:
        settings.database_url = f"sqlite:///{tmp_path / 'test-quota.db'}"
        settings.local_storage_dir = str(tmp_path / "objects")
        settings.storage_quota_bytes = 10
        reset_engine_cache()
        _alembic_upgrade_head()
        await _seed_user("owner@example.com", "tok-owner")

        async with _make_async_client() as client:
            r_anon = await client.get("/api/v1/files")
            assert r_anon.status_code == 401
            assert r_anon.json()["error"] == "unauthorized"

            r_bad = await client.get("/api/v1/files", headers=_auth("nope"))
            assert r_bad.status_code == 401

            r = await client.post(
                "/api/v1/files/upload-url",
                headers=_auth("tok-owner"),
                json={"file_name": "big.bin", "size_bytes": 11},
            )
            assert r.status_code == 413
            body = cast(dict[str, object], r.json())
            assert body["error"] == "quota_exceeded"
            assert body["details"] == {"quota": 10, "used": 0, "required": 11}
            assert "Storage limit exceeded" in cast(str, body["message"])

            r_me = await client.get("/api/v1/me", headers=_auth("tok-owner"))
            assert r_me.json()["email"] == "owner@example.com"

            r_unknown = await client.get("/api/v1/nope", headers=_auth("tok-owner"))
            assert r_unknown.status_code == 404
            assert r_unknown.json()["error"] == "not_found"
    finally:
        settings.database_url = old_db
        settings.local_storage_dir = old_dir
        settings.storage_quota_bytes = old_quota


@pytest.mark.anyio
async def test_patch_rename_and_move_is_all_or_nothing(tmp_path: Path):
    old_db = settings.database_url
    old_dir = settings.local_storage_dir
    try:
        settings.database_url = f"sqlite:///{tmp_path / 'test-patch.db'}"
        settings.local_storage_dir = str(tmp_path / "objects")
        reset_engine_cache()
        _alembic_upgrade_head()
        await _seed_user("owner@example.com", "tok-owner")

        h = _auth("tok-owner")
        async with _make_async_client() as client:
            r_f = await client.post(
                "/api/v1/files/upload",
                headers=h,
                files={"file": ("f.txt", b"abcde", "text/plain")},
            )
            f_id = cast(str, r_f.json()["id"])
            r_d = await client.post("/api/v1/files/folders", headers=h, json={"name": "D"})
            d_id = cast(str, r_d.json()["id"])
            r_g = await client.post(
                "/api/v1/files/upload",
                headers=h,
                data={"parent_id": d_id},
                files={"file": ("g.txt", b"g", "text/plain")},
            )
            assert r_g.status_code == 201

            # Name taken in the destination: nothing changes.
            r_conflict = await client.patch(
                f"/api/v1/files/{f_id}", headers=h, json={"name": "g.txt", "parent_id": d_id}
            )
            assert r_conflict.status_code == 409
            assert r_conflict.json()["error"] == "name_conflict"
            r_same = await client.get(f"/api/v1/files/{f_id}", headers=h)
            assert r_same.json()["name"] == "f.txt"
            assert r_same.json()["parent_id"] is None
            assert r_same.json()["version"] == 1

            # A cycle rejects the rename that came with it.
            r_cycle = await client.patch(
                f"/api/v1/files/{d_id}", headers=h, json={"name": "E", "parent_id": d_id}
            )
            assert r_cycle.status_code == 400
            r_d_again = await client.get(f"/api/v1/files/{d_id}", headers=h)
            assert r_d_again.json()["name"] == "D"

            r_missing = await client.patch(
                f"/api/v1/files/{f_id}", headers=h, json={"name": "x.txt", "parent_id": "missing"}
            )
            assert r_missing.status_code == 404
            r_unchanged = await client.get(f"/api/v1/files/{f_id}", headers=h)
            assert r_unchanged.json()["name"] == "f.txt"

            r_both = await client.patch(
                f"/api/v1/files/{f_id}", headers=h, json={"name": "h.txt", "parent_id": d_id}
            )
            assert r_both.status_code == 200
            assert r_both.json()["name"] == "h.txt"
            assert r_both.json()["parent_id"] == d_id
            assert r_both.json()["version"] == 2

            r_empty = await client.patch(f"/api/v1/files/{f_id}", headers=h, json={})
            assert r_empty.status_code == 400

            r_dl = await client.get(f"/api/v1/files/{f_id}/download", headers=h)
            assert r_dl.status_code == 200
            assert r_dl.headers["x-file-size"] == "5"
            assert r_dl.headers["content-type"].startswith("text/plain")
    finally:
        settings.database_url = old_db
        settings.local_storage_dir = old_dir
