from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import cast

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from drive_backend.config import settings  # pyright: ignore[reportMissingTypeStubs]
from drive_backend.db import dispose_engine_cache  # pyright: ignore[reportMissingTypeStubs]
from drive_backend.error_handlers import register_error_handlers
from drive_backend.routers import (  # pyright: ignore[reportMissingTypeStubs]
    blobs,
    files,
    me,
    public,
    shares,
    storage,
)
from drive_backend.schemas import ErrorResponse, HealthResponse


class RequestIdMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app: ASGIApp = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id_header: bytes | None = None
        inbound_headers = cast(list[tuple[bytes, bytes]], scope.get("headers") or [])
        for key, value in inbound_headers:
            if key.lower() == b"x-request-id":
                value = value.strip()
                if value:
                    request_id_header = value
                break

        if request_id_header is None:
            request_id = str(uuid.uuid4())
            request_id_header = request_id.encode("ascii")
        else:
            # latin-1 is a 1-1 mapping for bytes -> str.
            request_id = request_id_header.decode("latin-1")

        scope.setdefault("state", {})["request_id"] = request_id

        async def send_wrapper(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers = cast(list[tuple[bytes, bytes]], message.get("headers", []))
                headers = [(k, v) for (k, v) in headers if k.lower() != b"x-request-id"]
                headers.append((b"x-request-id", request_id_header))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    yield
    # Ensure sqlite/aiosqlite worker threads don't keep the process alive.
    dispose_engine_cache()


app = FastAPI(title=settings.app_name, lifespan=_lifespan)

app.add_middleware(RequestIdMiddleware)


logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

logger = logging.getLogger(__name__)
for msg in settings.security_warnings():
    logger.warning("SECURITY WARNING: %s", msg)


origins = settings.cors_origins_list()
if origins == ["*"]:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        # Bearer auth only; no cookies cross-origin.
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id", "Content-Disposition", "X-File-Size"],
    )
elif origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id", "Content-Disposition", "X-File-Size"],
    )


register_error_handlers(app)


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse()


app.include_router(me.router, prefix=settings.api_prefix)
app.include_router(storage.router, prefix=settings.api_prefix)
app.include_router(files.router, prefix=settings.api_prefix)
app.include_router(shares.router, prefix=settings.api_prefix)
app.include_router(public.router, prefix=settings.api_prefix)
app.include_router(blobs.router, prefix=settings.api_prefix, include_in_schema=False)


@app.api_route(
    f"{settings.api_prefix.rstrip('/')}/{{path:path}}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
    include_in_schema=False,
)
async def _api_fallback_not_found(path: str) -> None:  # noqa: ARG001
    # Unknown API paths always answer with the JSON error shape.
    raise HTTPException(status_code=404, detail="Not Found")


def _ensure_components_schema(schema: dict[str, object], *, name: str, model) -> None:  # type: ignore[no-untyped-def]
    components = cast(dict[str, object], schema.setdefault("components", {}))
    schemas = cast(dict[str, object], components.setdefault("schemas", {}))
    if name in schemas:
        return
    schemas[name] = model.model_json_schema(ref_template="#/components/schemas/{model}")


def _patch_openapi(schema: dict[str, object]) -> dict[str, object]:
    _ensure_components_schema(schema, name="ErrorResponse", model=ErrorResponse)
    error_ref = {"$ref": "#/components/schemas/ErrorResponse"}

    paths = cast(dict[str, object], schema.get("paths") or {})
    for path_item_obj in paths.values():
        if not isinstance(path_item_obj, dict):
            continue
        path_item = cast(dict[str, object], path_item_obj)
        for method in ("get", "post", "put", "patch", "delete"):
            op_obj = path_item.get(method)
            if not isinstance(op_obj, dict):
                continue
            op = cast(dict[str, object], op_obj)
            responses = cast(dict[str, object], op.setdefault("responses", {}))

            # Document X-Request-Id response header (added by middleware).
            for resp_obj in responses.values():
                if not isinstance(resp_obj, dict):
                    continue
                headers = cast(dict[str, object], resp_obj.setdefault("headers", {}))
                headers.setdefault(
                    "X-Request-Id",
                    {
                        "schema": {"type": "string"},
                        "description": "Echoed or generated request id.",
                    },
                )

            _ = responses.setdefault(
                "default",
                {
                    "description": "Error",
                    "content": {"application/json": {"schema": error_ref}},
                },
            )
    return schema


def custom_openapi() -> dict[str, object]:
    if app.openapi_schema:
        return app.openapi_schema
    schema = get_openapi(title=app.title, version="0.1.0", routes=app.routes)
    app.openapi_schema = _patch_openapi(cast(dict[str, object], schema))
    return app.openapi_schema


app.openapi = custom_openapi  # type: ignore[method-assign]
