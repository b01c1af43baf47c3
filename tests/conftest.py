from __future__ import annotations

import inspect
from collections.abc import AsyncGenerator

import pytest

from drive_backend.db import dispose_engine_cache, get_engine


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
async def _dispose_engine_per_test(  # pyright: ignore[reportUnusedFunction]
    anyio_backend: object,  # noqa: ARG001
) -> AsyncGenerator[None, None]:
    # The cached AsyncEngine belongs to this test's event loop; close it
    # before the loop goes away.
    _ = anyio_backend
    yield

    engine = get_engine() if get_engine.cache_info().currsize else None
    if engine is not None:
        result = engine.dispose()
        if inspect.isawaitable(result):
            await result

    dispose_engine_cache()


def pytest_sessionfinish(session: object, exitstatus: int) -> None:  # noqa: ARG001
    _ = session, exitstatus
    dispose_engine_cache()
