from __future__ import annotations

from pathlib import Path
from urllib.parse import unquote


def _canonical_postgres(url: str) -> str:
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]
    if url.startswith("postgresql+psycopg2://"):
        return url.replace("postgresql+psycopg2://", "postgresql+psycopg://", 1)
    return url


def normalize_database_url_for_async(database_url: str) -> str:
    """Map DATABASE_URL onto the async drivers used by the app.

    - SQLite: sqlite+aiosqlite://
    - PostgreSQL: postgresql+psycopg:// (psycopg 3 speaks asyncio natively)
    """
    url = (database_url or "").strip()
    if not url:
        return url
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return _canonical_postgres(url)


def normalize_database_url_for_alembic(database_url: str) -> str:
    """Alembic runs migrations on a sync engine, so strip async sqlite drivers."""
    url = (database_url or "").strip()
    if not url:
        return url
    if url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite+aiosqlite://", "sqlite://", 1)
    return _canonical_postgres(url)


def sqlite_file_path(database_url: str) -> Path | None:
    url = (database_url or "").strip().split("#", 1)[0].split("?", 1)[0]
    if not url.lower().startswith("sqlite") or url.endswith(":memory:"):
        return None

    sep = url.find("://")
    if sep == -1:
        return None

    # sqlite:///rel.db -> "/rel.db", sqlite:////abs.db -> "//abs.db"
    rest = url[sep + 3 :]
    file_path = unquote(rest[1:] if rest.startswith("/") else rest)
    if not file_path or file_path == ":memory:":
        return None
    return Path(file_path)


def ensure_sqlite_parent_dir(database_url: str) -> None:
    path = sqlite_file_path(database_url)
    if path is None or str(path.parent) in {"", "."}:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
