from __future__ import annotations

import re
import time
from collections.abc import Callable, Container


MAX_NUMBERED_ATTEMPTS = 1000

_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,16}$")


def normalize_name(name: str | None) -> str:
    return (name or "").strip()


def split_extension(name: str, *, is_folder: bool) -> tuple[str, str]:
    """Split `name` into (base, ".ext"); folders never have an extension.

    A leading dot (".env") is part of the base, not an extension.
    """
    if is_folder:
        return name, ""
    idx = name.rfind(".")
    if idx > 0:
        return name[:idx], name[idx:]
    return name, ""


def numbered_name(name: str, n: int | str, *, is_folder: bool) -> str:
    base, ext = split_extension(name, is_folder=is_folder)
    return f"{base} ({n}){ext}"


def next_available_name(
    name: str,
    *,
    is_folder: bool,
    taken: Container[str],
    clock_ms: Callable[[], int] | None = None,
) -> str:
    """First of `name`, `Base (1)Ext`, `Base (2)Ext`, ... not in `taken`.

    Gives up after MAX_NUMBERED_ATTEMPTS and falls back to a millisecond
    timestamp suffix so the search always terminates.
    """
    if name not in taken:
        return name

    for n in range(1, MAX_NUMBERED_ATTEMPTS + 1):
        candidate = numbered_name(name, n, is_folder=is_folder)
        if candidate not in taken:
            return candidate

    now_ms = clock_ms() if clock_ms is not None else int(time.time() * 1000)
    return numbered_name(name, now_ms, is_folder=is_folder)


def storage_extension(file_name: str) -> str:
    """Lowercased extension used in content keys ("" when absent or unsafe)."""
    parts = file_name.rsplit(".", 1)
    if len(parts) < 2:
        return ""
    ext = parts[1].lower()
    return ext if _EXTENSION_RE.match(ext) else ""
