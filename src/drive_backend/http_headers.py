from __future__ import annotations

from urllib.parse import quote


def sanitize_filename(filename: str | None, *, fallback: str = "download") -> str:
    v = (filename or "").strip()
    # Names never carry directories.
    v = v.split("/")[-1].split("\\")[-1]
    # No header injection.
    v = v.replace("\r", "").replace("\n", "").replace("\x00", "")
    if not v:
        v = fallback
    if len(v) > 255:
        v = v[:255]
    return v


def build_content_disposition_attachment(filename: str | None) -> str:
    """Content-Disposition for downloads.

    `filename=` is an ASCII fallback with quotes and backslashes escaped;
    `filename*=` (RFC 5987) carries the exact UTF-8 name.
    """

    name = sanitize_filename(filename)
    ascii_name = name.encode("ascii", errors="ignore").decode("ascii").strip() or "download"
    ascii_name = ascii_name.replace("\\", "\\\\").replace('"', '\\"')
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(name, safe='')}"


def build_download_headers(
    *,
    filename: str | None,
    file_size: int | None = None,
) -> dict[str, str]:
    """Headers for a proxied download.

    The stored size goes out as `X-File-Size` rather than Content-Length: for
    direct uploads it is the size the client declared, not a byte count.
    """
    headers = {
        "Content-Disposition": build_content_disposition_attachment(filename),
        "Cache-Control": "no-cache, no-store, must-revalidate",
    }
    if file_size is not None and file_size >= 0:
        headers["X-File-Size"] = str(int(file_size))
    return headers
