from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Literal


FileTypeCategory = Literal[
    "all",
    "folders",
    "documents",
    "spreadsheets",
    "presentations",
    "videos",
    "photos",
    "pdfs",
    "archives",
    "audio",
]

ModifiedWindow = Literal["all", "today", "last7days", "last30days", "thisyear", "lastyear"]

_DOCUMENT_MARKERS = (
    "text/",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml",
    "application/vnd.oasis.opendocument.text",
    "application/rtf",
)
_SPREADSHEET_MARKERS = (
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml",
    "application/vnd.oasis.opendocument.spreadsheet",
    "text/csv",
)
_PRESENTATION_MARKERS = (
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml",
    "application/vnd.oasis.opendocument.presentation",
)
_ARCHIVE_MARKERS = (
    "application/zip",
    "application/x-rar-compressed",
    "application/x-tar",
    "application/gzip",
    "application/x-7z-compressed",
)


def category_for_mime_type(mime_type: str | None) -> FileTypeCategory:
    # First match wins, so text/csv lands in documents.
    if not mime_type:
        return "all"
    t = mime_type.lower()
    if any(m in t for m in _DOCUMENT_MARKERS):
        return "documents"
    if any(m in t for m in _SPREADSHEET_MARKERS):
        return "spreadsheets"
    if any(m in t for m in _PRESENTATION_MARKERS):
        return "presentations"
    if t.startswith("video/"):
        return "videos"
    if t.startswith("image/"):
        return "photos"
    if t == "application/pdf":
        return "pdfs"
    if any(m in t for m in _ARCHIVE_MARKERS):
        return "archives"
    if t.startswith("audio/"):
        return "audio"
    return "all"


def modified_window_bounds(
    window: ModifiedWindow | None, *, now: datetime
) -> tuple[datetime | None, datetime | None]:
    """Inclusive (start, end) for an updated_at filter; (None, None) means no filter."""
    if window is None or window == "all":
        return None, None

    now = now.astimezone(timezone.utc)
    if window == "today":
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return start, start + timedelta(days=1) - timedelta(microseconds=1)
    if window == "last7days":
        return now - timedelta(days=7), None
    if window == "last30days":
        return now - timedelta(days=30), None
    if window == "thisyear":
        return datetime(now.year, 1, 1, tzinfo=timezone.utc), None
    if window == "lastyear":
        return (
            datetime(now.year - 1, 1, 1, tzinfo=timezone.utc),
            datetime(now.year - 1, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc),
        )
    return None, None
