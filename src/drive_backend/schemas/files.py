from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class FileItem(BaseModel):
    id: str = Field(min_length=1, max_length=36)
    name: str
    is_folder: bool
    parent_id: str | None = None
    size_bytes: int = 0
    mime_type: str | None = None
    is_starred: bool = False
    version: int = 1
    created_at: datetime
    updated_at: datetime
    last_accessed_at: datetime | None = None
    deleted_at: datetime | None = None
    # Set only when the caller is not the owner.
    permission: str | None = None


class FileList(BaseModel):
    items: list[FileItem] = Field(default_factory=list)


class SharedFileItem(FileItem):
    owner_name: str | None = None
    owner_email: str | None = None


class SharedFileList(BaseModel):
    items: list[SharedFileItem] = Field(default_factory=list)


class CreateFolderRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    parent_id: str | None = Field(default=None, max_length=36)


class UploadUrlRequest(BaseModel):
    file_name: str = Field(min_length=1, max_length=255)
    size_bytes: int = Field(ge=0)
    mime_type: str | None = Field(default=None, max_length=255)
    parent_id: str | None = Field(default=None, max_length=36)


class UploadUrlResponse(BaseModel):
    file: FileItem
    upload_url: str
    method: str = "PUT"
    headers: dict[str, str] = Field(default_factory=dict)
    key: str
    expires_in: int


class UploadCompleteRequest(BaseModel):
    file_id: str = Field(min_length=1, max_length=36)


class NodePatchRequest(BaseModel):
    """Rename when `name` is given; move when `parent_id` is present (null = root)."""

    name: str | None = Field(default=None, max_length=255)
    parent_id: str | None = Field(default=None, max_length=36)


class StarRequest(BaseModel):
    is_starred: bool


class DownloadUrlResponse(BaseModel):
    url: str
    expires_in: int


class BreadcrumbItem(BaseModel):
    id: str
    name: str


class BreadcrumbResponse(BaseModel):
    items: list[BreadcrumbItem] = Field(default_factory=list)


class PurgeResponse(BaseModel):
    ok: bool = True
    purged_ids: list[str] = Field(default_factory=list)
    unreleased_keys: list[str] = Field(default_factory=list)
