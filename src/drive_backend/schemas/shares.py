from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from drive_backend.schemas.files import FileItem


class SharePerson(BaseModel):
    role: Literal["owner", "grantee"]
    share_id: str | None = None
    user_id: int | None = None
    email: str | None = None
    name: str | None = None
    permission: str


class ShareInfoResponse(BaseModel):
    node_id: str
    access_level: str
    permission: str
    share_url: str
    people: list[SharePerson] = Field(default_factory=list)


class ShareSettingsRequest(BaseModel):
    # Left unset, each keeps its current value.
    access_level: str | None = Field(default=None, max_length=16)
    permission: str | None = Field(default=None, max_length=16)


class ShareSettingsResponse(BaseModel):
    node_id: str
    access_level: str
    permission: str
    updated_at: datetime


class CopyLinkResponse(BaseModel):
    share_url: str


class AddPeopleRequest(BaseModel):
    emails: list[str] = Field(min_length=1, max_length=50)
    permission: str = Field(default="viewer", max_length=16)


class GrantResultItem(BaseModel):
    email: str
    status: str
    share_id: str | None = None
    message: str | None = None


class AddPeopleResponse(BaseModel):
    results: list[GrantResultItem] = Field(default_factory=list)


class UpdatePersonRequest(BaseModel):
    permission: str = Field(max_length=16)


class NamedGrantResponse(BaseModel):
    share_id: str
    node_id: str
    permission: str
    updated_at: datetime


class PublicShareResponse(BaseModel):
    file: FileItem
    owner_name: str | None = None
    permission: str | None = None
    can_download: bool = True
