from __future__ import annotations

from .common import HealthResponse, OkResponse
from .errors import ErrorResponse
from .files import (
    BreadcrumbItem,
    BreadcrumbResponse,
    CreateFolderRequest,
    DownloadUrlResponse,
    FileItem,
    FileList,
    NodePatchRequest,
    PurgeResponse,
    SharedFileItem,
    SharedFileList,
    StarRequest,
    UploadCompleteRequest,
    UploadUrlRequest,
    UploadUrlResponse,
)
from .shares import (
    AddPeopleRequest,
    AddPeopleResponse,
    CopyLinkResponse,
    GrantResultItem,
    NamedGrantResponse,
    PublicShareResponse,
    ShareInfoResponse,
    SharePerson,
    ShareSettingsRequest,
    ShareSettingsResponse,
    UpdatePersonRequest,
)
from .storage import StorageUsageResponse
from .users import MeResponse

__all__ = [
    "AddPeopleRequest",
    "AddPeopleResponse",
    "BreadcrumbItem",
    "BreadcrumbResponse",
    "CopyLinkResponse",
    "CreateFolderRequest",
    "DownloadUrlResponse",
    "ErrorResponse",
    "FileItem",
    "FileList",
    "GrantResultItem",
    "HealthResponse",
    "MeResponse",
    "NamedGrantResponse",
    "NodePatchRequest",
    "OkResponse",
    "PublicShareResponse",
    "PurgeResponse",
    "SharePerson",
    "ShareSettingsRequest",
    "ShareSettingsResponse",
    "SharedFileItem",
    "SharedFileList",
    "StarRequest",
    "StorageUsageResponse",
    "UpdatePersonRequest",
    "UploadCompleteRequest",
    "UploadUrlRequest",
    "UploadUrlResponse",
]
