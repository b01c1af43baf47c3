"""Domain error taxonomy.

Every error is an HTTPException carrying a stable `error` kind, so routers
and services raise the same objects and the unified handler renders them as
ErrorResponse without a translation layer.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class DriveError(HTTPException):
    status_code_default: int = status.HTTP_400_BAD_REQUEST
    error: str = "bad_request"

    def __init__(
        self,
        message: str,
        *,
        details: Any = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.message = message
        self.details = details
        detail: object = message
        if details is not None:
            detail = {"message": message, "details": details}
        super().__init__(status_code=self.status_code_default, detail=detail, headers=headers)


class NotFoundError(DriveError):
    status_code_default = status.HTTP_404_NOT_FOUND
    error = "not_found"


class NameConflictError(DriveError):
    status_code_default = status.HTTP_409_CONFLICT
    error = "name_conflict"


class ConcurrentModificationError(DriveError):
    status_code_default = status.HTTP_409_CONFLICT
    error = "conflict"


class InvalidOperationError(DriveError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    error = "invalid_operation"


class ForbiddenError(DriveError):
    status_code_default = status.HTTP_403_FORBIDDEN
    error = "forbidden"


class ShareExpiredError(DriveError):
    status_code_default = status.HTTP_410_GONE
    error = "gone"


class UpstreamFailureError(DriveError):
    status_code_default = status.HTTP_502_BAD_GATEWAY
    error = "upstream_error"


class QuotaExceededError(DriveError):
    status_code_default = status.HTTP_413_CONTENT_TOO_LARGE
    error = "quota_exceeded"

    def __init__(self, *, quota: int, used: int, required: int) -> None:
        self.quota = quota
        self.used = used
        self.required = required
        remaining_gb = max(quota - used, 0) / (1024 * 1024 * 1024)
        super().__init__(
            f"Storage limit exceeded. You have {remaining_gb:.2f} GB remaining. "
            "Please delete some files or upgrade your storage plan.",
            details={"quota": quota, "used": used, "required": required},
        )
