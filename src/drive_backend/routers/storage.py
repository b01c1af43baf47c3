from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from drive_backend.db import get_session
from drive_backend.deps import get_current_principal
from drive_backend.domain.access import Principal
from drive_backend.schemas import StorageUsageResponse
from drive_backend.services import quota_service

router = APIRouter(tags=["storage"])


@router.get("/storage", response_model=StorageUsageResponse)
async def get_storage_usage(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> StorageUsageResponse:
    usage = await quota_service.get_usage(session, user_id=principal.user_id)
    return StorageUsageResponse(
        used_bytes=usage.used_bytes,
        limit_bytes=usage.limit_bytes,
        remaining_bytes=usage.remaining_bytes,
        percentage=usage.percentage,
        file_count=usage.file_count,
    )
