from __future__ import annotations

from dataclasses import dataclass

from sqlmodel.ext.asyncio.session import AsyncSession

from drive_backend.config import settings
from drive_backend.errors import QuotaExceededError
from drive_backend.repositories import nodes_repo


@dataclass(frozen=True)
class StorageUsage:
    used_bytes: int
    limit_bytes: int
    remaining_bytes: int
    percentage: float
    file_count: int


async def get_usage(session: AsyncSession, *, user_id: int) -> StorageUsage:
    limit = int(settings.storage_quota_bytes)
    used = await nodes_repo.sum_live_file_bytes(session, user_id=user_id)
    file_count = await nodes_repo.count_live_files(session, user_id=user_id)
    percentage = round(used / limit * 100, 2) if limit > 0 else 0.0
    return StorageUsage(
        used_bytes=used,
        limit_bytes=limit,
        remaining_bytes=max(limit - used, 0),
        percentage=min(percentage, 100.0),
        file_count=file_count,
    )


async def ensure_capacity(session: AsyncSession, *, user_id: int, additional_bytes: int) -> None:
    """Raise QuotaExceededError when `additional_bytes` would cross the ceiling.

    Usage is the sum of live file sizes.
    """
    limit = int(settings.storage_quota_bytes)
    used = await nodes_repo.sum_live_file_bytes(session, user_id=user_id)
    if used + max(int(additional_bytes), 0) > limit:
        raise QuotaExceededError(quota=limit, used=used, required=int(additional_bytes))
