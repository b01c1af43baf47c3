from __future__ import annotations

from pydantic import BaseModel


class StorageUsageResponse(BaseModel):
    used_bytes: int
    limit_bytes: int
    remaining_bytes: int
    percentage: float
    file_count: int
