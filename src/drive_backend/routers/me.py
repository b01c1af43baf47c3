from __future__ import annotations

from fastapi import APIRouter, Depends

from drive_backend.deps import get_current_principal
from drive_backend.domain.access import Principal
from drive_backend.schemas import MeResponse

router = APIRouter(prefix="/me", tags=["me"])


@router.get("", response_model=MeResponse)
async def get_me(principal: Principal = Depends(get_current_principal)) -> MeResponse:
    return MeResponse(user_id=principal.user_id, email=principal.email, name=principal.name)
