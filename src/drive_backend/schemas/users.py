from __future__ import annotations

from pydantic import BaseModel


class MeResponse(BaseModel):
    user_id: int
    email: str
    name: str | None = None
