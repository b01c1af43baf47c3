"""Share management for owners: link settings and named grants."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from drive_backend.db import get_session
from drive_backend.deps import get_current_principal
from drive_backend.domain.access import Principal
from drive_backend.schemas import (
    AddPeopleRequest,
    AddPeopleResponse,
    CopyLinkResponse,
    GrantResultItem,
    NamedGrantResponse,
    OkResponse,
    ShareInfoResponse,
    SharePerson,
    ShareSettingsRequest,
    ShareSettingsResponse,
    UpdatePersonRequest,
)
from drive_backend.services import sharing_service

router = APIRouter(prefix="/files/{node_id}/share", tags=["shares"])


@router.get("", response_model=ShareInfoResponse)
async def get_share_info(
    node_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> ShareInfoResponse:
    info = await sharing_service.get_share_info(
        session=session, principal=principal, node_id=node_id
    )
    return ShareInfoResponse(
        node_id=info.node_id,
        access_level=info.access_level,
        permission=info.permission,
        share_url=info.share_url,
        people=[
            SharePerson(
                role=p.role,
                share_id=p.share_id,
                user_id=p.user_id,
                email=p.email,
                name=p.name,
                permission=p.permission,
            )
            for p in info.people
        ],
    )


@router.patch("", response_model=ShareSettingsResponse)
async def update_share_settings(
    node_id: str,
    payload: ShareSettingsRequest,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> ShareSettingsResponse:
    share = await sharing_service.update_share_settings(
        session=session,
        principal=principal,
        node_id=node_id,
        access_level=payload.access_level,
        permission=payload.permission,
    )
    return ShareSettingsResponse(
        node_id=share.node_id,
        access_level=share.access_level,
        permission=share.permission,
        updated_at=share.updated_at,
    )


@router.get("/copy-link", response_model=CopyLinkResponse)
async def copy_link(
    node_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> CopyLinkResponse:
    url = await sharing_service.get_copy_link(session=session, principal=principal, node_id=node_id)
    return CopyLinkResponse(share_url=url)


@router.post("/people", response_model=AddPeopleResponse)
async def add_people(
    node_id: str,
    payload: AddPeopleRequest,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> AddPeopleResponse:
    results = await sharing_service.add_named_grants(
        session=session,
        principal=principal,
        node_id=node_id,
        emails=payload.emails,
        permission=payload.permission,
    )
    return AddPeopleResponse(
        results=[
            GrantResultItem(email=r.email, status=r.status, share_id=r.share_id, message=r.message)
            for r in results
        ]
    )


@router.patch("/people/{share_id}", response_model=NamedGrantResponse)
async def update_person(
    node_id: str,
    share_id: str,
    payload: UpdatePersonRequest,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> NamedGrantResponse:
    share = await sharing_service.update_named_grant(
        session=session,
        principal=principal,
        node_id=node_id,
        share_id=share_id,
        permission=payload.permission,
    )
    return NamedGrantResponse(
        share_id=share.id,
        node_id=share.node_id,
        permission=share.permission,
        updated_at=share.updated_at,
    )


@router.delete("/people/{share_id}", response_model=OkResponse)
async def remove_person(
    node_id: str,
    share_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
) -> OkResponse:
    await sharing_service.remove_named_grant(
        session=session, principal=principal, node_id=node_id, share_id=share_id
    )
    return OkResponse()
