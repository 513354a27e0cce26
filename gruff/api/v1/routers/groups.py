from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from gruff.api import deps
from gruff.core.permissions import PrincipalType
from gruff.models.user import User
from gruff.schemas.groups import (
    EffectiveMember,
    GroupCreate,
    GroupMemberCreate,
    GroupMemberOut,
    GroupOut,
    GroupUpdate,
)
from gruff.services import groups as group_service

router = APIRouter(prefix="/groups", tags=["groups"])


@router.get("", response_model=list[GroupOut], summary="List groups")
async def list_groups(
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    _: User = Depends(deps.require_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[GroupOut]:
    return await group_service.list_groups(db, limit=deps.page_limit(limit), offset=offset)


@router.post("", response_model=GroupOut, status_code=201, summary="Create a group")
async def create_group(
    payload: GroupCreate,
    current_user: User = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> GroupOut:
    return await group_service.create_group(db, payload, current_user.id)


@router.get("/{group_id}", response_model=GroupOut, summary="Get a group")
async def get_group(
    group_id: str,
    _: User = Depends(deps.require_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> GroupOut:
    return await group_service.get_group(db, group_id)


@router.patch("/{group_id}", response_model=GroupOut, summary="Update a group")
async def update_group(
    group_id: str,
    payload: GroupUpdate,
    _: User = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> GroupOut:
    return await group_service.update_group(db, group_id, payload)


@router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a group")
async def delete_group(
    group_id: str,
    _: User = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> Response:
    await group_service.delete_group(db, group_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{group_id}/members", response_model=list[GroupMemberOut], summary="List direct members")
async def list_members(
    group_id: str,
    _: User = Depends(deps.require_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[GroupMemberOut]:
    return await group_service.list_group_members(db, group_id)


@router.post(
    "/{group_id}/members",
    response_model=GroupMemberOut,
    status_code=201,
    summary="Add a user or group to a group",
)
async def add_member(
    group_id: str,
    payload: GroupMemberCreate,
    current_user: User = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> GroupMemberOut:
    return await group_service.add_group_member(
        db, group_id, payload.member_type, payload.member_id, current_user.id
    )


@router.delete(
    "/{group_id}/members/{member_type}/{member_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a member from a group",
)
async def remove_member(
    group_id: str,
    member_type: PrincipalType,
    member_id: str,
    _: User = Depends(deps.require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> Response:
    await group_service.remove_group_member(db, group_id, member_type, member_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{group_id}/effective-members",
    response_model=list[EffectiveMember],
    summary="List direct and nested members",
)
async def effective_members(
    group_id: str,
    _: User = Depends(deps.require_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[EffectiveMember]:
    return await group_service.get_effective_members(db, group_id)
