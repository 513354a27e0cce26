from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gruff.api import deps
from gruff.models.link import Link
from gruff.schemas.acl import AclResponse, SetAclRequest
from gruff.schemas.common import Page
from gruff.schemas.links import LinkCreate, LinkHistoryItem, LinkOut, LinkUpdate
from gruff.services import links as link_service
from gruff.services import resources

router = APIRouter(prefix="/links", tags=["links"])


@router.get("", response_model=Page[LinkOut], summary="List readable links")
async def list_links(
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = Query(None),
    type_id: Optional[str] = Query(None),
    source_entity_id: Optional[str] = Query(None),
    target_entity_id: Optional[str] = Query(None),
    include_deleted: bool = Query(False),
    user_id: Optional[str] = Depends(deps.get_optional_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> Page[LinkOut]:
    page = await link_service.list_links(
        db,
        user_id,
        limit=deps.page_limit(limit),
        cursor=cursor,
        type_id=type_id,
        source_entity_id=source_entity_id,
        target_entity_id=target_entity_id,
        include_deleted=include_deleted,
    )
    return Page[LinkOut](
        items=[LinkOut.model_validate(row) for row in page.items],
        has_more=page.has_more,
        next_cursor=page.next_cursor,
    )


@router.post("", response_model=LinkOut, status_code=201, summary="Create a link")
async def create_link(
    payload: LinkCreate,
    user_id: str = Depends(deps.require_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LinkOut:
    return await link_service.create_link(db, payload, user_id)


@router.get("/{link_id}", response_model=LinkOut, summary="Get the latest version of a link")
async def get_link(
    link_id: str,
    user_id: Optional[str] = Depends(deps.get_optional_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LinkOut:
    return await link_service.get_link(db, link_id, user_id)


@router.put("/{link_id}", response_model=LinkOut, summary="Update link properties")
async def update_link(
    link_id: str,
    payload: LinkUpdate,
    user_id: str = Depends(deps.require_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LinkOut:
    return await link_service.update_link(db, link_id, payload, user_id)


@router.delete("/{link_id}", response_model=LinkOut, summary="Soft delete a link")
async def delete_link(
    link_id: str,
    user_id: str = Depends(deps.require_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LinkOut:
    return await resources.delete_resource(db, Link, link_id, user_id)


@router.post("/{link_id}/restore", response_model=LinkOut, summary="Restore a deleted link")
async def restore_link(
    link_id: str,
    user_id: str = Depends(deps.require_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LinkOut:
    return await resources.restore_resource(db, Link, link_id, user_id)


@router.get("/{link_id}/versions", response_model=list[LinkOut], summary="List all versions")
async def list_versions(
    link_id: str,
    user_id: Optional[str] = Depends(deps.get_optional_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[LinkOut]:
    return await resources.list_versions(db, Link, link_id, user_id)


@router.get("/{link_id}/versions/{version}", response_model=LinkOut, summary="Get a specific version")
async def get_version(
    link_id: str,
    version: int = Path(..., ge=1),
    user_id: Optional[str] = Depends(deps.get_optional_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LinkOut:
    return await resources.get_resource_version(db, Link, link_id, version, user_id)


@router.get(
    "/{link_id}/history",
    response_model=list[LinkHistoryItem],
    summary="Version history with property diffs",
)
async def get_history(
    link_id: str,
    user_id: Optional[str] = Depends(deps.get_optional_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[LinkHistoryItem]:
    history = await resources.get_history(db, Link, link_id, user_id)
    return [
        LinkHistoryItem(**LinkOut.model_validate(row).model_dump(), diff=diff)
        for row, diff in history
    ]


@router.get("/{link_id}/acl", response_model=AclResponse, summary="Get the link ACL")
async def get_acl(
    link_id: str,
    user_id: Optional[str] = Depends(deps.get_optional_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AclResponse:
    return await resources.get_resource_acl(db, Link, link_id, user_id)


@router.put("/{link_id}/acl", response_model=AclResponse, summary="Replace the link ACL")
async def set_acl(
    link_id: str,
    payload: SetAclRequest,
    user_id: str = Depends(deps.require_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AclResponse:
    return await resources.replace_resource_acl(db, Link, link_id, payload.entries, user_id)
