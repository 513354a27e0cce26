from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gruff.api import deps
from gruff.models.entity import Entity
from gruff.schemas.acl import AclResponse, SetAclRequest
from gruff.schemas.common import Page
from gruff.schemas.entities import EntityCreate, EntityHistoryItem, EntityOut, EntityUpdate
from gruff.services import entities as entity_service
from gruff.services import resources

router = APIRouter(prefix="/entities", tags=["entities"])


@router.get("", response_model=Page[EntityOut], summary="List readable entities")
async def list_entities(
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = Query(None),
    type_id: Optional[str] = Query(None),
    created_by: Optional[str] = Query(None),
    include_deleted: bool = Query(False),
    user_id: Optional[str] = Depends(deps.get_optional_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> Page[EntityOut]:
    page = await entity_service.list_entities(
        db,
        user_id,
        limit=deps.page_limit(limit),
        cursor=cursor,
        type_id=type_id,
        created_by=created_by,
        include_deleted=include_deleted,
    )
    return Page[EntityOut](
        items=[EntityOut.model_validate(row) for row in page.items],
        has_more=page.has_more,
        next_cursor=page.next_cursor,
    )


@router.post("", response_model=EntityOut, status_code=201, summary="Create an entity")
async def create_entity(
    payload: EntityCreate,
    user_id: str = Depends(deps.require_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> EntityOut:
    return await entity_service.create_entity(db, payload, user_id)


@router.get("/{entity_id}", response_model=EntityOut, summary="Get the latest version of an entity")
async def get_entity(
    entity_id: str,
    user_id: Optional[str] = Depends(deps.get_optional_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> EntityOut:
    return await entity_service.get_entity(db, entity_id, user_id)


@router.put("/{entity_id}", response_model=EntityOut, summary="Update entity properties")
async def update_entity(
    entity_id: str,
    payload: EntityUpdate,
    user_id: str = Depends(deps.require_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> EntityOut:
    return await entity_service.update_entity(db, entity_id, payload, user_id)


@router.delete("/{entity_id}", response_model=EntityOut, summary="Soft delete an entity")
async def delete_entity(
    entity_id: str,
    user_id: str = Depends(deps.require_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> EntityOut:
    return await resources.delete_resource(db, Entity, entity_id, user_id)


@router.post("/{entity_id}/restore", response_model=EntityOut, summary="Restore a deleted entity")
async def restore_entity(
    entity_id: str,
    user_id: str = Depends(deps.require_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> EntityOut:
    return await resources.restore_resource(db, Entity, entity_id, user_id)


@router.get("/{entity_id}/versions", response_model=list[EntityOut], summary="List all versions")
async def list_versions(
    entity_id: str,
    user_id: Optional[str] = Depends(deps.get_optional_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[EntityOut]:
    return await resources.list_versions(db, Entity, entity_id, user_id)


@router.get(
    "/{entity_id}/versions/{version}",
    response_model=EntityOut,
    summary="Get a specific version",
)
async def get_version(
    entity_id: str,
    version: int = Path(..., ge=1),
    user_id: Optional[str] = Depends(deps.get_optional_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> EntityOut:
    return await resources.get_resource_version(db, Entity, entity_id, version, user_id)


@router.get(
    "/{entity_id}/history",
    response_model=list[EntityHistoryItem],
    summary="Version history with property diffs",
)
async def get_history(
    entity_id: str,
    user_id: Optional[str] = Depends(deps.get_optional_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[EntityHistoryItem]:
    history = await resources.get_history(db, Entity, entity_id, user_id)
    return [
        EntityHistoryItem(**EntityOut.model_validate(row).model_dump(), diff=diff)
        for row, diff in history
    ]


@router.get("/{entity_id}/acl", response_model=AclResponse, summary="Get the entity ACL")
async def get_acl(
    entity_id: str,
    user_id: Optional[str] = Depends(deps.get_optional_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AclResponse:
    return await resources.get_resource_acl(db, Entity, entity_id, user_id)


@router.put("/{entity_id}/acl", response_model=AclResponse, summary="Replace the entity ACL")
async def set_acl(
    entity_id: str,
    payload: SetAclRequest,
    user_id: str = Depends(deps.require_user_id),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AclResponse:
    return await resources.replace_resource_acl(db, Entity, entity_id, payload.entries, user_id)
