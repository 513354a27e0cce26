from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gruff.core.errors import NotFoundError
from gruff.core.permissions import Permission
from gruff.models.entity import Entity
from gruff.models.link import Link
from gruff.schemas.common import Page
from gruff.schemas.links import LinkCreate, LinkUpdate
from gruff.services import acl_store
from gruff.services.resources import list_resources, load_resource, validate_entries
from gruff.services.versioning import create_version, update_version


async def _live_entity_exists(db: AsyncSession, entity_id: str) -> bool:
    stmt = select(Entity.id).where(
        Entity.id == entity_id,
        Entity.is_latest.is_(True),
        Entity.is_deleted.is_(False),
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


async def create_link(db: AsyncSession, payload: LinkCreate, user_id: str) -> Link:
    """Link two live entities. Endpoints must be the current version of their chain."""
    if not await _live_entity_exists(db, payload.source_entity_id):
        raise NotFoundError(
            "Source entity not found or is deleted", code="SOURCE_ENTITY_NOT_FOUND"
        )
    if not await _live_entity_exists(db, payload.target_entity_id):
        raise NotFoundError(
            "Target entity not found or is deleted", code="TARGET_ENTITY_NOT_FOUND"
        )

    await validate_entries(db, payload.acl)
    acl_id = await acl_store.create_resource_acl(db, user_id, payload.acl)
    return await create_version(
        db,
        Link,
        {
            "type_id": payload.type_id,
            "source_entity_id": payload.source_entity_id,
            "target_entity_id": payload.target_entity_id,
            "properties": payload.properties,
        },
        user_id,
        acl_id=acl_id,
    )


async def get_link(db: AsyncSession, link_id: str, user_id: str | None) -> Link:
    return await load_resource(db, Link, link_id, user_id, Permission.READ)


async def list_links(
    db: AsyncSession,
    user_id: str | None,
    *,
    limit: int,
    cursor: str | None = None,
    type_id: str | None = None,
    source_entity_id: str | None = None,
    target_entity_id: str | None = None,
    include_deleted: bool = False,
) -> Page:
    conditions = []
    if type_id:
        conditions.append(Link.type_id == type_id)
    if source_entity_id:
        conditions.append(Link.source_entity_id == source_entity_id)
    if target_entity_id:
        conditions.append(Link.target_entity_id == target_entity_id)
    return await list_resources(
        db,
        Link,
        user_id,
        limit=limit,
        cursor=cursor,
        include_deleted=include_deleted,
        conditions=conditions,
    )


async def update_link(db: AsyncSession, link_id: str, payload: LinkUpdate, user_id: str) -> Link:
    current = await load_resource(db, Link, link_id, user_id, Permission.WRITE)
    return await update_version(db, current, {"properties": payload.properties}, user_id)
