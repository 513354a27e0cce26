from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from gruff.core.permissions import Permission
from gruff.models.entity import Entity
from gruff.schemas.common import Page
from gruff.schemas.entities import EntityCreate, EntityUpdate
from gruff.services import acl_store
from gruff.services.resources import list_resources, load_resource, validate_entries
from gruff.services.versioning import create_version, update_version


async def create_entity(db: AsyncSession, payload: EntityCreate, user_id: str) -> Entity:
    await validate_entries(db, payload.acl)
    acl_id = await acl_store.create_resource_acl(db, user_id, payload.acl)
    return await create_version(
        db,
        Entity,
        {"type_id": payload.type_id, "properties": payload.properties},
        user_id,
        acl_id=acl_id,
    )


async def get_entity(db: AsyncSession, entity_id: str, user_id: str | None) -> Entity:
    return await load_resource(db, Entity, entity_id, user_id, Permission.READ)


async def list_entities(
    db: AsyncSession,
    user_id: str | None,
    *,
    limit: int,
    cursor: str | None = None,
    type_id: str | None = None,
    created_by: str | None = None,
    include_deleted: bool = False,
) -> Page:
    conditions = []
    if type_id:
        conditions.append(Entity.type_id == type_id)
    if created_by:
        conditions.append(Entity.created_by == created_by)
    return await list_resources(
        db,
        Entity,
        user_id,
        limit=limit,
        cursor=cursor,
        include_deleted=include_deleted,
        conditions=conditions,
    )


async def update_entity(
    db: AsyncSession, entity_id: str, payload: EntityUpdate, user_id: str
) -> Entity:
    current = await load_resource(db, Entity, entity_id, user_id, Permission.WRITE)
    return await update_version(db, current, {"properties": payload.properties}, user_id)
