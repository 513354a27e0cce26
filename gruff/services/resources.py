"""Operations shared by every versioned, ACL-protected resource kind."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from gruff.core.errors import ConflictError, PrincipalValidationError
from gruff.core.permissions import Permission
from gruff.schemas.acl import AclEntry, AclResponse
from gruff.schemas.common import Page
from gruff.schemas.versions import VersionDiff
from gruff.services import acl_store
from gruff.services.authz import (
    RESOURCE_KINDS,
    build_acl_filter_clause,
    filter_by_acl_permission,
    require_permission,
)
from gruff.services.versioning import (
    V,
    build_history,
    delete_version,
    get_version,
    get_version_chain,
    restore_version,
)

logger = logging.getLogger(__name__)

# Over-fetch multiplier when rows are filtered in process.
FALLBACK_OVERFETCH_FACTOR = 3


async def load_resource(
    db: AsyncSession,
    model: type[V],
    resource_id: str,
    user_id: str | None,
    permission: Permission,
) -> V:
    """Latest row of the chain containing ``resource_id``, after the permission check."""
    return await require_permission(db, RESOURCE_KINDS[model], resource_id, user_id, permission)


async def validate_entries(db: AsyncSession, entries: Sequence[AclEntry] | None) -> None:
    if not entries:
        return
    validation = await acl_store.validate_acl_principals(db, entries)
    if not validation.valid:
        raise PrincipalValidationError(validation.errors)


def encode_cursor(row: Any) -> str:
    return f"{row.created_at.isoformat()}|{row.id}"


def decode_cursor(cursor: str) -> tuple[datetime, str] | None:
    created_at, sep, row_id = cursor.partition("|")
    if not sep or not row_id:
        return None
    try:
        return datetime.fromisoformat(created_at), row_id
    except ValueError:
        return None


async def list_resources(
    db: AsyncSession,
    model: type[V],
    user_id: str | None,
    *,
    limit: int,
    cursor: str | None = None,
    include_deleted: bool = False,
    conditions: Sequence[Any] = (),
) -> Page:
    """Latest rows readable by the caller, newest first.

    Unauthenticated callers see public rows only. When the caller's accessible
    ACL set is too large for an IN clause the query over-fetches and filters in
    process, so a page may come back short while ``has_more`` is still true.
    """
    stmt = select(model).where(model.is_latest.is_(True), *conditions)

    acl_filter = None
    if user_id is None:
        stmt = stmt.where(model.acl_id.is_(None))
    else:
        acl_filter = await build_acl_filter_clause(db, user_id, Permission.READ, model.acl_id)
        if acl_filter.use_filter:
            stmt = stmt.where(acl_filter.clause)

    if not include_deleted:
        stmt = stmt.where(model.is_deleted.is_(False))

    if cursor:
        decoded = decode_cursor(cursor)
        if decoded is None:
            logger.warning("Invalid cursor format", extra={"cursor": cursor})
        else:
            created_at, row_id = decoded
            stmt = stmt.where(
                or_(
                    model.created_at < created_at,
                    and_(model.created_at == created_at, model.id < row_id),
                )
            )

    fallback = acl_filter is not None and not acl_filter.use_filter
    fetch_limit = (limit + 1) * FALLBACK_OVERFETCH_FACTOR if fallback else limit + 1
    stmt = stmt.order_by(model.created_at.desc(), model.id.desc()).limit(fetch_limit)

    result = await db.execute(stmt)
    scanned = list(result.scalars().all())
    rows = filter_by_acl_permission(scanned, acl_filter.accessible_acl_ids) if fallback else scanned

    items = rows[:limit]
    if len(rows) > limit:
        return Page(items=items, has_more=True, next_cursor=encode_cursor(items[-1]))
    if fallback and len(scanned) == fetch_limit:
        # Every readable row in the scanned window is on this page; resume after the window.
        return Page(items=items, has_more=True, next_cursor=encode_cursor(scanned[-1]))
    return Page(items=items, has_more=False)


async def delete_resource(
    db: AsyncSession, model: type[V], resource_id: str, user_id: str
) -> V:
    current = await load_resource(db, model, resource_id, user_id, Permission.WRITE)
    return await delete_version(db, current, user_id)


async def restore_resource(
    db: AsyncSession, model: type[V], resource_id: str, user_id: str
) -> V:
    current = await load_resource(db, model, resource_id, user_id, Permission.WRITE)
    return await restore_version(db, current, user_id)


async def list_versions(
    db: AsyncSession, model: type[V], resource_id: str, user_id: str | None
) -> list[V]:
    latest = await load_resource(db, model, resource_id, user_id, Permission.READ)
    return await get_version_chain(db, model, latest.id)


async def get_resource_version(
    db: AsyncSession,
    model: type[V],
    resource_id: str,
    version_number: int,
    user_id: str | None,
) -> V:
    # Access follows the current ACL, not the one stamped on the historical row.
    latest = await load_resource(db, model, resource_id, user_id, Permission.READ)
    return await get_version(db, model, latest.id, version_number)


async def get_history(
    db: AsyncSession, model: type[V], resource_id: str, user_id: str | None
) -> list[tuple[V, VersionDiff | None]]:
    chain = await list_versions(db, model, resource_id, user_id)
    return list(build_history(chain))


async def get_resource_acl(
    db: AsyncSession, model: type[V], resource_id: str, user_id: str | None
) -> AclResponse:
    row = await load_resource(db, model, resource_id, user_id, Permission.READ)
    if row.acl_id is None:
        return AclResponse(acl_id=None, entries=[])
    entries = await acl_store.get_enriched_acl_entries(db, row.acl_id)
    return AclResponse(acl_id=row.acl_id, entries=entries)


async def replace_resource_acl(
    db: AsyncSession,
    model: type[V],
    resource_id: str,
    entries: Sequence[AclEntry],
    user_id: str,
) -> AclResponse:
    """Swap the resource's ACL for the given entries; an empty list makes it public."""
    current = await load_resource(db, model, resource_id, user_id, Permission.WRITE)
    if current.is_deleted:
        label = model.__name__
        raise ConflictError(
            f"Cannot set ACL on deleted {label.lower()}. Use restore first.",
            code=f"{label.upper()}_DELETED",
        )
    await validate_entries(db, entries)

    acl_id = await acl_store.get_or_create_acl(db, list(entries))
    await acl_store.set_resource_acl(db, model, current.id, acl_id, user_id)

    enriched = await acl_store.get_enriched_acl_entries(db, acl_id) if acl_id is not None else []
    logger.info(
        "Resource ACL replaced",
        extra={"resource_id": current.id, "table": model.__tablename__, "acl_id": acl_id},
    )
    return AclResponse(acl_id=acl_id, entries=enriched)
