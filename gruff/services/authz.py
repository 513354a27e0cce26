"""Permission evaluation over canonical ACLs.

A caller's principals are their user id plus every group they belong to,
directly or through nesting. A resource with no ACL is public.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy import and_, column as sql_column, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from gruff.core.errors import ForbiddenError, NotFoundError
from gruff.core.permissions import Permission, PrincipalType, ResourceKind
from gruff.core.settings import settings
from gruff.models.acl import AclEntry as AclEntryRow
from gruff.models.entity import Entity
from gruff.models.group import GroupMember
from gruff.models.link import Link
from gruff.models.versioned import VersionedMixin
from gruff.services.versioning import find_latest_version
from gruff.utils.cache import effective_groups_cache_key, get_or_set

logger = logging.getLogger(__name__)

# Largest accessible-ACL set rendered as an IN (...) predicate; larger sets are
# filtered in process after an over-fetch.
MAX_ACL_IDS_FOR_IN_CLAUSE = 1000

RESOURCE_MODELS = {
    ResourceKind.ENTITY: Entity,
    ResourceKind.LINK: Link,
}
RESOURCE_KINDS = {model: kind for kind, model in RESOURCE_MODELS.items()}

_ACTIONS = {Permission.READ: "view", Permission.WRITE: "modify"}


async def compute_effective_groups(db: AsyncSession, user_id: str) -> set[str]:
    """Direct memberships of the user, then every ancestor group reached through nesting."""
    result = await db.execute(
        select(GroupMember.group_id).where(
            GroupMember.member_type == PrincipalType.USER.value,
            GroupMember.member_id == user_id,
        )
    )
    groups: set[str] = set(result.scalars().all())

    frontier = list(groups)
    while frontier:
        result = await db.execute(
            select(GroupMember.group_id).where(
                GroupMember.member_type == PrincipalType.GROUP.value,
                GroupMember.member_id.in_(frontier),
            )
        )
        frontier = [gid for gid in set(result.scalars().all()) if gid not in groups]
        groups.update(frontier)
    return groups


async def get_effective_groups_for_user(
    db: AsyncSession, user_id: str, *, skip_cache: bool = False
) -> set[str]:
    async def fetch() -> list[str]:
        return sorted(await compute_effective_groups(db, user_id))

    key = await effective_groups_cache_key(user_id)
    group_ids = await get_or_set(
        key,
        fetch,
        settings.effective_groups_cache_ttl_seconds,
        skip_cache=skip_cache,
    )
    return set(group_ids)


async def get_accessible_acl_ids(
    db: AsyncSession, user_id: str, permission: Permission
) -> set[int]:
    """Distinct ids of every ACL granting ``permission`` (or write, which implies read) to the user."""
    permission = Permission(permission)
    group_ids = await get_effective_groups_for_user(db, user_id)

    principal_match = and_(
        AclEntryRow.principal_type == PrincipalType.USER.value,
        AclEntryRow.principal_id == user_id,
    )
    if group_ids:
        principal_match = or_(
            principal_match,
            and_(
                AclEntryRow.principal_type == PrincipalType.GROUP.value,
                AclEntryRow.principal_id.in_(sorted(group_ids)),
            ),
        )

    stmt = (
        select(AclEntryRow.acl_id)
        .where(principal_match, AclEntryRow.permission.in_(permission.granted_by()))
        .distinct()
    )
    result = await db.execute(stmt)
    return set(result.scalars().all())


async def has_permission_by_acl_id(
    db: AsyncSession, acl_id: int | None, user_id: str | None, permission: Permission
) -> bool:
    if acl_id is None:
        # Public: anyone reads, any authenticated caller writes.
        return user_id is not None or Permission(permission) is Permission.READ
    if user_id is None:
        return False
    return acl_id in await get_accessible_acl_ids(db, user_id, permission)


async def has_permission(
    db: AsyncSession,
    resource_kind: ResourceKind,
    resource_id: str,
    user_id: str | None,
    permission: Permission,
) -> bool:
    """Check against the resource's current ACL, re-read from storage on every call."""
    row = await find_latest_version(db, RESOURCE_MODELS[ResourceKind(resource_kind)], resource_id)
    if row is None:
        return False
    return await has_permission_by_acl_id(db, row.acl_id, user_id, permission)


async def require_permission(
    db: AsyncSession,
    resource_kind: ResourceKind,
    resource_id: str,
    user_id: str | None,
    permission: Permission,
) -> VersionedMixin:
    """Latest row of the resource's chain, once the caller holds ``permission`` on it.

    Raises NotFoundError for an unknown id and ForbiddenError on denial.
    """
    kind = ResourceKind(resource_kind)
    permission = Permission(permission)
    model = RESOURCE_MODELS[kind]
    row = await find_latest_version(db, model, resource_id)
    if row is None:
        raise NotFoundError.for_resource(model.__name__)
    if not await has_permission_by_acl_id(db, row.acl_id, user_id, permission):
        logger.info(
            "Permission denied",
            extra={
                "resource_kind": kind.value,
                "resource_id": resource_id,
                "permission": permission.value,
            },
        )
        raise ForbiddenError(
            f"You do not have permission to {_ACTIONS[permission]} this {kind.value}"
        )
    return row


@dataclass
class AclFilter:
    """Row-level ACL predicate for a list query.

    ``use_filter`` False means the accessible set is too large for an IN clause:
    the caller must over-fetch and apply :func:`filter_by_acl_permission`.
    """

    use_filter: bool
    accessible_acl_ids: set[int]
    clause: ColumnElement[bool] | None = None
    where_clause: str | None = None
    bindings: list[int] = field(default_factory=list)


async def build_acl_filter_clause(
    db: AsyncSession,
    user_id: str,
    permission: Permission,
    acl_column: Any = "acl_id",
) -> AclFilter:
    """Build the ACL predicate for ``acl_column``.

    ``acl_column`` may be a column expression (used for ``clause``) or a name;
    ``where_clause`` always renders the predicate as SQL text using the
    column's name with one ``?`` placeholder per entry of ``bindings``.
    """
    accessible = await get_accessible_acl_ids(db, user_id, permission)

    if len(accessible) > MAX_ACL_IDS_FOR_IN_CLAUSE:
        logger.info(
            "ACL set exceeds IN clause limit; falling back to in-process filtering",
            extra={"accessible_acl_count": len(accessible)},
        )
        return AclFilter(use_filter=False, accessible_acl_ids=accessible)

    if isinstance(acl_column, str):
        column_name = acl_column
        column = sql_column(acl_column)
    else:
        column_name = acl_column.key
        column = acl_column

    if not accessible:
        return AclFilter(
            use_filter=True,
            accessible_acl_ids=accessible,
            clause=column.is_(None),
            where_clause=f"{column_name} IS NULL",
        )

    bindings = sorted(accessible)
    placeholders = ", ".join("?" for _ in bindings)
    return AclFilter(
        use_filter=True,
        accessible_acl_ids=accessible,
        clause=or_(column.is_(None), column.in_(bindings)),
        where_clause=f"({column_name} IS NULL OR {column_name} IN ({placeholders}))",
        bindings=bindings,
    )


def _acl_id_of(row: Any) -> int | None:
    if isinstance(row, Mapping):
        return row.get("acl_id")
    return getattr(row, "acl_id", None)


def filter_by_acl_permission(rows: Iterable[Any], accessible_acl_ids: set[int]) -> list[Any]:
    """Keep rows that are public or carry an accessible ACL; input order is preserved."""
    kept = []
    for row in rows:
        acl_id = _acl_id_of(row)
        if acl_id is None or acl_id in accessible_acl_ids:
            kept.append(row)
    return kept
