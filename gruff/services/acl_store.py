"""Canonical ACL storage.

ACLs are content-addressed: the same effective permission set always resolves
to the same ``acls`` row, found by the sha256 of its canonical entry list.
Rows are never mutated; a changed permission set produces (or reuses) another
ACL and the old one is left in place for reuse by hash.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gruff.core.errors import NotFoundError
from gruff.core.permissions import Permission, PrincipalType
from gruff.models.acl import Acl, AclEntry as AclEntryRow
from gruff.models.group import Group
from gruff.models.user import User
from gruff.schemas.acl import AclEntry, EnrichedAclEntry, PrincipalValidation
from gruff.services.versioning import V, find_latest_version, set_acl_version

logger = logging.getLogger(__name__)


def compute_acl_hash(entries: Iterable[AclEntry]) -> str:
    ordered = sorted(entries, key=AclEntry.sort_key)
    canonical = json.dumps([entry.canonical() for entry in ordered], separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def deduplicate_acl_entries(entries: Iterable[AclEntry]) -> list[AclEntry]:
    """Reduce entries to the effective permission set.

    Exact duplicates are dropped (first occurrence wins), then any ``read`` grant
    whose principal also holds ``write`` is dropped since write implies read.
    """
    seen: set[tuple[str, str, str]] = set()
    unique: list[AclEntry] = []
    for entry in entries:
        key = entry.sort_key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(entry)

    writers = {
        (entry.principal_type, entry.principal_id)
        for entry in unique
        if entry.permission is Permission.WRITE
    }
    return [
        entry
        for entry in unique
        if not (
            entry.permission is Permission.READ
            and (entry.principal_type, entry.principal_id) in writers
        )
    ]


async def _find_acl_id_by_hash(db: AsyncSession, digest: str) -> int | None:
    result = await db.execute(select(Acl.id).where(Acl.hash == digest))
    return result.scalar_one_or_none()


async def get_or_create_acl(db: AsyncSession, entries: Sequence[AclEntry]) -> int | None:
    """Return the id of the ACL holding exactly this permission set, creating it if needed.

    An empty entry list means public and returns None. The ACL row and its
    entries are committed as one unit; callers should invoke this before staging
    any other writes on the session.
    """
    if not entries:
        return None

    deduped = deduplicate_acl_entries(entries)
    digest = compute_acl_hash(deduped)

    existing = await _find_acl_id_by_hash(db, digest)
    if existing is not None:
        return existing

    acl = Acl(hash=digest)
    acl.entries = [
        AclEntryRow(
            principal_type=entry.principal_type.value,
            principal_id=entry.principal_id,
            permission=entry.permission.value,
        )
        for entry in deduped
    ]
    db.add(acl)
    try:
        await db.commit()
    except IntegrityError:
        # Another writer created the same canonical set first.
        await db.rollback()
        winner = await _find_acl_id_by_hash(db, digest)
        if winner is None:
            raise
        return winner

    logger.info("ACL created", extra={"acl_id": acl.id, "entry_count": len(deduped)})
    return acl.id


async def create_resource_acl(
    db: AsyncSession,
    creator_id: str,
    explicit_entries: Sequence[AclEntry] | None = None,
) -> int | None:
    """ACL for a newly created resource.

    ``None`` gives the creator sole write access, ``[]`` makes the resource public,
    and any other list is used as given with a creator write grant prepended
    when it is missing.
    """
    if explicit_entries is not None and len(explicit_entries) == 0:
        return None

    creator_entry = AclEntry(
        principal_type=PrincipalType.USER,
        principal_id=creator_id,
        permission=Permission.WRITE,
    )
    if explicit_entries is None:
        return await get_or_create_acl(db, [creator_entry])

    if creator_entry in explicit_entries:
        entries = list(explicit_entries)
    else:
        entries = [creator_entry, *explicit_entries]
    return await get_or_create_acl(db, entries)


async def get_acl_entries(db: AsyncSession, acl_id: int) -> list[AclEntry]:
    stmt = (
        select(AclEntryRow)
        .where(AclEntryRow.acl_id == acl_id)
        .order_by(AclEntryRow.principal_type, AclEntryRow.principal_id, AclEntryRow.permission)
    )
    result = await db.execute(stmt)
    return [AclEntry.model_validate(row) for row in result.scalars().all()]


def _ids_of(entries: Iterable[AclEntry], principal_type: PrincipalType) -> list[str]:
    return sorted({entry.principal_id for entry in entries if entry.principal_type is principal_type})


async def get_enriched_acl_entries(db: AsyncSession, acl_id: int) -> list[EnrichedAclEntry]:
    entries = await get_acl_entries(db, acl_id)
    if not entries:
        return []

    users: dict[str, tuple[str | None, str]] = {}
    user_ids = _ids_of(entries, PrincipalType.USER)
    if user_ids:
        stmt = select(User.id, User.display_name, User.email).where(User.id.in_(user_ids))
        for user_id, display_name, email in (await db.execute(stmt)).all():
            users[user_id] = (display_name, email)

    groups: dict[str, str] = {}
    group_ids = _ids_of(entries, PrincipalType.GROUP)
    if group_ids:
        stmt = select(Group.id, Group.name).where(Group.id.in_(group_ids))
        for group_id, name in (await db.execute(stmt)).all():
            groups[group_id] = name

    enriched: list[EnrichedAclEntry] = []
    for entry in entries:
        name: str | None = None
        email: str | None = None
        if entry.principal_type is PrincipalType.USER and entry.principal_id in users:
            display_name, email = users[entry.principal_id]
            name = display_name or email
        elif entry.principal_type is PrincipalType.GROUP:
            name = groups.get(entry.principal_id)
        enriched.append(
            EnrichedAclEntry(**entry.model_dump(), principal_name=name, principal_email=email)
        )
    return enriched


async def validate_acl_principals(
    db: AsyncSession, entries: Sequence[AclEntry]
) -> PrincipalValidation:
    """Check every referenced user/group exists; reports all missing ids, not just the first."""
    errors: list[str] = []

    user_ids = _ids_of(entries, PrincipalType.USER)
    if user_ids:
        result = await db.execute(select(User.id).where(User.id.in_(user_ids)))
        found = set(result.scalars().all())
        errors.extend(f"User not found: {user_id}" for user_id in user_ids if user_id not in found)

    group_ids = _ids_of(entries, PrincipalType.GROUP)
    if group_ids:
        result = await db.execute(select(Group.id).where(Group.id.in_(group_ids)))
        found = set(result.scalars().all())
        errors.extend(
            f"Group not found: {group_id}" for group_id in group_ids if group_id not in found
        )

    return PrincipalValidation(valid=not errors, errors=errors)


async def set_resource_acl(
    db: AsyncSession,
    model: type[V],
    resource_id: str,
    acl_id: int | None,
    user_id: str | None,
) -> V:
    """Point a resource at another ACL by appending a version; unchanged ACLs append nothing."""
    current = await find_latest_version(db, model, resource_id)
    if current is None:
        raise NotFoundError.for_resource(model.__name__)
    if current.acl_id == acl_id:
        return current
    return await set_acl_version(db, current, acl_id, user_id)
