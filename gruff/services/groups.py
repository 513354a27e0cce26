"""Group hierarchy: guarded membership edges and nested-membership resolution.

The ``group_members`` table doubles as the nesting graph (edges with
``member_type='group'``). Edges are only persisted after the cycle and depth
guards pass, so the graph stays acyclic and at most ``MAX_NESTING_DEPTH`` deep.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gruff.core.errors import ConflictError, NotFoundError
from gruff.core.permissions import PrincipalType
from gruff.models.acl import AclEntry as AclEntryRow
from gruff.models.group import Group, GroupMember
from gruff.models.user import User
from gruff.schemas.groups import EffectiveMember, GroupCreate, GroupUpdate
from gruff.utils.cache import bump_membership_version

logger = logging.getLogger(__name__)

MAX_NESTING_DEPTH = 10


async def _parent_group_ids(db: AsyncSession, group_id: str) -> list[str]:
    stmt = select(GroupMember.group_id).where(
        GroupMember.member_type == PrincipalType.GROUP.value,
        GroupMember.member_id == group_id,
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _child_group_ids(db: AsyncSession, group_id: str) -> list[str]:
    stmt = select(GroupMember.member_id).where(
        GroupMember.group_id == group_id,
        GroupMember.member_type == PrincipalType.GROUP.value,
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def would_create_cycle(
    db: AsyncSession, group_id: str, member_group_id: str, depth: int = 0
) -> bool:
    """True when making ``member_group_id`` a member of ``group_id`` would close a loop.

    Walks up from ``group_id`` through the groups that contain it; reaching the
    candidate member means a cycle. Walking past the depth limit also counts.
    """
    if depth >= MAX_NESTING_DEPTH:
        return True
    if group_id == member_group_id:
        return True

    for parent_id in await _parent_group_ids(db, group_id):
        if parent_id == member_group_id:
            return True
        if await would_create_cycle(db, parent_id, member_group_id, depth + 1):
            return True
    return False


async def get_group_nesting_depth(
    db: AsyncSession, group_id: str, visited: set[str] | None = None
) -> int:
    """Length of the deepest chain of child groups below ``group_id`` (0 for a leaf)."""
    visited = set() if visited is None else visited
    if group_id in visited:
        return 0
    visited.add(group_id)

    children = await _child_group_ids(db, group_id)
    if not children:
        return 0

    deepest = 0
    for child_id in children:
        deepest = max(deepest, await get_group_nesting_depth(db, child_id, set(visited)))
    return deepest + 1


async def get_group_ancestor_height(
    db: AsyncSession, group_id: str, visited: set[str] | None = None
) -> int:
    """Length of the longest chain of parent groups above ``group_id`` (0 for a root)."""
    visited = set() if visited is None else visited
    if group_id in visited:
        return 0
    visited.add(group_id)

    parents = await _parent_group_ids(db, group_id)
    if not parents:
        return 0

    highest = 0
    for parent_id in parents:
        highest = max(highest, await get_group_ancestor_height(db, parent_id, set(visited)))
    return highest + 1


async def get_group(db: AsyncSession, group_id: str) -> Group:
    group = await db.get(Group, group_id)
    if group is None:
        raise NotFoundError.for_resource("Group")
    return group


async def list_groups(db: AsyncSession, *, limit: int, offset: int = 0) -> list[Group]:
    stmt = select(Group).order_by(Group.name).offset(offset).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _name_taken(db: AsyncSession, name: str, exclude_id: str | None = None) -> bool:
    stmt = select(Group.id).where(func.lower(Group.name) == name.lower())
    if exclude_id is not None:
        stmt = stmt.where(Group.id != exclude_id)
    result = await db.execute(stmt)
    return result.first() is not None


def _name_conflict(name: str) -> ConflictError:
    return ConflictError(f"Group with name '{name}' already exists", code="GROUP_NAME_EXISTS")


async def create_group(db: AsyncSession, payload: GroupCreate, created_by: str | None) -> Group:
    if await _name_taken(db, payload.name):
        raise _name_conflict(payload.name)

    group = Group(name=payload.name, description=payload.description, created_by=created_by)
    db.add(group)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise _name_conflict(payload.name) from exc
    logger.info("Group created", extra={"group_id": group.id})
    return group


async def update_group(db: AsyncSession, group_id: str, payload: GroupUpdate) -> Group:
    group = await get_group(db, group_id)
    updates = payload.model_dump(exclude_unset=True)
    if "name" in updates and updates["name"] is not None and updates["name"] != group.name:
        if await _name_taken(db, updates["name"], exclude_id=group.id):
            raise _name_conflict(updates["name"])
        group.name = updates["name"]
    if "description" in updates:
        group.description = updates["description"]
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise _name_conflict(group.name) from exc
    return group


async def delete_group(db: AsyncSession, group_id: str) -> None:
    """Delete an empty, unreferenced group.

    Refuses while the group has members, belongs to another group, or is named
    by any ACL entry; ACLs are immutable so a dangling principal would never heal.
    """
    group = await get_group(db, group_id)

    result = await db.execute(
        select(func.count()).select_from(GroupMember).where(GroupMember.group_id == group.id)
    )
    if result.scalar_one() > 0:
        raise ConflictError(
            "Cannot delete group with members. Remove all members first.",
            code="GROUP_HAS_MEMBERS",
        )

    if await _parent_group_ids(db, group.id):
        raise ConflictError(
            "Cannot delete group that is a member of other groups. Remove from parent groups first.",
            code="GROUP_IS_MEMBER",
        )

    result = await db.execute(
        select(func.count())
        .select_from(AclEntryRow)
        .where(
            AclEntryRow.principal_type == PrincipalType.GROUP.value,
            AclEntryRow.principal_id == group.id,
        )
    )
    if result.scalar_one() > 0:
        raise ConflictError(
            "Cannot delete group that is referenced in ACLs.", code="GROUP_IN_ACL"
        )

    await db.delete(group)
    await db.commit()
    logger.info("Group deleted", extra={"group_id": group_id})


async def list_group_members(db: AsyncSession, group_id: str) -> list[GroupMember]:
    group = await get_group(db, group_id)
    stmt = (
        select(GroupMember)
        .where(GroupMember.group_id == group.id)
        .order_by(GroupMember.member_type, GroupMember.created_at, GroupMember.member_id)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def add_group_member(
    db: AsyncSession,
    group_id: str,
    member_type: PrincipalType,
    member_id: str,
    created_by: str | None,
) -> GroupMember:
    member_type = PrincipalType(member_type)
    group = await get_group(db, group_id)

    if member_type is PrincipalType.USER:
        if await db.get(User, member_id) is None:
            raise NotFoundError.for_resource("User")
    else:
        if await db.get(Group, member_id) is None:
            raise NotFoundError("Member group not found", code="MEMBER_GROUP_NOT_FOUND")

        if await would_create_cycle(db, group.id, member_id):
            raise ConflictError(
                "Adding this group would create a circular membership",
                code="CIRCULAR_MEMBERSHIP",
            )
        # The new edge joins the chain above the group to the chain below the member.
        ancestor_height = await get_group_ancestor_height(db, group.id)
        member_depth = await get_group_nesting_depth(db, member_id)
        if ancestor_height + member_depth + 1 > MAX_NESTING_DEPTH:
            raise ConflictError(
                "Cannot add group as member: would exceed maximum nesting depth "
                f"of {MAX_NESTING_DEPTH}",
                code="MAX_NESTING_DEPTH_EXCEEDED",
            )

    existing = await db.get(GroupMember, (group.id, member_type.value, member_id))
    if existing is not None:
        raise ConflictError("Member already exists in group", code="MEMBER_ALREADY_EXISTS")

    membership = GroupMember(
        group_id=group.id,
        member_type=member_type.value,
        member_id=member_id,
        created_by=created_by,
    )
    db.add(membership)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            "Member already exists in group", code="MEMBER_ALREADY_EXISTS"
        ) from exc

    await bump_membership_version()
    logger.info(
        "Group member added",
        extra={"group_id": group.id, "member_type": member_type.value, "member_id": member_id},
    )
    return membership


async def remove_group_member(
    db: AsyncSession, group_id: str, member_type: PrincipalType, member_id: str
) -> None:
    member_type = PrincipalType(member_type)
    group = await get_group(db, group_id)

    result = await db.execute(
        delete(GroupMember).where(
            GroupMember.group_id == group.id,
            GroupMember.member_type == member_type.value,
            GroupMember.member_id == member_id,
        )
    )
    if result.rowcount == 0:
        await db.rollback()
        raise NotFoundError("Member in group not found", code="MEMBER_NOT_FOUND")
    await db.commit()

    await bump_membership_version()
    logger.info(
        "Group member removed",
        extra={"group_id": group.id, "member_type": member_type.value, "member_id": member_id},
    )


async def _direct_members_with_names(
    db: AsyncSession, group_id: str
) -> list[tuple[str, str, str | None, str | None]]:
    memberships = (
        await db.execute(
            select(GroupMember.member_type, GroupMember.member_id)
            .where(GroupMember.group_id == group_id)
            .order_by(GroupMember.member_type, GroupMember.member_id)
        )
    ).all()

    user_ids = [mid for mtype, mid in memberships if mtype == PrincipalType.USER.value]
    group_ids = [mid for mtype, mid in memberships if mtype == PrincipalType.GROUP.value]

    users: dict[str, tuple[str | None, str]] = {}
    if user_ids:
        rows = await db.execute(
            select(User.id, User.display_name, User.email).where(User.id.in_(user_ids))
        )
        users = {uid: (display_name, email) for uid, display_name, email in rows.all()}

    groups: dict[str, str] = {}
    if group_ids:
        rows = await db.execute(select(Group.id, Group.name).where(Group.id.in_(group_ids)))
        groups = {gid: name for gid, name in rows.all()}

    named = []
    for mtype, mid in memberships:
        if mtype == PrincipalType.USER.value:
            display_name, email = users.get(mid, (None, None))
            named.append((mtype, mid, display_name, email))
        else:
            named.append((mtype, mid, groups.get(mid), None))
    return named


async def _collect_effective_members(
    db: AsyncSession, group_id: str, visited: set[str]
) -> list[EffectiveMember]:
    if group_id in visited:
        return []
    visited.add(group_id)

    members: list[EffectiveMember] = []
    for mtype, mid, name, email in await _direct_members_with_names(db, group_id):
        members.append(
            EffectiveMember(member_type=mtype, member_id=mid, name=name, email=email, path=[group_id])
        )
        if mtype == PrincipalType.GROUP.value:
            for nested in await _collect_effective_members(db, mid, set(visited)):
                members.append(nested.model_copy(update={"path": [group_id, *nested.path]}))
    return members


async def get_effective_members(db: AsyncSession, group_id: str) -> list[EffectiveMember]:
    """Every direct and nested member, each with the group path it was reached through."""
    group = await get_group(db, group_id)
    return await _collect_effective_members(db, group.id, set())
