from types import SimpleNamespace

import pytest
from sqlalchemy import select

from conftest import add_member, make_group
from gruff.core.errors import ForbiddenError, NotFoundError
from gruff.core.permissions import Permission, PrincipalType, ResourceKind
from gruff.models.entity import Entity
from gruff.schemas.acl import AclEntry
from gruff.schemas.entities import EntityCreate
from gruff.services import acl_store, authz, entities, groups
from gruff.utils import cache


def _grant(principal_type: PrincipalType, principal_id: str, permission: Permission) -> AclEntry:
    return AclEntry(principal_type=principal_type, principal_id=principal_id, permission=permission)


@pytest.mark.asyncio
async def test_effective_groups_walk_up_nesting(db, bob) -> None:
    team = await make_group(db, "team")
    dept = await make_group(db, "dept")
    org = await make_group(db, "org")
    unrelated = await make_group(db, "unrelated")
    await groups.add_group_member(db, team.id, PrincipalType.USER, bob.id, None)
    await groups.add_group_member(db, dept.id, PrincipalType.GROUP, team.id, None)
    await groups.add_group_member(db, org.id, PrincipalType.GROUP, dept.id, None)

    assert await authz.compute_effective_groups(db, bob.id) == {team.id, dept.id, org.id}
    assert unrelated.id not in await authz.get_effective_groups_for_user(db, bob.id)


@pytest.mark.asyncio
async def test_effective_groups_tolerate_existing_cycle(db, bob) -> None:
    a = await make_group(db)
    b = await make_group(db)
    await add_member(db, a, PrincipalType.USER, bob.id)
    await add_member(db, a, PrincipalType.GROUP, b.id)
    await add_member(db, b, PrincipalType.GROUP, a.id)

    assert await authz.compute_effective_groups(db, bob.id) == {a.id, b.id}


@pytest.mark.asyncio
async def test_effective_groups_cached_until_membership_bump(db, bob) -> None:
    first = await make_group(db)
    second = await make_group(db)
    await add_member(db, first, PrincipalType.USER, bob.id)
    assert await authz.get_effective_groups_for_user(db, bob.id) == {first.id}

    # Direct insert skips the version bump, so the cached answer still stands.
    await add_member(db, second, PrincipalType.USER, bob.id)
    assert await authz.get_effective_groups_for_user(db, bob.id) == {first.id}
    assert await authz.get_effective_groups_for_user(db, bob.id, skip_cache=True) == {
        first.id,
        second.id,
    }

    await cache.bump_membership_version()
    assert await authz.get_effective_groups_for_user(db, bob.id) == {first.id, second.id}


@pytest.mark.asyncio
async def test_removing_membership_revokes_access(db, alice, bob) -> None:
    team = await make_group(db)
    await groups.add_group_member(db, team.id, PrincipalType.USER, bob.id, None)
    acl_id = await acl_store.get_or_create_acl(
        db,
        [
            _grant(PrincipalType.USER, alice.id, Permission.WRITE),
            _grant(PrincipalType.GROUP, team.id, Permission.READ),
        ],
    )
    assert await authz.has_permission_by_acl_id(db, acl_id, bob.id, Permission.READ) is True

    await groups.remove_group_member(db, team.id, PrincipalType.USER, bob.id)
    assert await authz.has_permission_by_acl_id(db, acl_id, bob.id, Permission.READ) is False


@pytest.mark.asyncio
async def test_accessible_acl_ids_write_implies_read(db, alice, bob) -> None:
    team = await make_group(db)
    await groups.add_group_member(db, team.id, PrincipalType.USER, bob.id, None)

    writable = await acl_store.get_or_create_acl(
        db, [_grant(PrincipalType.USER, bob.id, Permission.WRITE)]
    )
    readable = await acl_store.get_or_create_acl(
        db, [_grant(PrincipalType.GROUP, team.id, Permission.READ)]
    )
    foreign = await acl_store.get_or_create_acl(
        db, [_grant(PrincipalType.USER, alice.id, Permission.WRITE)]
    )

    assert await authz.get_accessible_acl_ids(db, bob.id, Permission.READ) == {writable, readable}
    assert await authz.get_accessible_acl_ids(db, bob.id, Permission.WRITE) == {writable}
    assert foreign not in await authz.get_accessible_acl_ids(db, bob.id, Permission.READ)


@pytest.mark.asyncio
async def test_public_acl_rules(db, alice) -> None:
    private = await acl_store.create_resource_acl(db, alice.id)

    assert await authz.has_permission_by_acl_id(db, None, alice.id, Permission.READ) is True
    assert await authz.has_permission_by_acl_id(db, None, alice.id, Permission.WRITE) is True
    assert await authz.has_permission_by_acl_id(db, None, None, Permission.READ) is True
    assert await authz.has_permission_by_acl_id(db, None, None, Permission.WRITE) is False
    assert await authz.has_permission_by_acl_id(db, private, None, Permission.READ) is False


@pytest.mark.asyncio
async def test_group_read_grant_scenario(db, alice, bob) -> None:
    team = await make_group(db, "G")
    await groups.add_group_member(db, team.id, PrincipalType.USER, bob.id, None)
    entity = await entities.create_entity(
        db,
        EntityCreate(
            type_id="doc",
            properties={"title": "plan"},
            acl=[_grant(PrincipalType.GROUP, team.id, Permission.READ)],
        ),
        alice.id,
    )

    assert await authz.has_permission(db, ResourceKind.ENTITY, entity.id, bob.id, Permission.READ)
    assert not await authz.has_permission(
        db, ResourceKind.ENTITY, entity.id, bob.id, Permission.WRITE
    )
    assert await authz.has_permission(
        db, ResourceKind.ENTITY, entity.id, alice.id, Permission.WRITE
    )
    with pytest.raises(ForbiddenError):
        await authz.require_permission(db, ResourceKind.ENTITY, entity.id, bob.id, Permission.WRITE)

    latest = await authz.require_permission(
        db, ResourceKind.ENTITY, entity.id, bob.id, Permission.READ
    )
    assert latest.id == entity.id


@pytest.mark.asyncio
async def test_has_permission_unknown_resource_is_false(db, alice) -> None:
    assert not await authz.has_permission(
        db, ResourceKind.LINK, "missing", alice.id, Permission.READ
    )
    with pytest.raises(NotFoundError) as exc:
        await authz.require_permission(db, ResourceKind.LINK, "missing", alice.id, Permission.READ)
    assert exc.value.code == "LINK_NOT_FOUND"


@pytest.mark.asyncio
async def test_filter_clause_without_grants_matches_public_only(db, alice) -> None:
    acl_filter = await authz.build_acl_filter_clause(db, alice.id, Permission.READ)
    assert acl_filter.use_filter is True
    assert acl_filter.where_clause == "acl_id IS NULL"
    assert acl_filter.bindings == []


@pytest.mark.asyncio
async def test_filter_clause_binds_accessible_ids(db, alice) -> None:
    first = await acl_store.create_resource_acl(db, alice.id)
    second = await acl_store.get_or_create_acl(
        db, [_grant(PrincipalType.USER, alice.id, Permission.READ)]
    )

    acl_filter = await authz.build_acl_filter_clause(db, alice.id, Permission.READ, "e.acl_id")
    assert acl_filter.use_filter is True
    assert acl_filter.where_clause == "(e.acl_id IS NULL OR e.acl_id IN (?, ?))"
    assert acl_filter.bindings == sorted([first, second])

    column_filter = await authz.build_acl_filter_clause(db, alice.id, Permission.READ, Entity.acl_id)
    assert column_filter.where_clause == "(acl_id IS NULL OR acl_id IN (?, ?))"
    assert column_filter.bindings == sorted([first, second])
    rows = (await db.execute(select(Entity).where(column_filter.clause))).scalars().all()
    assert rows == []


@pytest.mark.asyncio
async def test_filter_clause_falls_back_over_threshold(db, alice, monkeypatch) -> None:
    await acl_store.create_resource_acl(db, alice.id)
    await acl_store.get_or_create_acl(db, [_grant(PrincipalType.USER, alice.id, Permission.READ)])
    monkeypatch.setattr(authz, "MAX_ACL_IDS_FOR_IN_CLAUSE", 1)

    acl_filter = await authz.build_acl_filter_clause(db, alice.id, Permission.READ)
    assert acl_filter.use_filter is False
    assert acl_filter.clause is None
    assert len(acl_filter.accessible_acl_ids) == 2


def test_filter_by_acl_permission_accepts_mappings_and_objects() -> None:
    rows = [
        {"id": "public", "acl_id": None},
        {"id": "granted", "acl_id": 1},
        {"id": "denied", "acl_id": 2},
        {"id": "no-column"},
        SimpleNamespace(id="object-granted", acl_id=1),
        SimpleNamespace(id="object-denied", acl_id=3),
    ]
    kept = authz.filter_by_acl_permission(rows, {1})
    ids = [row["id"] if isinstance(row, dict) else row.id for row in kept]
    assert ids == ["public", "granted", "no-column", "object-granted"]
