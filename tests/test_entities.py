import pytest

from conftest import make_group, make_user
from gruff.core.errors import ConflictError, ForbiddenError, NotFoundError, PrincipalValidationError
from gruff.core.permissions import Permission, PrincipalType
from gruff.models.entity import Entity
from gruff.schemas.acl import AclEntry
from gruff.schemas.entities import EntityCreate, EntityUpdate
from gruff.services import authz, entities, groups, resources


def _grant(principal_type: PrincipalType, principal_id: str, permission: Permission) -> AclEntry:
    return AclEntry(principal_type=principal_type, principal_id=principal_id, permission=permission)


async def _create(db, user, acl=None, **properties) -> Entity:
    return await entities.create_entity(
        db, EntityCreate(type_id="doc", properties=properties, acl=acl), user.id
    )


@pytest.mark.asyncio
async def test_group_reader_cannot_write(db, alice, bob) -> None:
    team = await make_group(db)
    await groups.add_group_member(db, team.id, PrincipalType.USER, bob.id, None)
    entity = await _create(db, alice, acl=[_grant(PrincipalType.GROUP, team.id, Permission.READ)])

    assert (await entities.get_entity(db, entity.id, bob.id)).id == entity.id
    with pytest.raises(ForbiddenError):
        await entities.update_entity(db, entity.id, EntityUpdate(properties={"x": 1}), bob.id)

    updated = await entities.update_entity(db, entity.id, EntityUpdate(properties={"x": 1}), alice.id)
    assert updated.version == 2


@pytest.mark.asyncio
async def test_default_acl_is_creator_only(db, alice, bob) -> None:
    entity = await _create(db, alice)
    assert entity.acl_id is not None
    with pytest.raises(ForbiddenError):
        await entities.get_entity(db, entity.id, bob.id)
    with pytest.raises(ForbiddenError):
        await entities.get_entity(db, entity.id, None)


@pytest.mark.asyncio
async def test_public_entity_is_readable_anonymously(db, alice, bob) -> None:
    entity = await _create(db, alice, acl=[])
    assert entity.acl_id is None
    assert (await entities.get_entity(db, entity.id, None)).id == entity.id

    updated = await entities.update_entity(db, entity.id, EntityUpdate(properties={"by": "bob"}), bob.id)
    assert updated.created_by == bob.id


@pytest.mark.asyncio
async def test_unknown_principals_rejected_on_create(db, alice) -> None:
    with pytest.raises(PrincipalValidationError) as exc:
        await _create(db, alice, acl=[_grant(PrincipalType.GROUP, "ghost", Permission.READ)])
    assert exc.value.code == "INVALID_PRINCIPALS"
    assert exc.value.errors == ["Group not found: ghost"]


@pytest.mark.asyncio
async def test_get_resolves_historical_ids(db, alice) -> None:
    v1 = await _create(db, alice, n=1)
    v2 = await entities.update_entity(db, v1.id, EntityUpdate(properties={"n": 2}), alice.id)
    latest = await entities.get_entity(db, v1.id, alice.id)
    assert latest.id == v2.id
    assert latest.properties == {"n": 2}

    with pytest.raises(NotFoundError) as exc:
        await entities.get_entity(db, "missing", alice.id)
    assert exc.value.code == "ENTITY_NOT_FOUND"


@pytest.mark.asyncio
async def test_list_only_returns_readable_latest_rows(db, alice, bob) -> None:
    own = await _create(db, alice, name="own")
    public = await _create(db, bob, acl=[], name="public")
    await _create(db, bob, name="hidden")
    shared = await _create(
        db, bob, acl=[_grant(PrincipalType.USER, alice.id, Permission.READ)], name="shared"
    )
    await entities.update_entity(db, own.id, EntityUpdate(properties={"name": "own-2"}), alice.id)

    page = await entities.list_entities(db, alice.id, limit=10)
    names = sorted(row.properties["name"] for row in page.items)
    assert names == ["own-2", "public", "shared"]
    assert page.has_more is False

    anonymous = await entities.list_entities(db, None, limit=10)
    assert [row.id for row in anonymous.items] == [public.id]
    assert shared.id in {row.id for row in page.items}


@pytest.mark.asyncio
async def test_list_fallback_matches_filtered_query(db, alice, bob, monkeypatch) -> None:
    for i in range(3):
        await _create(db, alice, n=i)
    await _create(db, bob, acl=[], n="public")
    await _create(db, bob, n="hidden")

    filtered = await entities.list_entities(db, alice.id, limit=10)

    monkeypatch.setattr(authz, "MAX_ACL_IDS_FOR_IN_CLAUSE", 0)
    fallback = await entities.list_entities(db, alice.id, limit=10)

    assert [row.id for row in fallback.items] == [row.id for row in filtered.items]
    assert len(filtered.items) == 4


@pytest.mark.asyncio
async def test_list_fallback_pages_past_unreadable_rows(db, alice, bob, monkeypatch) -> None:
    own = await _create(db, alice, name="own")
    # More newer unreadable rows than one over-fetched window holds at limit=1.
    window = (1 + 1) * resources.FALLBACK_OVERFETCH_FACTOR
    for i in range(window + 1):
        await _create(db, bob, n=i)

    filtered = await entities.list_entities(db, alice.id, limit=1)
    assert [row.id for row in filtered.items] == [own.id]

    monkeypatch.setattr(authz, "MAX_ACL_IDS_FOR_IN_CLAUSE", 0)
    first = await entities.list_entities(db, alice.id, limit=1)
    assert first.items == []
    assert first.has_more is True
    assert first.next_cursor

    seen = []
    page = first
    while page.has_more:
        page = await entities.list_entities(db, alice.id, limit=1, cursor=page.next_cursor)
        seen.extend(row.id for row in page.items)
    assert seen == [own.id]


@pytest.mark.asyncio
async def test_list_excludes_deleted_unless_requested(db, alice) -> None:
    kept = await _create(db, alice, n=1)
    gone = await _create(db, alice, n=2)
    await resources.delete_resource(db, Entity, gone.id, alice.id)

    live = await entities.list_entities(db, alice.id, limit=10)
    assert [row.id for row in live.items] == [kept.id]

    everything = await entities.list_entities(db, alice.id, limit=10, include_deleted=True)
    assert len(everything.items) == 2


@pytest.mark.asyncio
async def test_list_paginates_with_cursor(db, alice) -> None:
    created = [await _create(db, alice, n=i) for i in range(5)]

    first = await entities.list_entities(db, alice.id, limit=2)
    assert first.has_more is True
    assert first.next_cursor

    second = await entities.list_entities(db, alice.id, limit=2, cursor=first.next_cursor)
    third = await entities.list_entities(db, alice.id, limit=2, cursor=second.next_cursor)
    assert third.has_more is False

    seen = [row.id for page in (first, second, third) for row in page.items]
    assert sorted(seen) == sorted(row.id for row in created)
    assert len(set(seen)) == 5


@pytest.mark.asyncio
async def test_list_filters_by_type(db, alice) -> None:
    await _create(db, alice, n=1)
    other = await entities.create_entity(
        db, EntityCreate(type_id="person", properties={}), alice.id
    )
    page = await entities.list_entities(db, alice.id, limit=10, type_id="person")
    assert [row.id for row in page.items] == [other.id]


@pytest.mark.asyncio
async def test_replace_acl_appends_version_and_can_go_public(db, alice, bob) -> None:
    entity = await _create(db, alice, n=1)

    response = await resources.replace_resource_acl(
        db,
        Entity,
        entity.id,
        [
            _grant(PrincipalType.USER, alice.id, Permission.WRITE),
            _grant(PrincipalType.USER, bob.id, Permission.READ),
        ],
        alice.id,
    )
    assert {e.principal_name for e in response.entries} == {"Alice", "Bob"}
    assert (await entities.get_entity(db, entity.id, bob.id)).version == 2

    public = await resources.replace_resource_acl(db, Entity, entity.id, [], alice.id)
    assert public.acl_id is None
    assert public.entries == []
    latest = await entities.get_entity(db, entity.id, None)
    assert latest.version == 3

    acl = await resources.get_resource_acl(db, Entity, entity.id, None)
    assert acl.acl_id is None


@pytest.mark.asyncio
async def test_replace_acl_requires_write_and_valid_principals(db, alice, bob) -> None:
    entity = await _create(db, alice, acl=[_grant(PrincipalType.USER, bob.id, Permission.READ)])

    with pytest.raises(ForbiddenError):
        await resources.replace_resource_acl(db, Entity, entity.id, [], bob.id)

    with pytest.raises(PrincipalValidationError):
        await resources.replace_resource_acl(
            db, Entity, entity.id, [_grant(PrincipalType.USER, "ghost", Permission.READ)], alice.id
        )


@pytest.mark.asyncio
async def test_replace_acl_on_deleted_entity_conflicts(db, alice) -> None:
    entity = await _create(db, alice)
    await resources.delete_resource(db, Entity, entity.id, alice.id)
    with pytest.raises(ConflictError) as exc:
        await resources.replace_resource_acl(db, Entity, entity.id, [], alice.id)
    assert exc.value.code == "ENTITY_DELETED"


@pytest.mark.asyncio
async def test_history_uses_current_acl(db, alice, bob) -> None:
    entity = await _create(db, alice, title="a")
    await entities.update_entity(db, entity.id, EntityUpdate(properties={"title": "b"}), alice.id)

    with pytest.raises(ForbiddenError):
        await resources.get_history(db, Entity, entity.id, bob.id)

    history = await resources.get_history(db, Entity, entity.id, alice.id)
    assert [row.version for row, _ in history] == [1, 2]
    assert history[1][1].changed == {"title": {"old": "a", "new": "b"}}

    v1 = await resources.get_resource_version(db, Entity, entity.id, 1, alice.id)
    assert v1.properties == {"title": "a"}


@pytest.mark.asyncio
async def test_restore_round_trip(db, alice) -> None:
    entity = await _create(db, alice, n=1)
    deleted = await resources.delete_resource(db, Entity, entity.id, alice.id)
    assert deleted.is_deleted is True

    # Deleted rows are still readable by id; they are only hidden from lists.
    assert (await entities.get_entity(db, entity.id, alice.id)).is_deleted is True

    restored = await resources.restore_resource(db, Entity, entity.id, alice.id)
    assert restored.is_deleted is False
    versions = await resources.list_versions(db, Entity, entity.id, alice.id)
    assert [v.version for v in versions] == [1, 2, 3]


@pytest.mark.asyncio
async def test_member_added_later_gains_access(db, alice) -> None:
    carol = await make_user(db, email="carol@example.com")
    team = await make_group(db)
    entity = await _create(db, alice, acl=[_grant(PrincipalType.GROUP, team.id, Permission.READ)])

    with pytest.raises(ForbiddenError):
        await entities.get_entity(db, entity.id, carol.id)

    await groups.add_group_member(db, team.id, PrincipalType.USER, carol.id, alice.id)
    assert (await entities.get_entity(db, entity.id, carol.id)).id == entity.id
