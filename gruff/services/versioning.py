"""Append-only version chains.

Every transition inserts a successor row and supersedes the current latest row
with a conditional update, committed together. A row can be superseded once:
the conditional update reports zero rows when another writer won, and the
partial unique index on ``previous_version_id`` rejects a second successor.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterator, Sequence, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from gruff.core.errors import ConflictError, NotFoundError
from gruff.models.versioned import VersionedMixin
from gruff.schemas.versions import VersionDiff

logger = logging.getLogger(__name__)

V = TypeVar("V", bound=VersionedMixin)

_UNSET: Any = object()


def _label(model: type[VersionedMixin]) -> str:
    return model.__name__


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def calculate_diff(old: dict[str, Any] | None, new: dict[str, Any] | None) -> VersionDiff:
    old = old or {}
    new = new or {}
    diff = VersionDiff()
    for key, value in new.items():
        if key not in old:
            diff.added[key] = value
        elif _canonical(old[key]) != _canonical(value):
            diff.changed[key] = {"old": old[key], "new": value}
    for key, value in old.items():
        if key not in new:
            diff.removed[key] = value
    return diff


async def create_version(
    db: AsyncSession,
    model: type[V],
    values: dict[str, Any],
    created_by: str | None,
    *,
    acl_id: int | None = None,
) -> V:
    row = model(
        **values,
        version=1,
        previous_version_id=None,
        is_latest=True,
        is_deleted=False,
        acl_id=acl_id,
        created_by=created_by,
    )
    db.add(row)
    await db.commit()
    logger.info(
        "%s created", _label(model), extra={"resource_id": row.id, "version": row.version}
    )
    return row


async def _append_version(
    db: AsyncSession,
    current: V,
    user_id: str | None,
    *,
    values: dict[str, Any] | None = None,
    is_deleted: bool | None = None,
    acl_id: Any = _UNSET,
) -> V:
    model = type(current)
    payload = current.payload()
    if values:
        payload.update(values)

    superseded = await db.execute(
        update(model)
        .where(model.id == current.id, model.is_latest.is_(True))
        .values(is_latest=False)
        .execution_options(synchronize_session=False)
    )
    if superseded.rowcount != 1:
        await db.rollback()
        raise ConflictError(
            f"{_label(model)} was modified concurrently; reload and retry",
            code="CONCURRENT_MODIFICATION",
        )

    successor = model(
        **payload,
        version=current.version + 1,
        previous_version_id=current.id,
        is_latest=True,
        is_deleted=current.is_deleted if is_deleted is None else is_deleted,
        acl_id=current.acl_id if acl_id is _UNSET else acl_id,
        created_by=user_id,
    )
    db.add(successor)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            f"{_label(model)} was modified concurrently; reload and retry",
            code="CONCURRENT_MODIFICATION",
        ) from exc

    set_committed_value(current, "is_latest", False)
    logger.info(
        "%s version appended",
        _label(model),
        extra={
            "resource_id": successor.id,
            "previous_version_id": current.id,
            "version": successor.version,
        },
    )
    return successor


async def update_version(
    db: AsyncSession, current: V, values: dict[str, Any], user_id: str | None
) -> V:
    if current.is_deleted:
        label = _label(type(current))
        raise ConflictError(
            f"Cannot update deleted {label.lower()}. Use restore first.",
            code=f"{label.upper()}_DELETED",
        )
    return await _append_version(db, current, user_id, values=values)


async def delete_version(db: AsyncSession, current: V, user_id: str | None) -> V:
    if current.is_deleted:
        raise ConflictError(f"{_label(type(current))} is already deleted", code="ALREADY_DELETED")
    return await _append_version(db, current, user_id, is_deleted=True)


async def restore_version(db: AsyncSession, current: V, user_id: str | None) -> V:
    if not current.is_deleted:
        raise ConflictError(f"{_label(type(current))} is not deleted", code="NOT_DELETED")
    return await _append_version(db, current, user_id, is_deleted=False)


async def set_acl_version(
    db: AsyncSession, current: V, acl_id: int | None, user_id: str | None
) -> V:
    if current.is_deleted:
        label = _label(type(current))
        raise ConflictError(
            f"Cannot change ACL of deleted {label.lower()}", code=f"{label.upper()}_DELETED"
        )
    return await _append_version(db, current, user_id, acl_id=acl_id)


async def find_latest_version(db: AsyncSession, model: type[V], any_id: str) -> V | None:
    """Resolve any id in a chain to the chain's latest row."""
    result = await db.execute(select(model).where(model.id == any_id, model.is_latest.is_(True)))
    row = result.scalar_one_or_none()
    if row is not None:
        return row

    result = await db.execute(select(model).where(model.id == any_id))
    row = result.scalar_one_or_none()
    if row is None:
        return None

    seen = {row.id}
    while True:
        result = await db.execute(select(model).where(model.previous_version_id == row.id))
        successor = result.scalar_one_or_none()
        if successor is None or successor.id in seen:
            break
        seen.add(successor.id)
        row = successor

    if not row.is_latest:
        # The furthest row reached is still the best answer.
        logger.warning(
            "Version chain ends without a latest row",
            extra={"table": model.__tablename__, "resource_id": row.id},
        )
    return row


async def get_version_chain(db: AsyncSession, model: type[V], any_id: str) -> list[V]:
    result = await db.execute(select(model).where(model.id == any_id))
    row = result.scalar_one_or_none()
    if row is None:
        raise NotFoundError.for_resource(_label(model))

    seen = {row.id}
    while row.previous_version_id is not None:
        result = await db.execute(select(model).where(model.id == row.previous_version_id))
        predecessor = result.scalar_one_or_none()
        if predecessor is None or predecessor.id in seen:
            break
        seen.add(predecessor.id)
        row = predecessor

    chain = [row]
    collected = {row.id}
    while True:
        result = await db.execute(select(model).where(model.previous_version_id == chain[-1].id))
        successor = result.scalar_one_or_none()
        if successor is None or successor.id in collected:
            break
        collected.add(successor.id)
        chain.append(successor)
    return sorted(chain, key=lambda r: r.version)


async def get_version(db: AsyncSession, model: type[V], any_id: str, version_number: int) -> V:
    for row in await get_version_chain(db, model, any_id):
        if row.version == version_number:
            return row
    raise NotFoundError(
        f"Version {version_number} not found", code="VERSION_NOT_FOUND"
    )


def build_history(rows: Sequence[V]) -> Iterator[tuple[V, VersionDiff | None]]:
    """Pair each version with the property diff against its predecessor; version 1 has no diff."""
    previous: V | None = None
    for row in rows:
        if previous is None:
            yield row, None
        else:
            yield row, calculate_diff(previous.properties, row.properties)
        previous = row
