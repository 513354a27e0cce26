from typing import Any

from pydantic import BaseModel, Field, field_validator

from gruff.schemas.acl import AclEntry
from gruff.schemas.versions import VersionDiff, VersionedOut


class EntityCreate(BaseModel):
    type_id: str
    properties: dict[str, Any] = Field(default_factory=dict)
    # None: creator-only; []: public; otherwise these entries plus creator write.
    acl: list[AclEntry] | None = None

    @field_validator("type_id")
    @classmethod
    def non_empty(cls, v: str) -> str:
        value = (v or "").strip()
        if not value:
            raise ValueError("type_id must not be empty")
        return value


class EntityUpdate(BaseModel):
    properties: dict[str, Any]


class EntityOut(VersionedOut):
    type_id: str
    properties: dict[str, Any] = Field(default_factory=dict)


class EntityHistoryItem(EntityOut):
    diff: VersionDiff | None = None
