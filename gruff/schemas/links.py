from typing import Any

from pydantic import BaseModel, Field, field_validator

from gruff.schemas.acl import AclEntry
from gruff.schemas.versions import VersionDiff, VersionedOut


class LinkCreate(BaseModel):
    type_id: str
    source_entity_id: str
    target_entity_id: str
    properties: dict[str, Any] = Field(default_factory=dict)
    acl: list[AclEntry] | None = None

    @field_validator("type_id", "source_entity_id", "target_entity_id")
    @classmethod
    def non_empty(cls, v: str) -> str:
        value = (v or "").strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class LinkUpdate(BaseModel):
    properties: dict[str, Any]


class LinkOut(VersionedOut):
    type_id: str
    source_entity_id: str
    target_entity_id: str
    properties: dict[str, Any] = Field(default_factory=dict)


class LinkHistoryItem(LinkOut):
    diff: VersionDiff | None = None
