from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class VersionDiff(BaseModel):
    added: dict[str, Any] = Field(default_factory=dict)
    removed: dict[str, Any] = Field(default_factory=dict)
    # key -> {"old": ..., "new": ...}
    changed: dict[str, dict[str, Any]] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


class VersionedOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    version: int
    previous_version_id: str | None = None
    is_latest: bool
    is_deleted: bool
    acl_id: int | None = None
    created_at: datetime | None = None
    created_by: str | None = None
