from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator

from gruff.core.permissions import PrincipalType
from gruff.schemas.common import normalize_description_text, normalize_title_text


class GroupCreate(BaseModel):
    name: str
    description: str | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        value = normalize_title_text(v)
        if not value:
            raise ValueError("Group name cannot be empty")
        return value

    @field_validator("description")
    @classmethod
    def normalize_description(cls, v: str | None) -> str | None:
        return normalize_description_text(v)


class GroupUpdate(BaseModel):
    name: str | None = None
    description: str | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str | None) -> str | None:
        if v is None:
            return None
        normalized = normalize_title_text(v)
        if not normalized:
            raise ValueError("Group name cannot be empty")
        return normalized

    @field_validator("description")
    @classmethod
    def normalize_description(cls, v: str | None) -> str | None:
        return normalize_description_text(v)


class GroupOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None = None
    created_at: datetime | None = None
    created_by: str | None = None


class GroupMemberCreate(BaseModel):
    member_type: PrincipalType
    member_id: str


class GroupMemberOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    group_id: str
    member_type: PrincipalType
    member_id: str
    created_at: datetime | None = None
    created_by: str | None = None


class EffectiveMember(BaseModel):
    member_type: PrincipalType
    member_id: str
    name: str | None = None
    email: str | None = None
    # Group ids from the queried group down to the group holding the direct edge.
    path: list[str]
