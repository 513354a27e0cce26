from pydantic import BaseModel, ConfigDict, Field, field_validator

from gruff.core.permissions import Permission, PrincipalType
from gruff.core.settings import settings


class AclEntry(BaseModel):
    """A single (principal, permission) grant."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    principal_type: PrincipalType
    principal_id: str
    permission: Permission

    @field_validator("principal_id")
    @classmethod
    def non_empty(cls, v: str) -> str:
        value = (v or "").strip()
        if not value:
            raise ValueError("principal_id must not be empty")
        return value

    def sort_key(self) -> tuple[str, str, str]:
        return (self.principal_type.value, self.principal_id, self.permission.value)

    def canonical(self) -> dict[str, str]:
        return {
            "principal_type": self.principal_type.value,
            "principal_id": self.principal_id,
            "permission": self.permission.value,
        }


class EnrichedAclEntry(AclEntry):
    principal_name: str | None = None
    principal_email: str | None = None


class PrincipalValidation(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)


class SetAclRequest(BaseModel):
    # An empty list makes the resource public.
    entries: list[AclEntry] = Field(default_factory=list)

    @field_validator("entries")
    @classmethod
    def bounded(cls, v: list[AclEntry]) -> list[AclEntry]:
        if len(v) > settings.max_acl_entries:
            raise ValueError(f"Maximum {settings.max_acl_entries} ACL entries allowed")
        return v


class AclResponse(BaseModel):
    acl_id: int | None
    entries: list[EnrichedAclEntry]
