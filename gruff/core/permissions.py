from enum import Enum
from typing import List


class Permission(str, Enum):
    READ = "read"
    WRITE = "write"

    def granted_by(self) -> List[str]:
        """Return the stored permissions that satisfy this one (write implies read)."""
        if self is Permission.READ:
            return [Permission.READ.value, Permission.WRITE.value]
        return [Permission.WRITE.value]


class PrincipalType(str, Enum):
    USER = "user"
    GROUP = "group"


class ResourceKind(str, Enum):
    ENTITY = "entity"
    LINK = "link"
