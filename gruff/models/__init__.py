from gruff.models.acl import Acl, AclEntry
from gruff.models.entity import Entity
from gruff.models.group import Group, GroupMember
from gruff.models.link import Link
from gruff.models.user import User

__all__ = [
    "Acl",
    "AclEntry",
    "Entity",
    "Group",
    "GroupMember",
    "Link",
    "User",
]
