from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text

from gruff.db.base import Base
from gruff.models.types import ID_LENGTH, new_id, utcnow


class Group(Base):
    __tablename__ = "groups"

    id = Column(String(ID_LENGTH), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by = Column(String(ID_LENGTH), ForeignKey("users.id"), nullable=True, index=True)


class GroupMember(Base):
    """Membership edge; ``member_type='group'`` edges form the nesting graph."""

    __tablename__ = "group_members"
    __table_args__ = (
        CheckConstraint("member_type IN ('user', 'group')", name="member_type"),
        # Reverse lookups: "which groups contain this user/group".
        Index("ix_group_members_member", "member_type", "member_id"),
    )

    group_id = Column(
        String(ID_LENGTH), ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True
    )
    member_type = Column(String(10), primary_key=True)
    member_id = Column(String(ID_LENGTH), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by = Column(String(ID_LENGTH), ForeignKey("users.id"), nullable=True)
