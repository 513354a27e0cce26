from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from gruff.db.base import Base
from gruff.models.types import ID_LENGTH, utcnow


class Acl(Base):
    """Immutable, content-addressed permission set shared by every resource that uses it."""

    __tablename__ = "acls"

    id = Column(Integer, primary_key=True, autoincrement=True)
    hash = Column(String(64), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    entries = relationship(
        "AclEntry",
        back_populates="acl",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class AclEntry(Base):
    __tablename__ = "acl_entries"
    __table_args__ = (
        CheckConstraint("principal_type IN ('user', 'group')", name="principal_type"),
        CheckConstraint("permission IN ('read', 'write')", name="permission"),
        Index("ix_acl_entries_principal", "principal_type", "principal_id"),
    )

    acl_id = Column(Integer, ForeignKey("acls.id", ondelete="CASCADE"), primary_key=True)
    principal_type = Column(String(10), primary_key=True)
    principal_id = Column(String(ID_LENGTH), primary_key=True)
    permission = Column(String(10), primary_key=True)

    acl = relationship("Acl", back_populates="entries")
