from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, String

from gruff.db.base import Base
from gruff.models.types import ID_LENGTH, new_id, utcnow


class User(Base):
    """Identity row; read-only input to the authorization engine."""

    __tablename__ = "users"
    __table_args__ = (CheckConstraint("role IN ('user', 'admin')", name="role"),)

    id = Column(String(ID_LENGTH), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True)
    display_name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="user")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
