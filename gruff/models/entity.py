from sqlalchemy import Column, Index, String

from gruff.db.base import Base
from gruff.models.types import JSONDocument
from gruff.models.versioned import VersionedMixin


class Entity(VersionedMixin, Base):
    __tablename__ = "entities"
    __table_args__ = (
        *VersionedMixin.versioning_table_args("entities"),
        Index("ix_entities_type_latest_deleted", "type_id", "is_latest", "is_deleted"),
    )
    __payload_columns__ = ("type_id", "properties")

    type_id = Column(String(255), nullable=False)
    properties = Column(JSONDocument, nullable=False, default=dict)
