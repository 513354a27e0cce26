from sqlalchemy import Column, ForeignKey, Index, String

from gruff.db.base import Base
from gruff.models.types import ID_LENGTH, JSONDocument
from gruff.models.versioned import VersionedMixin


class Link(VersionedMixin, Base):
    __tablename__ = "links"
    __table_args__ = (
        *VersionedMixin.versioning_table_args("links"),
        Index("ix_links_source_latest_deleted", "source_entity_id", "is_latest", "is_deleted"),
        Index("ix_links_target_latest_deleted", "target_entity_id", "is_latest", "is_deleted"),
    )
    __payload_columns__ = ("type_id", "source_entity_id", "target_entity_id", "properties")

    type_id = Column(String(255), nullable=False, index=True)
    source_entity_id = Column(String(ID_LENGTH), ForeignKey("entities.id"), nullable=False)
    target_entity_id = Column(String(ID_LENGTH), ForeignKey("entities.id"), nullable=False)
    properties = Column(JSONDocument, nullable=False, default=dict)
