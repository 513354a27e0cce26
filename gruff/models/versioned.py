from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import declared_attr

from gruff.models.types import ID_LENGTH, new_id, utcnow


class VersionedMixin:
    """Columns shared by every append-only, ACL-protected resource table.

    Each row is immutable once written except for ``is_latest``, which is flipped
    to false exactly once when a successor row supersedes it.
    Subclasses list their payload columns in ``__payload_columns__``; those are
    carried forward unchanged by delete/restore/ACL transitions.
    """

    __payload_columns__: tuple[str, ...] = ()

    id = Column(String(ID_LENGTH), primary_key=True, default=new_id)
    version = Column(Integer, nullable=False)
    is_latest = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @declared_attr
    def acl_id(cls):
        # NULL means public.
        return Column(Integer, ForeignKey("acls.id"), nullable=True, index=True)

    @declared_attr
    def created_by(cls):
        return Column(String(ID_LENGTH), ForeignKey("users.id"), nullable=True, index=True)

    @declared_attr
    def previous_version_id(cls):
        return Column(String(ID_LENGTH), ForeignKey(f"{cls.__tablename__}.id"), nullable=True)

    @classmethod
    def versioning_table_args(cls, tablename: str) -> tuple:
        return (
            CheckConstraint("version > 0", name="version_positive"),
            # A row can be superseded at most once; closes the concurrent-append race.
            Index(
                f"uq_{tablename}_previous_version_id",
                "previous_version_id",
                unique=True,
                postgresql_where=text("previous_version_id IS NOT NULL"),
                sqlite_where=text("previous_version_id IS NOT NULL"),
            ),
            Index(f"ix_{tablename}_latest_deleted", "is_latest", "is_deleted"),
        )

    def payload(self) -> dict:
        return {name: getattr(self, name) for name in self.__payload_columns__}
