import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB

# Principal ids are compared across the users and groups tables, so every id is a
# canonical UUID string rather than a dialect-native UUID.
ID_LENGTH = 36

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["ID_LENGTH", "JSONDocument", "new_id", "utcnow"]
