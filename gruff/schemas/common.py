from __future__ import annotations

import re
from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

_WHITESPACE = re.compile(r"\s+")


def normalize_title_text(value: str | None) -> str:
    """Collapse internal whitespace and trim; used for names that must be unique."""
    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip()


def normalize_description_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


class Page(BaseModel, Generic[T]):
    items: list[T]
    has_more: bool = False
    next_cursor: str | None = None
