from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from gruff.core.context import set_user_id
from gruff.core.errors import ForbiddenError, UnauthorizedError
from gruff.core.settings import settings
from gruff.db.session import get_db
from gruff.models import User


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


async def get_optional_user(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    db: AsyncSession = Depends(get_db_session),
) -> Optional[User]:
    """Resolve the caller from the identity header set by the upstream authenticator.

    No header means an anonymous caller. A header naming an unknown or inactive
    user is rejected rather than downgraded to anonymous.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        return None
    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise UnauthorizedError("Unknown or inactive user", code="INVALID_IDENTITY")
    set_user_id(user.id)
    return user


async def get_optional_user_id(user: Optional[User] = Depends(get_optional_user)) -> Optional[str]:
    return user.id if user else None


async def require_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise UnauthorizedError("Authentication required", code="AUTH_REQUIRED")
    return user


async def require_user_id(user: User = Depends(require_user)) -> str:
    return user.id


async def require_admin(user: User = Depends(require_user)) -> User:
    if not user.is_admin:
        raise ForbiddenError("Admin access required", code="ADMIN_REQUIRED")
    return user


def page_limit(limit: Optional[int]) -> int:
    if limit is None:
        return settings.list_default_limit
    return max(1, min(limit, settings.list_max_limit))
