"""
API middleware for caller identity and common concerns.
Centralized identity enforcement for all protected routes.
"""

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from timeflow.db.session import get_db
from timeflow.models.user import User
from timeflow.services.identity_service import IdentityService


async def require_authentication(
    x_user_id: str = Header(..., alias="X-User-Id"),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Centralized identity dependency.
    Token handling lives in front of this service; the caller arrives as a user id.

    Usage:
        @router.get("/endpoint")
        async def my_endpoint(
            current_user: User = Depends(require_authentication)
        ):
            ...

    Returns:
        Current active User

    Raises:
        HTTPException: If the caller is unknown or inactive
    """
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID in X-User-Id header",
        )

    user = await IdentityService(db).get_user(user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is not active",
        )

    return user
