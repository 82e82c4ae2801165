"""
Authentication dependencies for FastAPI.
"""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from cloudstorage.dependencies.services import get_auth_service
from cloudstorage.models.user import User
from cloudstorage.services.auth import AuthService
from cloudstorage.utils.security import decode_access_token

logger = logging.getLogger("cloudstorage.auth")

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """
    Dependency to get the current authenticated user.

    The token must verify, and must be the token currently stored for its user.

    Raises:
        HTTPException: If token is missing, invalid, revoked, or user not found
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not credentials:
        logger.warning("Auth failed", extra={"event": "auth", "reason": "no_token"})
        raise credentials_exception

    username = decode_access_token(credentials.credentials)
    if username is None:
        logger.warning("Auth failed", extra={"event": "auth", "reason": "invalid_or_expired_token"})
        raise credentials_exception

    if not await auth_service.is_current_token(username, credentials.credentials):
        logger.warning("Auth failed", extra={"event": "auth", "reason": "revoked_token", "username": username})
        raise credentials_exception

    user = await auth_service.get_user_by_username(username)
    if user is None:
        logger.warning("Auth failed", extra={"event": "auth", "reason": "user_not_found", "username": username})
        raise credentials_exception

    return user


async def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    """
    Dependency to get the current active user.

    Raises:
        HTTPException: If user is inactive
    """
    if not current_user.is_active:
        logger.warning("Inactive user rejected", extra={"event": "auth", "reason": "inactive", "username": current_user.username})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user",
        )
    return current_user
