"""
Authentication service for user management.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cloudstorage.models.user import User
from cloudstorage.schemas.user import UserCreate
from cloudstorage.services.keys import token_key
from cloudstorage.session_store import SessionStore
from cloudstorage.utils.logger import log_info, log_warning
from cloudstorage.utils.security import create_access_token, hash_password, verify_password

# 발급 토큰 보관 시간 (초)
TOKEN_TTL_SECONDS = 60 * 60


class AuthService:
    """
    Service for handling user authentication.

    The issued token is kept in the session store; only the stored token is accepted,
    so signout (or a newer signin) revokes older tokens.
    """

    def __init__(self, db: AsyncSession, store: SessionStore):
        self.db = db
        self.store = store

    async def register(self, user_data: UserCreate) -> User:
        """
        Register a new user.

        Raises:
            ValueError: If username already exists
        """
        if await self.get_user_by_username(user_data.username):
            log_warning("Registration failed", event="auth", username=user_data.username, reason="username_exists")
            raise ValueError("Username already taken")

        user = User(
            username=user_data.username,
            hashed_password=hash_password(user_data.password),
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ValueError("Username already taken")
        await self.db.refresh(user)
        log_info("Registration", event="auth", username=user.username)
        return user

    async def authenticate(self, username: str, password: str) -> Optional[User]:
        """Check credentials; None on any failure."""
        user = await self.get_user_by_username(username)

        if not user:
            log_warning("Login failed", event="auth", username=username, reason="user_not_found")
            return None
        if not user.is_active:
            log_warning("Login failed", event="auth", username=username, reason="inactive")
            return None
        if not verify_password(password, user.hashed_password):
            log_warning("Login failed", event="auth", username=username, reason="invalid_password")
            return None
        return user

    async def login(self, username: str, password: str) -> Optional[str]:
        """
        Login user and return a JWT access token (also stored as the current token).
        """
        user = await self.authenticate(username, password)
        if not user:
            return None

        access_token = create_access_token(user.username)
        await self.store.set(token_key(user.username), access_token, ttl=TOKEN_TTL_SECONDS)
        log_info("Login", event="auth", username=user.username)
        return access_token

    async def logout(self, username: str) -> None:
        await self.store.delete(token_key(username))
        log_info("Logout", event="auth", username=username)

    async def is_current_token(self, username: str, token: str) -> bool:
        return await self.store.get(token_key(username)) == token

    async def get_user_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.username == username)
        )
        return result.scalar_one_or_none()
