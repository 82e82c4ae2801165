"""
UserFile repository (a user's named links to stored content).
"""
import logging
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cloudstorage.models.user_file import UserFile
from cloudstorage.utils.prometheus_metrics import db_errors_total

logger = logging.getLogger("cloudstorage.user_files")


class UserFileRepository:
    """Service for a user's file list."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_user_file(
        self, username: str, file_hash: str, file_name: str, file_size: int
    ) -> bool:
        """
        Link ``username`` to content ``file_hash`` under ``file_name``.

        Re-linking the same name to the same hash is a no-op success, so a retried
        finalization does not fail on its own earlier write.

        Returns:
            True on success, False if the name is taken by other content or the write
            failed
        """
        existing = await self.get_by_name(username, file_name)
        if existing is not None:
            return existing.file_hash == file_hash

        self.db.add(
            UserFile(
                username=username,
                file_hash=file_hash,
                file_name=file_name,
                file_size=file_size,
            )
        )
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self.get_by_name(username, file_name)
            return existing is not None and existing.file_hash == file_hash
        except SQLAlchemyError as e:
            await self.db.rollback()
            db_errors_total.inc()
            logger.error(
                "UserFile insert failed",
                extra={"event": "file", "username": username, "error_type": type(e).__name__},
            )
            return False
        return True

    async def get_user_files(self, username: str, page: int = 1, limit: int = 10) -> List[UserFile]:
        """Most recently uploaded first."""
        offset = max(page - 1, 0) * limit
        result = await self.db.execute(
            select(UserFile)
            .where(UserFile.username == username)
            .order_by(UserFile.upload_at.desc(), UserFile.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_by_name(self, username: str, file_name: str) -> Optional[UserFile]:
        result = await self.db.execute(
            select(UserFile).where(
                UserFile.username == username,
                UserFile.file_name == file_name,
            )
        )
        return result.scalar_one_or_none()

    async def is_user_have_file(self, username: str, file_name: str) -> bool:
        return await self.get_by_name(username, file_name) is not None

    async def rename(self, username: str, file_name: str, new_name: str) -> Optional[UserFile]:
        """
        Rename a link. Returns the updated link, or None if the source is missing or
        ``new_name`` is already used.
        """
        user_file = await self.get_by_name(username, file_name)
        if user_file is None or await self.is_user_have_file(username, new_name):
            return None
        user_file.file_name = new_name
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            return None
        await self.db.refresh(user_file)
        return user_file

    async def delete(self, username: str, file_name: str) -> bool:
        """Remove the link only; the StoredFile is shared and kept."""
        result = await self.db.execute(
            delete(UserFile).where(
                UserFile.username == username,
                UserFile.file_name == file_name,
            )
        )
        await self.db.commit()
        return result.rowcount > 0
