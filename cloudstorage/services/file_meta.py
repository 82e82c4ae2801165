"""
StoredFile repository (deduplicated content records).
"""
import logging
import os
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cloudstorage.models.stored_file import StoredFile
from cloudstorage.models.user_file import UserFile
from cloudstorage.utils.prometheus_metrics import db_errors_total

logger = logging.getLogger("cloudstorage.file_meta")


class FileMetaRepository:
    """
    Reads and writes StoredFile rows.

    Write methods commit immediately and report success as a bool; callers decide how
    to surface a failed write.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def file_hash_exists(self, file_hash: str) -> bool:
        result = await self.db.execute(
            select(StoredFile.file_hash).where(StoredFile.file_hash == file_hash)
        )
        return result.scalar_one_or_none() is not None

    async def get_by_hash(self, file_hash: str) -> Optional[StoredFile]:
        result = await self.db.execute(
            select(StoredFile).where(StoredFile.file_hash == file_hash)
        )
        return result.scalar_one_or_none()

    async def create_file_meta(
        self, file_hash: str, file_name: str, file_size: int, file_location: str
    ) -> bool:
        """
        Insert the StoredFile row for ``file_hash``.

        Returns:
            True if this call created the row, False if it already existed or the
            write failed
        """
        self.db.add(
            StoredFile(
                file_hash=file_hash,
                file_name=file_name,
                file_size=file_size,
                file_location=file_location,
            )
        )
        try:
            await self.db.commit()
        except IntegrityError:
            # 다른 요청이 먼저 같은 해시를 등록함
            await self.db.rollback()
            logger.info(
                "StoredFile already exists",
                extra={"event": "file", "file_hash": file_hash},
            )
            return False
        except SQLAlchemyError as e:
            await self.db.rollback()
            db_errors_total.inc()
            logger.error(
                "StoredFile insert failed",
                extra={"event": "file", "file_hash": file_hash, "error_type": type(e).__name__},
            )
            return False
        return True

    async def update_location(self, file_hash: str, file_location: str) -> bool:
        """Point a StoredFile at its new location (after migration)."""
        result = await self.db.execute(
            update(StoredFile)
            .where(StoredFile.file_hash == file_hash)
            .values(file_location=file_location)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def mark_published(self, file_hash: str) -> bool:
        """Clear ``transfer_pending`` once the transfer message was accepted."""
        result = await self.db.execute(
            update(StoredFile)
            .where(StoredFile.file_hash == file_hash)
            .values(transfer_pending=False)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def sweep_orphaned(self, staging_root: str) -> List[str]:
        """
        Delete StoredFile rows left behind by a failed finalization.

        A row is orphaned when its location is under ``staging_root``, the staged file
        no longer exists, and no UserFile references its hash.

        Returns:
            Hashes of deleted rows
        """
        root = os.path.abspath(staging_root)
        referenced = select(UserFile.file_hash).distinct()
        result = await self.db.execute(
            select(StoredFile).where(StoredFile.file_hash.not_in(referenced))
        )
        orphaned = [
            row.file_hash
            for row in result.scalars().all()
            if os.path.abspath(row.file_location).startswith(root + os.sep)
            and not os.path.exists(row.file_location)
        ]
        if orphaned:
            await self.db.execute(
                delete(StoredFile).where(StoredFile.file_hash.in_(orphaned))
            )
            await self.db.commit()
            logger.warning(
                "Orphaned StoredFile rows removed",
                extra={"event": "file", "count": len(orphaned)},
            )
        return orphaned
