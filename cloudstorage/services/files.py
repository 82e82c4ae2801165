"""
File service: single-shot upload, queries, download, rename, delete.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterable, List, Optional, Tuple

from cloudstorage.exceptions import InvalidArgument, NotFound, UploadError
from cloudstorage.models.stored_file import StoredFile
from cloudstorage.models.user_file import UserFile
from cloudstorage.services.completion_guard import CompletionGuard
from cloudstorage.services.dedup import link_user_file
from cloudstorage.services.file_meta import FileMetaRepository
from cloudstorage.services.file_store import FileStore
from cloudstorage.services.object_storage import ObjectStorageService
from cloudstorage.services.staging import StagingArea
from cloudstorage.services.user_files import UserFileRepository
from cloudstorage.utils.logger import log_info
from cloudstorage.utils.prometheus_metrics import (
    dedup_hits_total,
    file_operations_total,
    file_upload_total,
)


@dataclass
class DownloadSource:
    """Either a staged local path or object storage content."""

    file_name: str
    path: Optional[Path] = None
    content: Optional[bytes] = None


class FileService:
    """User facing file operations outside the multipart protocol."""

    def __init__(
        self,
        file_meta: FileMetaRepository,
        user_files: UserFileRepository,
        staging: StagingArea,
        file_store: FileStore,
        guard: CompletionGuard,
        storage: ObjectStorageService,
    ):
        self.file_meta = file_meta
        self.user_files = user_files
        self.staging = staging
        self.file_store = file_store
        self.guard = guard
        self.storage = storage

    async def upload(self, username: str, file_name: str, data: AsyncIterable[bytes]) -> Tuple[str, bool]:
        """
        Single-shot upload: hash the body, store it (or dedup), link it.

        Returns:
            (file_hash, stored) where stored is False on a dedup hit
        """
        if not file_name:
            raise InvalidArgument("file name is required")

        tmp_path, file_hash, file_size = await self.staging.save_stream(data)
        try:
            async with self.guard.hold(file_hash):
                stored = await self.file_store.save(file_hash, file_name, file_size, tmp_path)
                await link_user_file(self.user_files, username, file_hash, file_name, file_size)
        except UploadError:
            file_upload_total.labels(upload_method="single", result="failure").inc()
            raise
        finally:
            await self.staging.discard(tmp_path)

        file_upload_total.labels(upload_method="single", result="success").inc()
        if not stored:
            dedup_hits_total.labels(path="single").inc()
        log_info(
            "File uploaded",
            event="file",
            username=username,
            file_hash=file_hash,
            file_size=file_size,
            deduplicated=not stored,
        )
        return file_hash, stored

    async def get_meta(self, username: str, file_name: str) -> Tuple[UserFile, Optional[StoredFile]]:
        user_file = await self.user_files.get_by_name(username, file_name)
        if user_file is None:
            raise NotFound(f"File not found: {file_name}")
        return user_file, await self.file_meta.get_by_hash(user_file.file_hash)

    async def recent(self, username: str, page: int = 1, limit: int = 10) -> List[UserFile]:
        if page < 1 or limit < 1:
            raise InvalidArgument("page and limit must be positive")
        return await self.user_files.get_user_files(username, page, limit)

    async def open_download(self, username: str, file_name: str) -> DownloadSource:
        """
        Locate a user's file: staged copy while it is still local, otherwise object
        storage.
        """
        user_file, stored = await self.get_meta(username, file_name)
        if stored is None:
            file_operations_total.labels(operation="download", result="failure").inc()
            raise NotFound("Stored content missing")

        if self.staging.is_staged_location(stored.file_location):
            path = Path(stored.file_location)
            if not path.is_file():
                file_operations_total.labels(operation="download", result="failure").inc()
                raise NotFound("Staged content missing")
            file_operations_total.labels(operation="download", result="success").inc()
            return DownloadSource(file_name=user_file.file_name, path=path)

        key = self.storage.key_from_location(stored.file_location)
        content = await self.storage.download_file(key)
        file_operations_total.labels(operation="download", result="success").inc()
        return DownloadSource(file_name=user_file.file_name, content=content)

    async def rename(self, username: str, file_name: str, new_name: str) -> UserFile:
        """
        Raises:
            InvalidArgument: empty or already used new name
            NotFound: no such file
        """
        if not new_name:
            raise InvalidArgument("new_name is required")
        if await self.user_files.is_user_have_file(username, new_name):
            file_operations_total.labels(operation="rename", result="failure").inc()
            raise InvalidArgument(f"File name already used: {new_name}")
        if not await self.user_files.is_user_have_file(username, file_name):
            file_operations_total.labels(operation="rename", result="failure").inc()
            raise NotFound(f"File not found: {file_name}")

        renamed = await self.user_files.rename(username, file_name, new_name)
        if renamed is None:
            file_operations_total.labels(operation="rename", result="failure").inc()
            raise InvalidArgument(f"File name already used: {new_name}")
        file_operations_total.labels(operation="rename", result="success").inc()
        log_info("File renamed", event="file", username=username, file_name=new_name)
        return renamed

    async def delete(self, username: str, file_name: str) -> None:
        if not await self.user_files.delete(username, file_name):
            file_operations_total.labels(operation="delete", result="failure").inc()
            raise NotFound(f"File not found: {file_name}")
        file_operations_total.labels(operation="delete", result="success").inc()
        log_info("File deleted", event="file", username=username, file_name=file_name)
