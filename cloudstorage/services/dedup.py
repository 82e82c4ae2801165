"""
Content deduplication index and user file linking.
"""
from cloudstorage.exceptions import InvalidArgument, Unavailable
from cloudstorage.services.file_meta import FileMetaRepository
from cloudstorage.services.user_files import UserFileRepository
from cloudstorage.utils.hashing import normalize_file_hash
from cloudstorage.utils.logger import log_info
from cloudstorage.utils.prometheus_metrics import dedup_hits_total, file_upload_total


async def link_user_file(
    user_files: UserFileRepository,
    username: str,
    file_hash: str,
    file_name: str,
    file_size: int,
) -> None:
    """
    Create the user's link to ``file_hash``.

    Raises:
        InvalidArgument: ``file_name`` already names different content for this user
        Unavailable: the metadata write failed
    """
    existing = await user_files.get_by_name(username, file_name)
    if existing is not None and existing.file_hash != file_hash:
        raise InvalidArgument(f"File name already used: {file_name}")
    if not await user_files.create_user_file(username, file_hash, file_name, file_size):
        raise Unavailable("CreateUserFile")


class DeduplicationIndex:
    """Maps a content hash to an existing StoredFile."""

    def __init__(self, file_meta: FileMetaRepository, user_files: UserFileRepository):
        self.file_meta = file_meta
        self.user_files = user_files

    async def exists(self, file_hash: str) -> bool:
        return await self.file_meta.file_hash_exists(file_hash)

    async def fast_upload(
        self, username: str, file_hash: str, file_name: str, file_size: int
    ) -> bool:
        """
        Link ``username`` to already stored content without transferring bytes.

        Returns:
            False if the hash is unknown (the client must upload the bytes)
        """
        file_hash = normalize_file_hash(file_hash)
        if not await self.exists(file_hash):
            return False
        await link_user_file(self.user_files, username, file_hash, file_name, file_size)
        dedup_hits_total.labels(path="fast_upload").inc()
        file_upload_total.labels(upload_method="fast", result="success").inc()
        log_info(
            "Fast upload",
            event="file",
            username=username,
            file_hash=file_hash,
        )
        return True
