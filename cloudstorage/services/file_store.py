"""
Storage backend save path shared by single-shot upload and multipart finalization.
"""
from pathlib import Path

from cloudstorage.exceptions import Unavailable
from cloudstorage.services.file_meta import FileMetaRepository
from cloudstorage.services.staging import StagingArea
from cloudstorage.services.transfer import TransferPublisher
from cloudstorage.utils.logger import log_error, log_info


class FileStore:
    """
    Turns an assembled temp file into a StoredFile.

    Callers hold the CompletionGuard for the hash, so the dedup re-check below is not
    raced by another finalization of the same content.
    """

    def __init__(
        self,
        file_meta: FileMetaRepository,
        staging: StagingArea,
        publisher: TransferPublisher,
    ):
        self.file_meta = file_meta
        self.staging = staging
        self.publisher = publisher

    async def save(self, file_hash: str, file_name: str, file_size: int, src: Path) -> bool:
        """
        Store ``src`` as content ``file_hash`` unless it is already stored.

        ``src`` is consumed either way (moved into staging or discarded). A StoredFile
        whose transfer publish failed is kept with ``transfer_pending`` set; the next
        save of the same hash publishes it again while the content is still staged.

        Returns:
            True if new content was stored, False if it was already present

        Raises:
            Unavailable: metadata write or transfer publish failed
        """
        stored = await self.file_meta.get_by_hash(file_hash)
        if stored is not None:
            if stored.transfer_pending and self.staging.is_staged_location(stored.file_location):
                await self._restage_and_publish(file_hash, Path(stored.file_location), src)
            else:
                await self.staging.discard(src)
            return False

        # 행을 먼저 등록: 경쟁에서 지면 다른 요청의 staged 파일을 덮어쓰지 않음
        target = self.staging.file_path(file_hash)
        if not await self.file_meta.create_file_meta(file_hash, file_name, file_size, str(target)):
            await self.staging.discard(src)
            if await self.file_meta.file_hash_exists(file_hash):
                return False
            raise Unavailable("CreateFileMeta")

        staged = await self.staging.stage_file(src, file_hash)
        await self._publish(file_hash, staged)

        log_info(
            "Content stored",
            event="file",
            file_hash=file_hash,
            file_size=file_size,
            location=str(staged),
        )
        return True

    async def _restage_and_publish(self, file_hash: str, staged: Path, src: Path) -> None:
        if staged.is_file():
            await self.staging.discard(src)
        else:
            staged = await self.staging.stage_file(src, file_hash)
        await self._publish(file_hash, staged)
        log_info("Pending transfer published", event="file", file_hash=file_hash)

    async def _publish(self, file_hash: str, staged: Path) -> None:
        try:
            await self.publisher.publish(file_hash, str(staged), file_hash)
        except Unavailable:
            log_error("Transfer publish failed, StoredFile kept pending", event="file", file_hash=file_hash)
            raise
        await self.file_meta.mark_published(file_hash)
