"""
Multipart finalization.

complete():
    1. session exists and belongs to the requester
    2. every chunk index is present
    3. CompletionGuard for the hash (Conflict if held)
    4. merge chunks in index order (and verify the whole-file hash)
    5. dedup re-check: store new content or discard the merge
    6. link the user to the content
    7. purge the session, release the guard
"""
import time

from cloudstorage.config import get_settings
from cloudstorage.exceptions import Conflict, Incomplete, InvalidArgument, UploadError
from cloudstorage.services.completion_guard import CompletionGuard
from cloudstorage.services.dedup import link_user_file
from cloudstorage.services.file_store import FileStore
from cloudstorage.services.keys import chunks_key
from cloudstorage.services.staging import StagingArea
from cloudstorage.services.upload_sessions import UploadSessionManager
from cloudstorage.services.user_files import UserFileRepository
from cloudstorage.session_store import SessionStore
from cloudstorage.utils.hashing import normalize_file_hash
from cloudstorage.utils.logger import log_info, log_warning
from cloudstorage.utils.prometheus_metrics import (
    dedup_hits_total,
    file_upload_total,
    upload_complete_duration_seconds,
    upload_complete_total,
)


class CompletionPipeline:
    """Finalizes complete upload sessions exactly once per content hash."""

    def __init__(
        self,
        store: SessionStore,
        staging: StagingArea,
        sessions: UploadSessionManager,
        guard: CompletionGuard,
        file_store: FileStore,
        user_files: UserFileRepository,
        verify_content_hash: bool = None,
    ):
        self.store = store
        self.staging = staging
        self.sessions = sessions
        self.guard = guard
        self.file_store = file_store
        self.user_files = user_files
        if verify_content_hash is None:
            verify_content_hash = get_settings().verify_content_hash
        self.verify_content_hash = verify_content_hash

    async def complete(
        self,
        upload_key: str,
        requester: str,
        file_hash: str,
        file_size: int,
        file_name: str,
    ) -> bool:
        """
        Finalize ``upload_key``.

        Returns:
            True if new content was stored, False if it was already stored (dedup)

        Raises:
            NotFound, Forbidden, InvalidArgument, Incomplete, Conflict, Unavailable
        """
        start = time.perf_counter()
        try:
            stored = await self._complete(upload_key, requester, file_hash, file_size, file_name)
        except Conflict:
            upload_complete_total.labels(result="conflict").inc()
            raise
        except Incomplete:
            upload_complete_total.labels(result="incomplete").inc()
            raise
        except UploadError:
            upload_complete_total.labels(result="failure").inc()
            file_upload_total.labels(upload_method="multipart", result="failure").inc()
            raise

        upload_complete_duration_seconds.observe(time.perf_counter() - start)
        upload_complete_total.labels(result="stored" if stored else "deduplicated").inc()
        file_upload_total.labels(upload_method="multipart", result="success").inc()
        if not stored:
            dedup_hits_total.labels(path="multipart").inc()
        log_info(
            "Multipart upload completed",
            event="mpupload",
            username=requester,
            upload_key=upload_key,
            file_hash=file_hash,
            deduplicated=not stored,
        )
        return stored

    async def _complete(
        self,
        upload_key: str,
        requester: str,
        file_hash: str,
        file_size: int,
        file_name: str,
    ) -> bool:
        session = await self.sessions.get_owned(upload_key, requester)
        file_hash = normalize_file_hash(file_hash)
        if file_hash != session.file_hash or file_size != session.file_size:
            raise InvalidArgument("file_hash/file_size do not match the upload session")

        received = await self.store.scard(chunks_key(upload_key))
        if received != session.chunk_count:
            present = set(await self.sessions.chunk_indices(upload_key))
            missing = [i for i in range(session.chunk_count) if i not in present]
            log_warning(
                "Multipart upload incomplete",
                event="mpupload",
                username=requester,
                upload_key=upload_key,
                received=received,
                chunk_count=session.chunk_count,
            )
            raise Incomplete(
                f"{received}/{session.chunk_count} chunks received", missing=missing
            )

        async with self.guard.hold(file_hash):
            merged_path = None
            try:
                merged_path, digest, size = await self.staging.merge_chunks(
                    upload_key, session.chunk_count
                )
                if self.verify_content_hash and (digest != file_hash or size != file_size):
                    raise InvalidArgument("Merged content does not match file_hash/file_size")

                stored = await self.file_store.save(file_hash, file_name, size, merged_path)
                await link_user_file(self.user_files, requester, file_hash, file_name, file_size)
            finally:
                await self.staging.discard(merged_path)

            await self.sessions.purge(session)
        return stored
