"""
Chunk receiver: persists one chunk and records its index.
"""
from typing import AsyncIterable

from cloudstorage.exceptions import InvalidArgument, NotFound
from cloudstorage.services.keys import chunks_key, info_key
from cloudstorage.services.staging import StagingArea
from cloudstorage.services.upload_sessions import UploadSessionManager
from cloudstorage.session_store import SessionStore
from cloudstorage.utils.logger import log_warning
from cloudstorage.utils.prometheus_metrics import upload_chunk_size_bytes, upload_chunks_total


class ChunkReceiver:
    """
    Accepts chunk uploads for live sessions.

    Re-uploading an index overwrites the earlier bytes and leaves the chunk set
    unchanged; chunks may arrive in any order.
    """

    def __init__(self, store: SessionStore, staging: StagingArea, sessions: UploadSessionManager):
        self.store = store
        self.staging = staging
        self.sessions = sessions

    async def accept_chunk(
        self,
        upload_key: str,
        index: int,
        requester: str,
        data: AsyncIterable[bytes],
    ) -> int:
        """
        Store chunk ``index`` of ``upload_key``.

        Returns:
            Number of bytes written

        Raises:
            NotFound: session absent, expired, or cancelled while the chunk was written
            Forbidden: requester is not the owner
            InvalidArgument: index outside [0, chunk_count)
        """
        try:
            session = await self.sessions.get_owned(upload_key, requester)
            if index < 0 or index >= session.chunk_count:
                raise InvalidArgument(
                    f"index must be in [0, {session.chunk_count}), got {index}"
                )

            size = await self.staging.write_chunk(upload_key, index, data)
            await self.store.sadd(chunks_key(upload_key), str(index))

            # 쓰는 동안 취소/완료되었으면 방금 쓴 청크를 치우고 NotFound
            if not await self.store.exists(info_key(upload_key)):
                await self.store.delete(chunks_key(upload_key))
                await self.staging.remove_chunks(upload_key)
                raise NotFound("Upload session was closed while the chunk was written")

            await self.sessions.touch(session)
        except (InvalidArgument, NotFound) as e:
            upload_chunks_total.labels(result="failure").inc()
            log_warning(
                "Chunk rejected",
                event="mpupload",
                username=requester,
                upload_key=upload_key,
                index=index,
                reason=e.detail,
            )
            raise

        upload_chunks_total.labels(result="success").inc()
        upload_chunk_size_bytes.observe(size)
        return size
