"""
Completion guard: at most one finalization per content hash at a time.
"""
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from cloudstorage.config import get_settings
from cloudstorage.exceptions import Conflict, UploadError
from cloudstorage.services.keys import guard_key
from cloudstorage.session_store import SessionStore
from cloudstorage.utils.logger import log_error, log_warning


class CompletionGuard:
    """
    Per-hash mutual exclusion built on the store's SET NX EX.

    The guard value is a random token so that only the holder releases it; the TTL
    bounds how long a crashed holder can block the hash.
    """

    def __init__(self, store: SessionStore, ttl: Optional[int] = None):
        self.store = store
        self.ttl = ttl or get_settings().completion_guard_ttl_seconds

    @asynccontextmanager
    async def hold(self, file_hash: str) -> AsyncGenerator[None, None]:
        """
        Raises:
            Conflict: another finalization of ``file_hash`` holds the guard
        """
        key = guard_key(file_hash)
        token = uuid.uuid4().hex
        if not await self.store.set(key, token, ttl=self.ttl, only_if_absent=True):
            log_warning("Completion already in progress", event="mpupload", file_hash=file_hash)
            raise Conflict()
        try:
            yield
        finally:
            try:
                await self.store.delete_if_equals(key, token)
            except UploadError as e:
                # 해제 실패 시 TTL 만료로 회수됨
                log_error(
                    "Completion guard release failed",
                    event="mpupload",
                    file_hash=file_hash,
                    error_type=type(e).__name__,
                )
