"""
Upload session lifecycle: initiate (with resume detection), status, cancel.

Session state lives only in the session store:
    mpupload:info:<uploadKey>           hash   owner, file_hash, file_size, chunk_size, chunk_count
    mpupload:chunks:<uploadKey>         set    received chunk indices
    mpupload:hash:<owner>:<fileHash>    string uploadKey (resume pointer)

All three share the session TTL and are refreshed together on every chunk upload, so an
idle session disappears as a whole.
"""
import hashlib
import math
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from cloudstorage.config import get_settings
from cloudstorage.exceptions import Forbidden, InvalidArgument, NotFound, Unavailable
from cloudstorage.services.keys import chunks_key, info_key, resume_pointer_key
from cloudstorage.services.staging import StagingArea
from cloudstorage.session_store import SessionStore
from cloudstorage.utils.hashing import normalize_file_hash
from cloudstorage.utils.logger import log_info, log_warning
from cloudstorage.utils.prometheus_metrics import upload_cancel_total, upload_sessions_total

# 재개 포인터가 만료/정리 중인 세션을 가리킬 때의 재시도 횟수
_INIT_ATTEMPTS = 3


@dataclass
class UploadSession:
    upload_key: str
    owner: str
    file_hash: str
    file_size: int
    chunk_size: int
    chunk_count: int

    def to_mapping(self) -> Dict[str, str]:
        return {
            "owner": self.owner,
            "file_hash": self.file_hash,
            "file_size": str(self.file_size),
            "chunk_size": str(self.chunk_size),
            "chunk_count": str(self.chunk_count),
        }

    @classmethod
    def from_mapping(cls, upload_key: str, mapping: Dict[str, str]) -> Optional["UploadSession"]:
        try:
            return cls(
                upload_key=upload_key,
                owner=mapping["owner"],
                file_hash=mapping["file_hash"],
                file_size=int(mapping["file_size"]),
                chunk_size=int(mapping["chunk_size"]),
                chunk_count=int(mapping["chunk_count"]),
            )
        except (KeyError, ValueError):
            # 필드가 빠진 레코드 (만료 도중 읽힘) 는 없는 것으로 취급
            return None


def make_upload_key(owner: str, file_hash: str) -> str:
    """SHA-1 of owner + hash + a random nonce."""
    nonce = uuid.uuid4().hex
    return hashlib.sha1(f"{owner}{file_hash}{nonce}".encode("utf-8")).hexdigest()


class UploadSessionManager:
    """Owns the upload session state machine in the session store."""

    def __init__(
        self,
        store: SessionStore,
        staging: StagingArea,
        chunk_size: Optional[int] = None,
        session_ttl: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.staging = staging
        self.chunk_size = chunk_size or settings.chunk_size
        self.session_ttl = session_ttl or settings.upload_session_ttl_seconds

    async def initiate(
        self, owner: str, file_hash: str, file_size: int
    ) -> Tuple[UploadSession, List[int]]:
        """
        Return the live session for (owner, file_hash), creating it if absent.

        Concurrent initiations converge: the resume pointer is claimed with an atomic
        create-if-absent, and the losers adopt the winner's session.

        Returns:
            (session, sorted indices already received)
        """
        file_hash = normalize_file_hash(file_hash)
        if file_size <= 0:
            raise InvalidArgument("file_size must be positive")

        pointer = resume_pointer_key(owner, file_hash)
        for _ in range(_INIT_ATTEMPTS):
            resumed = await self._resume(pointer)
            if resumed is not None:
                return resumed

            candidate = UploadSession(
                upload_key=make_upload_key(owner, file_hash),
                owner=owner,
                file_hash=file_hash,
                file_size=file_size,
                chunk_size=self.chunk_size,
                chunk_count=math.ceil(file_size / self.chunk_size),
            )
            # 세션 레코드를 먼저 쓰고 포인터를 선점 (포인터가 보이면 레코드도 존재)
            await self.store.create_hash(
                info_key(candidate.upload_key), candidate.to_mapping(), self.session_ttl
            )
            if await self.store.set(
                pointer, candidate.upload_key, ttl=self.session_ttl, only_if_absent=True
            ):
                upload_sessions_total.labels(result="created").inc()
                log_info(
                    "Upload session created",
                    event="mpupload",
                    username=owner,
                    file_hash=file_hash,
                    upload_key=candidate.upload_key,
                    chunk_count=candidate.chunk_count,
                )
                return candidate, []

            # 동시 요청이 먼저 포인터를 선점함 → 후보 폐기 후 재개 경로로
            await self.store.delete(info_key(candidate.upload_key))

        raise Unavailable("Could not initiate upload session, retry")

    async def _resume(self, pointer: str) -> Optional[Tuple[UploadSession, List[int]]]:
        upload_key = await self.store.get(pointer)
        if upload_key is None:
            return None
        session = await self.load(upload_key)
        if session is None:
            # 세션은 만료/정리됐는데 포인터만 남음
            await self.store.delete_if_equals(pointer, upload_key)
            return None
        await self.touch(session)
        upload_sessions_total.labels(result="resumed").inc()
        chunks = await self.chunk_indices(upload_key)
        log_info(
            "Upload session resumed",
            event="mpupload",
            username=session.owner,
            upload_key=upload_key,
            received=len(chunks),
            chunk_count=session.chunk_count,
        )
        return session, chunks

    async def load(self, upload_key: str) -> Optional[UploadSession]:
        mapping = await self.store.hgetall(info_key(upload_key))
        if not mapping:
            return None
        return UploadSession.from_mapping(upload_key, mapping)

    async def get_owned(self, upload_key: str, requester: str) -> UploadSession:
        """
        Raises:
            NotFound: session absent or expired
            Forbidden: requester is not the owner
        """
        session = await self.load(upload_key)
        if session is None:
            raise NotFound("Upload session not found or expired")
        if session.owner != requester:
            log_warning(
                "Upload session access denied",
                event="mpupload",
                username=requester,
                upload_key=upload_key,
            )
            raise Forbidden()
        return session

    async def chunk_indices(self, upload_key: str) -> List[int]:
        members = await self.store.smembers(chunks_key(upload_key))
        return sorted(int(m) for m in members)

    async def touch(self, session: UploadSession) -> None:
        """Extend the TTL of the record, its chunk set and its resume pointer."""
        await self.store.expire(info_key(session.upload_key), self.session_ttl)
        await self.store.expire(chunks_key(session.upload_key), self.session_ttl)
        await self.store.expire(
            resume_pointer_key(session.owner, session.file_hash), self.session_ttl
        )

    async def status(self, upload_key: str, requester: str) -> Tuple[UploadSession, List[int]]:
        session = await self.get_owned(upload_key, requester)
        return session, await self.chunk_indices(upload_key)

    async def cancel(self, upload_key: str, requester: str) -> None:
        """Drop the session, its chunks and its resume pointer."""
        session = await self.get_owned(upload_key, requester)
        await self.purge(session)
        upload_cancel_total.inc()
        log_info(
            "Upload session cancelled",
            event="mpupload",
            username=requester,
            upload_key=upload_key,
        )

    async def purge(self, session: UploadSession) -> None:
        """Remove every trace of a session (after completion or cancel)."""
        await self.store.delete(info_key(session.upload_key), chunks_key(session.upload_key))
        await self.store.delete_if_equals(
            resume_pointer_key(session.owner, session.file_hash), session.upload_key
        )
        await self.staging.remove_chunks(session.upload_key)
