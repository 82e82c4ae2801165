"""
Upload session lifecycle: initiate, resume, status, cancel, expiry.
"""
import asyncio

import pytest

from cloudstorage.exceptions import Forbidden, InvalidArgument, NotFound
from cloudstorage.services.keys import chunks_key, info_key, resume_pointer_key
from cloudstorage.services.upload_sessions import UploadSessionManager
from tests.helpers import body, sha1_hex

CONTENT = bytes(range(40))
FILE_HASH = sha1_hex(CONTENT)


@pytest.fixture
def sessions(store, staging):
    return UploadSessionManager(store, staging, chunk_size=16, session_ttl=100)


async def test_initiate_creates_session(sessions, store):
    session, chunks = await sessions.initiate("alice", FILE_HASH, len(CONTENT))

    assert chunks == []
    assert session.chunk_count == 3
    assert session.chunk_size == 16
    assert session.owner == "alice"
    assert len(session.upload_key) == 40
    assert await store.get(resume_pointer_key("alice", FILE_HASH)) == session.upload_key
    assert (await store.hgetall(info_key(session.upload_key)))["chunk_count"] == "3"


async def test_chunk_count_exact_multiple(sessions):
    session, _ = await sessions.initiate("alice", FILE_HASH, 32)
    assert session.chunk_count == 2


async def test_initiate_resumes_with_received_chunks(sessions, store):
    first, _ = await sessions.initiate("alice", FILE_HASH, len(CONTENT))
    await store.sadd(chunks_key(first.upload_key), "2")
    await store.sadd(chunks_key(first.upload_key), "0")

    again, chunks = await sessions.initiate("alice", FILE_HASH, len(CONTENT))

    assert again.upload_key == first.upload_key
    assert chunks == [0, 2]


async def test_concurrent_initiations_converge(sessions):
    results = await asyncio.gather(
        *(sessions.initiate("alice", FILE_HASH, len(CONTENT)) for _ in range(5))
    )
    assert len({session.upload_key for session, _ in results}) == 1


async def test_sessions_are_per_owner(sessions):
    alice, _ = await sessions.initiate("alice", FILE_HASH, len(CONTENT))
    bob, _ = await sessions.initiate("bob", FILE_HASH, len(CONTENT))
    assert alice.upload_key != bob.upload_key


async def test_hash_is_normalized(sessions):
    session, _ = await sessions.initiate("alice", FILE_HASH.upper(), len(CONTENT))
    assert session.file_hash == FILE_HASH


@pytest.mark.parametrize("bad_hash", ["", "abc", "../../etc/passwd", "g" * 40])
async def test_malformed_hash_rejected(sessions, bad_hash):
    with pytest.raises(InvalidArgument):
        await sessions.initiate("alice", bad_hash, 10)


async def test_non_positive_size_rejected(sessions):
    with pytest.raises(InvalidArgument):
        await sessions.initiate("alice", FILE_HASH, 0)


async def test_expired_session_is_replaced(sessions, clock):
    first, _ = await sessions.initiate("alice", FILE_HASH, len(CONTENT))
    clock.advance(100)

    second, chunks = await sessions.initiate("alice", FILE_HASH, len(CONTENT))

    assert second.upload_key != first.upload_key
    assert chunks == []


async def test_stale_pointer_is_replaced(sessions, store):
    first, _ = await sessions.initiate("alice", FILE_HASH, len(CONTENT))
    # 레코드만 사라지고 포인터가 남은 상태
    await store.delete(info_key(first.upload_key))

    second, _ = await sessions.initiate("alice", FILE_HASH, len(CONTENT))

    assert second.upload_key != first.upload_key
    assert await store.get(resume_pointer_key("alice", FILE_HASH)) == second.upload_key


async def test_status_requires_owner(sessions):
    session, _ = await sessions.initiate("alice", FILE_HASH, len(CONTENT))
    with pytest.raises(Forbidden):
        await sessions.status(session.upload_key, "bob")


async def test_status_unknown_key(sessions):
    with pytest.raises(NotFound):
        await sessions.status("nope", "alice")


async def test_session_expires_as_a_whole(sessions, store, staging, clock):
    session, _ = await sessions.initiate("alice", FILE_HASH, len(CONTENT))
    await staging.write_chunk(session.upload_key, 0, body(CONTENT[:16]))
    await store.sadd(chunks_key(session.upload_key), "0")
    await sessions.touch(session)

    clock.advance(100)

    with pytest.raises(NotFound):
        await sessions.status(session.upload_key, "alice")
    assert not await store.exists(chunks_key(session.upload_key))
    assert not await store.exists(resume_pointer_key("alice", FILE_HASH))


async def test_cancel_removes_everything(sessions, store, staging):
    session, _ = await sessions.initiate("alice", FILE_HASH, len(CONTENT))
    await staging.write_chunk(session.upload_key, 1, body(CONTENT[16:32]))
    await store.sadd(chunks_key(session.upload_key), "1")

    await sessions.cancel(session.upload_key, "alice")

    with pytest.raises(NotFound):
        await sessions.status(session.upload_key, "alice")
    assert not await store.exists(info_key(session.upload_key))
    assert not await store.exists(chunks_key(session.upload_key))
    assert not await store.exists(resume_pointer_key("alice", FILE_HASH))
    assert not staging.chunk_dir(session.upload_key).exists()


async def test_cancel_by_other_user_forbidden(sessions, store):
    session, _ = await sessions.initiate("alice", FILE_HASH, len(CONTENT))
    with pytest.raises(Forbidden):
        await sessions.cancel(session.upload_key, "bob")
    assert await store.exists(info_key(session.upload_key))


async def test_cancel_missing_session(sessions):
    with pytest.raises(NotFound):
        await sessions.cancel("nope", "alice")
