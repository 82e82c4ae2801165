"""
Chunk upload: idempotent per index, any order, owner and range checks.
"""
import pytest

from cloudstorage.exceptions import Forbidden, InvalidArgument, NotFound
from cloudstorage.services.chunk_receiver import ChunkReceiver
from cloudstorage.services.keys import chunks_key, info_key
from cloudstorage.services.upload_sessions import UploadSessionManager
from tests.helpers import body, sha1_hex, split_chunks

CONTENT = b"0123456789abcdef" * 3 + b"tail"
FILE_HASH = sha1_hex(CONTENT)


@pytest.fixture
def sessions(store, staging):
    return UploadSessionManager(store, staging, chunk_size=16, session_ttl=100)


@pytest.fixture
def receiver(store, staging, sessions):
    return ChunkReceiver(store, staging, sessions)


@pytest.fixture
async def session(sessions):
    created, _ = await sessions.initiate("alice", FILE_HASH, len(CONTENT))
    return created


async def test_accept_chunk_records_index(receiver, session, store, staging):
    parts = split_chunks(CONTENT)

    size = await receiver.accept_chunk(session.upload_key, 3, "alice", body(parts[3]))

    assert size == 4
    assert await store.smembers(chunks_key(session.upload_key)) == {"3"}
    assert staging.chunk_path(session.upload_key, 3).read_bytes() == b"tail"


async def test_reupload_overwrites_without_duplicating(receiver, session, store, staging):
    await receiver.accept_chunk(session.upload_key, 0, "alice", body(b"x" * 16))
    await receiver.accept_chunk(session.upload_key, 0, "alice", body(b"y" * 16))

    assert await store.scard(chunks_key(session.upload_key)) == 1
    assert staging.chunk_path(session.upload_key, 0).read_bytes() == b"y" * 16


@pytest.mark.parametrize("index", [-1, 4, 100])
async def test_index_out_of_range(receiver, session, store, index):
    with pytest.raises(InvalidArgument):
        await receiver.accept_chunk(session.upload_key, index, "alice", body(b"x"))
    assert await store.scard(chunks_key(session.upload_key)) == 0


async def test_other_user_forbidden(receiver, session, store):
    with pytest.raises(Forbidden):
        await receiver.accept_chunk(session.upload_key, 0, "bob", body(b"x"))
    assert await store.scard(chunks_key(session.upload_key)) == 0


async def test_unknown_session(receiver):
    with pytest.raises(NotFound):
        await receiver.accept_chunk("missing", 0, "alice", body(b"x"))


async def test_chunk_refreshes_session_ttl(receiver, session, store, clock):
    clock.advance(90)
    await receiver.accept_chunk(session.upload_key, 1, "alice", body(b"x" * 16))
    clock.advance(90)
    assert await store.exists(info_key(session.upload_key))
    assert await store.exists(chunks_key(session.upload_key))


async def test_session_closed_while_writing(receiver, session, store, staging):
    async def closing_body():
        # 청크를 쓰는 도중 세션이 취소됨
        await store.delete(info_key(session.upload_key))
        yield b"x" * 16

    with pytest.raises(NotFound):
        await receiver.accept_chunk(session.upload_key, 0, "alice", closing_body())
    assert not await store.exists(chunks_key(session.upload_key))
    assert not staging.chunk_dir(session.upload_key).exists()
