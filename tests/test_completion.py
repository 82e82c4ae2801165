"""
Multipart finalization: completeness, merge order, dedup, guard, failure paths.
"""
import asyncio
from pathlib import Path

import pytest

from cloudstorage.exceptions import Conflict, Incomplete, InvalidArgument, Unavailable
from cloudstorage.services.chunk_receiver import ChunkReceiver
from cloudstorage.services.completion import CompletionPipeline
from cloudstorage.services.completion_guard import CompletionGuard
from cloudstorage.services.dedup import DeduplicationIndex
from cloudstorage.services.file_meta import FileMetaRepository
from cloudstorage.services.file_store import FileStore
from cloudstorage.services.keys import chunks_key, guard_key, info_key, resume_pointer_key
from cloudstorage.services.upload_sessions import UploadSessionManager
from cloudstorage.services.user_files import UserFileRepository
from tests.helpers import body, sha1_hex, split_chunks

CONTENT = b"".join(bytes([i]) * 16 for i in range(3)) + b"last-piece"
FILE_HASH = sha1_hex(CONTENT)


@pytest.fixture
def sessions(store, staging):
    return UploadSessionManager(store, staging, chunk_size=16, session_ttl=100)


@pytest.fixture
def receiver(store, staging, sessions):
    return ChunkReceiver(store, staging, sessions)


def make_pipeline(db, store, staging, sessions, publisher, verify=True):
    return CompletionPipeline(
        store,
        staging,
        sessions,
        CompletionGuard(store, ttl=60),
        FileStore(FileMetaRepository(db), staging, publisher),
        UserFileRepository(db),
        verify_content_hash=verify,
    )


@pytest.fixture
def pipeline(db_session, store, staging, sessions, publisher):
    return make_pipeline(db_session, store, staging, sessions, publisher)


async def upload_all(sessions, receiver, owner, order=None, content=CONTENT, file_hash=FILE_HASH):
    session, _ = await sessions.initiate(owner, file_hash, len(content))
    parts = split_chunks(content)
    for index in order or range(len(parts)):
        await receiver.accept_chunk(session.upload_key, index, owner, body(parts[index]))
    return session


async def test_complete_stores_and_links(pipeline, sessions, receiver, store, staging, publisher, db_session):
    session = await upload_all(sessions, receiver, "alice")

    stored = await pipeline.complete(session.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")

    assert stored is True
    staged = staging.file_path(FILE_HASH)
    assert staged.read_bytes() == CONTENT
    publisher.publish.assert_awaited_once_with(FILE_HASH, str(staged), FILE_HASH)

    meta = await FileMetaRepository(db_session).get_by_hash(FILE_HASH)
    assert meta.file_size == len(CONTENT)
    assert meta.file_location == str(staged)
    link = await UserFileRepository(db_session).get_by_name("alice", "a.bin")
    assert link.file_hash == FILE_HASH

    # 세션 흔적과 가드가 모두 정리됨
    assert not await store.exists(info_key(session.upload_key))
    assert not await store.exists(chunks_key(session.upload_key))
    assert not await store.exists(resume_pointer_key("alice", FILE_HASH))
    assert not await store.exists(guard_key(FILE_HASH))
    assert not staging.chunk_dir(session.upload_key).exists()
    assert list(staging.tmp_root.iterdir()) == []


async def test_merge_follows_index_order(pipeline, sessions, receiver, staging):
    session = await upload_all(sessions, receiver, "alice", order=[3, 2, 1, 0])

    await pipeline.complete(session.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")

    assert staging.file_path(FILE_HASH).read_bytes() == CONTENT


async def test_incomplete_reports_missing(pipeline, sessions, receiver, store, publisher):
    session, _ = await sessions.initiate("alice", FILE_HASH, len(CONTENT))
    parts = split_chunks(CONTENT)
    await receiver.accept_chunk(session.upload_key, 0, "alice", body(parts[0]))
    await receiver.accept_chunk(session.upload_key, 2, "alice", body(parts[2]))

    with pytest.raises(Incomplete) as exc_info:
        await pipeline.complete(session.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")

    assert exc_info.value.missing == [1, 3]
    assert await store.exists(info_key(session.upload_key))
    assert not await store.exists(guard_key(FILE_HASH))
    publisher.publish.assert_not_awaited()


async def test_declared_hash_must_match_session(pipeline, sessions, receiver):
    session = await upload_all(sessions, receiver, "alice")
    with pytest.raises(InvalidArgument):
        await pipeline.complete(session.upload_key, "alice", sha1_hex(b"other"), len(CONTENT), "a.bin")


async def test_content_mismatch_keeps_session_and_releases_guard(
    pipeline, sessions, receiver, store, publisher, db_session
):
    wrong = b"Z" * len(CONTENT)
    session = await upload_all(sessions, receiver, "alice", content=wrong)

    with pytest.raises(InvalidArgument):
        await pipeline.complete(session.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")

    assert not await store.exists(guard_key(FILE_HASH))
    assert await store.exists(info_key(session.upload_key))
    assert not await FileMetaRepository(db_session).file_hash_exists(FILE_HASH)
    publisher.publish.assert_not_awaited()


async def test_content_check_can_be_disabled(db_session, store, staging, sessions, receiver, publisher):
    pipeline = make_pipeline(db_session, store, staging, sessions, publisher, verify=False)
    wrong = b"Z" * len(CONTENT)
    session = await upload_all(sessions, receiver, "alice", content=wrong)

    assert await pipeline.complete(session.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")


async def test_dedup_links_without_storing_again(pipeline, sessions, receiver, staging, publisher, db_session):
    first = await upload_all(sessions, receiver, "alice")
    await pipeline.complete(first.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")
    publisher.publish.reset_mock()

    second = await upload_all(sessions, receiver, "bob")
    stored = await pipeline.complete(second.upload_key, "bob", FILE_HASH, len(CONTENT), "b.bin")

    assert stored is False
    publisher.publish.assert_not_awaited()
    link = await UserFileRepository(db_session).get_by_name("bob", "b.bin")
    assert link.file_hash == FILE_HASH
    assert staging.file_path(FILE_HASH).read_bytes() == CONTENT
    assert list(staging.tmp_root.iterdir()) == []


async def test_conflict_while_guard_held(pipeline, sessions, receiver, store):
    session = await upload_all(sessions, receiver, "alice")
    await store.set(guard_key(FILE_HASH), "someone-else", ttl=60)

    with pytest.raises(Conflict):
        await pipeline.complete(session.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")

    assert await store.get(guard_key(FILE_HASH)) == "someone-else"
    assert await store.exists(info_key(session.upload_key))


async def test_guard_recovers_after_ttl(pipeline, sessions, receiver, store, clock):
    session = await upload_all(sessions, receiver, "alice")
    await store.set(guard_key(FILE_HASH), "crashed-holder", ttl=60)
    clock.advance(60)

    assert await pipeline.complete(session.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")


async def test_concurrent_completions_finalize_once(
    session_maker, store, staging, sessions, receiver, publisher
):
    alice = await upload_all(sessions, receiver, "alice")
    bob = await upload_all(sessions, receiver, "bob")

    async with session_maker() as db_a, session_maker() as db_b:
        results = await asyncio.gather(
            make_pipeline(db_a, store, staging, sessions, publisher).complete(
                alice.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin"
            ),
            make_pipeline(db_b, store, staging, sessions, publisher).complete(
                bob.upload_key, "bob", FILE_HASH, len(CONTENT), "b.bin"
            ),
            return_exceptions=True,
        )

    assert results.count(True) == 1
    assert sum(isinstance(r, Conflict) for r in results) == 1
    publisher.publish.assert_awaited_once()
    assert not await store.exists(guard_key(FILE_HASH))


async def test_publish_failure_keeps_stored_file(pipeline, sessions, receiver, store, staging, publisher, db_session):
    publisher.publish.side_effect = Unavailable("Transfer queue unavailable")
    session = await upload_all(sessions, receiver, "alice")

    with pytest.raises(Unavailable):
        await pipeline.complete(session.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")

    meta = await FileMetaRepository(db_session).get_by_hash(FILE_HASH)
    assert meta.transfer_pending is True
    assert staging.file_path(FILE_HASH).read_bytes() == CONTENT
    assert not await store.exists(guard_key(FILE_HASH))
    # 세션은 남아 있어 재시도 가능
    assert await store.exists(info_key(session.upload_key))


async def test_retry_publishes_pending_transfer(pipeline, sessions, receiver, store, staging, publisher, db_session):
    publisher.publish.side_effect = Unavailable("Transfer queue unavailable")
    session = await upload_all(sessions, receiver, "alice")
    with pytest.raises(Unavailable):
        await pipeline.complete(session.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")

    publisher.publish.side_effect = None
    publisher.publish.reset_mock()
    stored = await pipeline.complete(session.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")

    assert stored is False
    staged = staging.file_path(FILE_HASH)
    publisher.publish.assert_awaited_once_with(FILE_HASH, str(staged), FILE_HASH)
    meta = await FileMetaRepository(db_session).get_by_hash(FILE_HASH)
    assert meta.transfer_pending is False
    link = await UserFileRepository(db_session).get_by_name("alice", "a.bin")
    assert link.file_hash == FILE_HASH
    assert not await store.exists(info_key(session.upload_key))
    assert list(staging.tmp_root.iterdir()) == []


async def test_retry_restages_missing_pending_content(pipeline, sessions, receiver, staging, publisher, db_session):
    publisher.publish.side_effect = Unavailable("Transfer queue unavailable")
    session = await upload_all(sessions, receiver, "alice")
    with pytest.raises(Unavailable):
        await pipeline.complete(session.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")
    staging.file_path(FILE_HASH).unlink()

    publisher.publish.side_effect = None
    await pipeline.complete(session.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")

    assert staging.file_path(FILE_HASH).read_bytes() == CONTENT
    publisher.publish.assert_awaited_with(FILE_HASH, str(staging.file_path(FILE_HASH)), FILE_HASH)


async def test_fast_upload_during_publish_failure_keeps_content(
    pipeline, sessions, receiver, staging, publisher, db_session
):
    dedup = DeduplicationIndex(FileMetaRepository(db_session), UserFileRepository(db_session))

    async def link_bob_then_fail(*args):
        assert await dedup.fast_upload("bob", FILE_HASH, "bob.bin", len(CONTENT))
        raise Unavailable("Transfer queue unavailable")

    publisher.publish.side_effect = link_bob_then_fail
    session = await upload_all(sessions, receiver, "alice")
    with pytest.raises(Unavailable):
        await pipeline.complete(session.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")

    assert await UserFileRepository(db_session).get_by_name("bob", "bob.bin") is not None
    meta = await FileMetaRepository(db_session).get_by_hash(FILE_HASH)
    assert meta is not None
    assert Path(meta.file_location).read_bytes() == CONTENT


async def test_name_taken_by_other_content(pipeline, sessions, receiver, db_session):
    await UserFileRepository(db_session).create_user_file("alice", sha1_hex(b"old"), "a.bin", 3)
    session = await upload_all(sessions, receiver, "alice")

    with pytest.raises(InvalidArgument):
        await pipeline.complete(session.upload_key, "alice", FILE_HASH, len(CONTENT), "a.bin")
