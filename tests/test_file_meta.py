"""
StoredFile and UserFile repositories.
"""
from cloudstorage.services.file_meta import FileMetaRepository
from cloudstorage.services.user_files import UserFileRepository
from tests.helpers import sha1_hex

HASH_A = sha1_hex(b"a")
HASH_B = sha1_hex(b"b")


async def test_create_file_meta_once(db_session):
    repo = FileMetaRepository(db_session)
    assert await repo.create_file_meta(HASH_A, "a", 1, "/somewhere/a") is True
    assert await repo.create_file_meta(HASH_A, "a", 1, "/somewhere/a") is False
    assert await repo.file_hash_exists(HASH_A)


async def test_user_file_relink_same_hash_is_noop(db_session):
    repo = UserFileRepository(db_session)
    assert await repo.create_user_file("alice", HASH_A, "a.txt", 1)
    assert await repo.create_user_file("alice", HASH_A, "a.txt", 1)
    assert not await repo.create_user_file("alice", HASH_B, "a.txt", 1)
    assert len(await repo.get_user_files("alice")) == 1


async def test_same_name_for_different_users(db_session):
    repo = UserFileRepository(db_session)
    assert await repo.create_user_file("alice", HASH_A, "a.txt", 1)
    assert await repo.create_user_file("bob", HASH_B, "a.txt", 1)


async def test_sweep_orphaned(db_session, staging):
    repo = FileMetaRepository(db_session)
    links = UserFileRepository(db_session)

    # 스테이징 파일이 사라지고 참조도 없음 → 삭제 대상
    await repo.create_file_meta(HASH_A, "a", 1, str(staging.file_path(HASH_A)))
    # 참조가 남아 있음 → 유지
    await repo.create_file_meta(HASH_B, "b", 1, str(staging.file_path(HASH_B)))
    await links.create_user_file("alice", HASH_B, "b", 1)
    # 오브젝트 스토리지로 이전됨 → 유지
    hash_c = sha1_hex(b"c")
    await repo.create_file_meta(hash_c, "c", 1, f"oss://bucket/{hash_c}")

    assert await repo.sweep_orphaned(str(staging.root)) == [HASH_A]
    assert await repo.file_hash_exists(HASH_B)
    assert await repo.file_hash_exists(hash_c)
