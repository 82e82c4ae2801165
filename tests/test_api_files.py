"""
File routes: single-shot upload, fast upload, queries, download, rename, delete.
"""
from tests.helpers import sha1_hex, signup_and_signin

CONTENT = b"hello cloud storage"
FILE_HASH = sha1_hex(CONTENT)


async def upload(client, headers, name="hello.txt", content=CONTENT):
    return await client.post(
        "/file/upload",
        files={"file": (name, content, "text/plain")},
        headers=headers,
    )


async def test_single_upload(client, auth_headers, staging, publisher):
    response = await upload(client, auth_headers)

    assert response.status_code == 200
    assert response.json()["data"] == {"file_hash": FILE_HASH, "deduplicated": False}
    assert staging.file_path(FILE_HASH).read_bytes() == CONTENT
    publisher.publish.assert_awaited_once()


async def test_single_upload_dedups_across_users(client, auth_headers, publisher):
    await upload(client, auth_headers)
    bob = await signup_and_signin(client, "bob")

    response = await upload(client, bob, name="copy.txt")

    assert response.json()["data"]["deduplicated"] is True
    publisher.publish.assert_awaited_once()


async def test_fast_upload_miss_then_hit(client, auth_headers):
    bob = await signup_and_signin(client, "bob")
    request = {"file_hash": FILE_HASH, "file_name": "fast.txt", "file_size": len(CONTENT)}

    response = await client.post("/file/fastupload", json=request, headers=bob)
    assert response.status_code == 200
    assert response.json()["code"] == -1

    await upload(client, auth_headers)
    response = await client.post("/file/fastupload", json=request, headers=bob)
    assert response.json()["code"] == 0

    response = await client.get("/file/meta", params={"file_name": "fast.txt"}, headers=bob)
    assert response.json()["data"]["stored_file"]["file_hash"] == FILE_HASH


async def test_meta_not_found(client, auth_headers):
    response = await client.get("/file/meta", params={"file_name": "nope"}, headers=auth_headers)
    assert response.status_code == 404
    assert response.json() == {"code": -404, "msg": "File not found: nope", "data": None}


async def test_recent_and_query(client, auth_headers):
    for i in range(7):
        await upload(client, auth_headers, name=f"f{i}.txt", content=f"content {i}".encode())

    response = await client.get("/file/recent", params={"page": 1, "limit": 3}, headers=auth_headers)
    assert [f["file_name"] for f in response.json()["data"]] == ["f6.txt", "f5.txt", "f4.txt"]

    response = await client.get("/file/recent", params={"page": 3, "limit": 3}, headers=auth_headers)
    assert [f["file_name"] for f in response.json()["data"]] == ["f0.txt"]

    response = await client.get("/file/query", headers=auth_headers)
    assert len(response.json()["data"]) == 5


async def test_listing_is_per_user(client, auth_headers):
    await upload(client, auth_headers)
    bob = await signup_and_signin(client, "bob")

    response = await client.get("/file/query", headers=bob)
    assert response.json()["data"] == []


async def test_download_from_staging(client, auth_headers):
    await upload(client, auth_headers)

    response = await client.get("/file/download", params={"file_name": "hello.txt"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.content == CONTENT
    assert "hello.txt" in response.headers["content-disposition"]


async def test_download_from_object_storage(client, auth_headers, session_maker, storage):
    from cloudstorage.services.file_meta import FileMetaRepository

    await upload(client, auth_headers)
    async with session_maker() as db:
        await FileMetaRepository(db).update_location(FILE_HASH, f"oss://test-bucket/{FILE_HASH}")
    storage.download_file.return_value = CONTENT

    response = await client.get("/file/download", params={"file_name": "hello.txt"}, headers=auth_headers)

    assert response.content == CONTENT
    storage.download_file.assert_awaited_once_with(FILE_HASH)


async def test_rename(client, auth_headers):
    await upload(client, auth_headers)

    response = await client.post(
        "/file/update",
        json={"file_name": "hello.txt", "op": "rename", "new_name": "renamed.txt"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json()["data"]["file_name"] == "renamed.txt"
    response = await client.get("/file/meta", params={"file_name": "hello.txt"}, headers=auth_headers)
    assert response.status_code == 404


async def test_rename_rejections(client, auth_headers):
    await upload(client, auth_headers, name="a.txt", content=b"a")
    await upload(client, auth_headers, name="b.txt", content=b"b")

    response = await client.post(
        "/file/update",
        json={"file_name": "a.txt", "op": "rename", "new_name": "b.txt"},
        headers=auth_headers,
    )
    assert response.status_code == 400

    response = await client.post(
        "/file/update",
        json={"file_name": "a.txt", "op": "rename", "new_name": ""},
        headers=auth_headers,
    )
    assert response.status_code == 400

    response = await client.post(
        "/file/update",
        json={"file_name": "missing.txt", "op": "rename", "new_name": "c.txt"},
        headers=auth_headers,
    )
    assert response.status_code == 404


async def test_update_other_op_not_implemented(client, auth_headers):
    response = await client.post(
        "/file/update",
        json={"file_name": "a.txt", "op": "move", "new_name": "b.txt"},
        headers=auth_headers,
    )
    assert response.status_code == 501


async def test_delete_keeps_shared_content(client, auth_headers, session_maker):
    from cloudstorage.services.file_meta import FileMetaRepository

    await upload(client, auth_headers)

    response = await client.delete("/file/delete", params={"file_name": "hello.txt"}, headers=auth_headers)
    assert response.status_code == 200

    response = await client.delete("/file/delete", params={"file_name": "hello.txt"}, headers=auth_headers)
    assert response.status_code == 404

    async with session_maker() as db:
        assert await FileMetaRepository(db).file_hash_exists(FILE_HASH)
