"""
Test helpers shared across modules.
"""
import hashlib

from httpx import AsyncClient

CHUNK_SIZE = 16


def sha1_hex(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


def split_chunks(data: bytes, size: int = CHUNK_SIZE):
    return [data[i:i + size] for i in range(0, len(data), size)]


async def body(data: bytes):
    """Async byte stream, the shape request bodies arrive in."""
    yield data


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def signup_and_signin(client: AsyncClient, username: str = "alice", password: str = "secret1") -> dict:
    """Register ``username`` and return bearer headers."""
    await client.post("/user/signup", json={"username": username, "password": password})
    response = await client.post("/user/signin", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    token = response.json()["data"]["access_token"]
    return {"Authorization": f"Bearer {token}"}
