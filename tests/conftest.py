"""
Shared fixtures.

Environment is set before any ``cloudstorage`` import so that the cached settings,
the engine and the logger see test values.
"""
import os
import tempfile

_TMP_ROOT = tempfile.mkdtemp(prefix="cloudstorage-test-")

os.environ["ENVIRONMENT"] = "DEV"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = ""
os.environ["TEMP_FILE_PATH"] = os.path.join(_TMP_ROOT, "staging")
os.environ["LOG_DIR"] = os.path.join(_TMP_ROOT, "logs")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ASYNC_TRANSFER_ENABLE"] = "false"
os.environ["CHUNK_SIZE"] = "16"

from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import cloudstorage.models  # noqa: E402,F401
from cloudstorage.database import Base, get_db  # noqa: E402
from cloudstorage.dependencies.services import (  # noqa: E402
    provide_object_storage,
    provide_publisher,
    provide_session_store,
    provide_staging,
)
from cloudstorage.main import app as fastapi_app  # noqa: E402
from cloudstorage.services.object_storage import ObjectStorageService  # noqa: E402
from cloudstorage.services.staging import StagingArea  # noqa: E402
from cloudstorage.session_store import InMemorySessionStore  # noqa: E402
from tests.helpers import FakeClock, signup_and_signin  # noqa: E402


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def staging(tmp_path):
    area = StagingArea(str(tmp_path / "staging"))
    area.ensure_dirs()
    return area


@pytest.fixture
def publisher():
    mock = MagicMock()
    mock.publish = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def storage():
    mock = MagicMock(spec=ObjectStorageService)
    mock.bucket = "test-bucket"
    mock.upload_file = AsyncMock(side_effect=lambda path, key: f"oss://test-bucket/{key}")
    mock.download_file = AsyncMock(return_value=b"")
    mock.key_from_location = MagicMock(side_effect=lambda loc: loc.rsplit("/", 1)[-1])
    return mock


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def app(session_maker, store, staging, publisher, storage):
    async def override_get_db():
        async with session_maker() as session:
            yield session
            await session.commit()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[provide_session_store] = lambda: store
    fastapi_app.dependency_overrides[provide_staging] = lambda: staging
    fastapi_app.dependency_overrides[provide_publisher] = lambda: publisher
    fastapi_app.dependency_overrides[provide_object_storage] = lambda: storage
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def auth_headers(client):
    return await signup_and_signin(client)
