"""
Service providers for FastAPI dependency injection.

Process-wide collaborators (session store, staging, object storage, publisher) are
singletons; repositories and pipelines are built per request around the request's
database session. Tests override the singleton providers with ``app.dependency_overrides``.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cloudstorage.database import get_db
from cloudstorage.services.auth import AuthService
from cloudstorage.services.chunk_receiver import ChunkReceiver
from cloudstorage.services.completion import CompletionPipeline
from cloudstorage.services.completion_guard import CompletionGuard
from cloudstorage.services.dedup import DeduplicationIndex
from cloudstorage.services.file_meta import FileMetaRepository
from cloudstorage.services.file_store import FileStore
from cloudstorage.services.files import FileService
from cloudstorage.services.object_storage import ObjectStorageService, get_storage_service
from cloudstorage.services.staging import StagingArea, get_staging_area
from cloudstorage.services.transfer import TransferPublisher, get_transfer_publisher
from cloudstorage.services.upload_sessions import UploadSessionManager
from cloudstorage.services.user_files import UserFileRepository
from cloudstorage.session_store import SessionStore, get_session_store


def provide_session_store() -> SessionStore:
    return get_session_store()


def provide_staging() -> StagingArea:
    return get_staging_area()


def provide_publisher() -> TransferPublisher:
    return get_transfer_publisher()


def provide_object_storage() -> ObjectStorageService:
    return get_storage_service()


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(provide_session_store),
) -> AuthService:
    return AuthService(db, store)


def get_upload_sessions(
    store: SessionStore = Depends(provide_session_store),
    staging: StagingArea = Depends(provide_staging),
) -> UploadSessionManager:
    return UploadSessionManager(store, staging)


def get_chunk_receiver(
    store: SessionStore = Depends(provide_session_store),
    staging: StagingArea = Depends(provide_staging),
    sessions: UploadSessionManager = Depends(get_upload_sessions),
) -> ChunkReceiver:
    return ChunkReceiver(store, staging, sessions)


def get_file_store(
    db: AsyncSession = Depends(get_db),
    staging: StagingArea = Depends(provide_staging),
    publisher: TransferPublisher = Depends(provide_publisher),
) -> FileStore:
    return FileStore(FileMetaRepository(db), staging, publisher)


def get_completion_pipeline(
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(provide_session_store),
    staging: StagingArea = Depends(provide_staging),
    sessions: UploadSessionManager = Depends(get_upload_sessions),
    file_store: FileStore = Depends(get_file_store),
) -> CompletionPipeline:
    return CompletionPipeline(
        store,
        staging,
        sessions,
        CompletionGuard(store),
        file_store,
        UserFileRepository(db),
    )


def get_dedup_index(db: AsyncSession = Depends(get_db)) -> DeduplicationIndex:
    return DeduplicationIndex(FileMetaRepository(db), UserFileRepository(db))


def get_file_service(
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(provide_session_store),
    staging: StagingArea = Depends(provide_staging),
    file_store: FileStore = Depends(get_file_store),
    storage: ObjectStorageService = Depends(provide_object_storage),
) -> FileService:
    return FileService(
        FileMetaRepository(db),
        UserFileRepository(db),
        staging,
        file_store,
        CompletionGuard(store),
        storage,
    )
