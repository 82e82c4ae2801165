"""
Services package.
Contains upload business logic and external service integrations.
"""
from cloudstorage.services.auth import AuthService
from cloudstorage.services.chunk_receiver import ChunkReceiver
from cloudstorage.services.completion import CompletionPipeline
from cloudstorage.services.completion_guard import CompletionGuard
from cloudstorage.services.dedup import DeduplicationIndex
from cloudstorage.services.file_store import FileStore
from cloudstorage.services.files import FileService
from cloudstorage.services.object_storage import ObjectStorageService
from cloudstorage.services.staging import StagingArea
from cloudstorage.services.upload_sessions import UploadSessionManager

__all__ = [
    "AuthService",
    "ChunkReceiver",
    "CompletionPipeline",
    "CompletionGuard",
    "DeduplicationIndex",
    "FileStore",
    "FileService",
    "ObjectStorageService",
    "StagingArea",
    "UploadSessionManager",
]
