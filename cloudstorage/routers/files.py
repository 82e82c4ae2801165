"""
Files router: single-shot upload, fast upload, queries, download, rename, delete.
"""
import mimetypes
from typing import AsyncIterator
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse, Response

from cloudstorage.dependencies.auth import get_current_active_user
from cloudstorage.dependencies.services import get_dedup_index, get_file_service
from cloudstorage.models.user import User
from cloudstorage.schemas.common import Envelope, fail, ok
from cloudstorage.schemas.file import (
    FastUploadRequest,
    FileMetaResponse,
    FileUpdateRequest,
    StoredFileResponse,
    UserFileResponse,
)
from cloudstorage.services.dedup import DeduplicationIndex
from cloudstorage.services.files import FileService
from cloudstorage.utils.hashing import READ_BLOCK_SIZE

router = APIRouter(prefix="/file", tags=["Files"])

# 빠른 업로드 실패 (해시 미등록) 코드: 클라이언트는 일반 업로드로 전환
FAST_UPLOAD_MISS_CODE = -1


async def _iter_upload(file: UploadFile) -> AsyncIterator[bytes]:
    while True:
        block = await file.read(READ_BLOCK_SIZE)
        if not block:
            break
        yield block


def _content_disposition(file_name: str) -> str:
    return f"attachment; filename*=UTF-8''{quote(file_name)}"


@router.post("/upload", response_model=Envelope[dict], summary="Upload a whole file")
async def upload_file(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_active_user),
    file_service: FileService = Depends(get_file_service),
) -> dict:
    """
    Upload a file in one request.

    The content hash is computed server side; content that is already stored is
    linked instead of stored again.
    """
    try:
        file_hash, stored = await file_service.upload(
            current_user.username, file.filename or "", _iter_upload(file)
        )
    finally:
        await file.close()
    return ok({"file_hash": file_hash, "deduplicated": not stored})


@router.post("/fastupload", response_model=Envelope[None], summary="Link already stored content")
async def fast_upload(
    body: FastUploadRequest,
    current_user: User = Depends(get_current_active_user),
    dedup: DeduplicationIndex = Depends(get_dedup_index),
) -> dict:
    """
    Instant upload by hash.

    Returns code -1 when no stored content has this hash; the client then uploads the
    bytes (single-shot or multipart).
    """
    linked = await dedup.fast_upload(
        current_user.username, body.file_hash, body.file_name, body.file_size
    )
    if not linked:
        return fail(FAST_UPLOAD_MISS_CODE, "Fast upload failed, please use the normal upload")
    return ok()


@router.get("/meta", response_model=Envelope[FileMetaResponse], summary="Get file metadata")
async def get_file_meta(
    file_name: str = Query(..., min_length=1),
    current_user: User = Depends(get_current_active_user),
    file_service: FileService = Depends(get_file_service),
) -> dict:
    user_file, stored = await file_service.get_meta(current_user.username, file_name)
    payload = FileMetaResponse(
        user_file=UserFileResponse.model_validate(user_file),
        stored_file=StoredFileResponse.model_validate(stored) if stored else None,
    )
    return ok(payload.model_dump(mode="json"))


@router.get("/recent", response_model=Envelope[list], summary="List recent files")
async def recent_files(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_active_user),
    file_service: FileService = Depends(get_file_service),
) -> dict:
    files = await file_service.recent(current_user.username, page, limit)
    return ok([UserFileResponse.model_validate(f).model_dump(mode="json") for f in files])


@router.get("/query", response_model=Envelope[list], summary="Query latest files")
async def query_files(
    limit: int = Query(5, ge=1, le=100),
    current_user: User = Depends(get_current_active_user),
    file_service: FileService = Depends(get_file_service),
) -> dict:
    files = await file_service.recent(current_user.username, 1, limit)
    return ok([UserFileResponse.model_validate(f).model_dump(mode="json") for f in files])


@router.get("/download", summary="Download a file")
async def download_file(
    file_name: str = Query(..., min_length=1),
    current_user: User = Depends(get_current_active_user),
    file_service: FileService = Depends(get_file_service),
) -> Response:
    """
    Stream the file content. Content still in local staging is served from disk,
    migrated content is read from object storage.
    """
    source = await file_service.open_download(current_user.username, file_name)
    media_type = mimetypes.guess_type(source.file_name)[0] or "application/octet-stream"
    headers = {"Content-Disposition": _content_disposition(source.file_name)}

    if source.path is not None:
        return FileResponse(source.path, media_type=media_type, headers=headers)
    return Response(content=source.content, media_type=media_type, headers=headers)


@router.post("/update", response_model=Envelope[UserFileResponse], summary="Update a file")
async def update_file(
    body: FileUpdateRequest,
    current_user: User = Depends(get_current_active_user),
    file_service: FileService = Depends(get_file_service),
) -> dict:
    """Only ``op == "rename"`` is supported."""
    if body.op != "rename":
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail=f"Unsupported operation: {body.op}",
        )
    renamed = await file_service.rename(current_user.username, body.file_name, body.new_name)
    return ok(UserFileResponse.model_validate(renamed).model_dump(mode="json"))


@router.delete("/delete", response_model=Envelope[None], summary="Delete a file")
async def delete_file(
    file_name: str = Query(..., min_length=1),
    current_user: User = Depends(get_current_active_user),
    file_service: FileService = Depends(get_file_service),
) -> dict:
    """Remove the user's link; the stored content stays for other owners."""
    await file_service.delete(current_user.username, file_name)
    return ok()
