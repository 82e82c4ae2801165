"""
Multipart (chunked, resumable) upload router.

Flow: init -> uppart (any order, repeatable) -> complete, or cancel at any point.
init for a hash the user is already uploading returns the live session and the chunk
indices already received, so the client only sends what is missing.
"""
from typing import List

from fastapi import APIRouter, Depends, Query, Request

from cloudstorage.dependencies.auth import get_current_active_user
from cloudstorage.dependencies.services import (
    get_chunk_receiver,
    get_completion_pipeline,
    get_upload_sessions,
)
from cloudstorage.models.user import User
from cloudstorage.schemas.common import Envelope, ok
from cloudstorage.schemas.mpupload import (
    MultipartCancelRequest,
    MultipartCompleteRequest,
    MultipartInitRequest,
    UploadSessionResponse,
)
from cloudstorage.services.chunk_receiver import ChunkReceiver
from cloudstorage.services.completion import CompletionPipeline
from cloudstorage.services.upload_sessions import UploadSession, UploadSessionManager

router = APIRouter(prefix="/file/mpupload", tags=["Multipart Upload"])


def _session_payload(session: UploadSession, chunks: List[int]) -> dict:
    return UploadSessionResponse(
        upload_key=session.upload_key,
        file_hash=session.file_hash,
        file_size=session.file_size,
        chunk_size=session.chunk_size,
        chunk_count=session.chunk_count,
        chunk_exists=chunks,
    ).model_dump()


@router.post("/init", response_model=Envelope[UploadSessionResponse], summary="Initiate or resume")
async def init_upload(
    body: MultipartInitRequest,
    current_user: User = Depends(get_current_active_user),
    sessions: UploadSessionManager = Depends(get_upload_sessions),
) -> dict:
    session, chunks = await sessions.initiate(
        current_user.username, body.file_hash, body.file_size
    )
    return ok(_session_payload(session, chunks))


@router.put("/uppart", response_model=Envelope[dict], summary="Upload one chunk")
async def upload_part(
    request: Request,
    upload_key: str = Query(..., min_length=1),
    index: int = Query(...),
    current_user: User = Depends(get_current_active_user),
    receiver: ChunkReceiver = Depends(get_chunk_receiver),
) -> dict:
    """The request body is the raw chunk bytes."""
    size = await receiver.accept_chunk(
        upload_key, index, current_user.username, request.stream()
    )
    return ok({"index": index, "size": size})


@router.post("/complete", response_model=Envelope[dict], summary="Finalize an upload")
async def complete_upload(
    body: MultipartCompleteRequest,
    current_user: User = Depends(get_current_active_user),
    pipeline: CompletionPipeline = Depends(get_completion_pipeline),
) -> dict:
    """
    Merge the chunks and register the file.

    Returns 400 (code -2) with the missing indices while chunks are outstanding and
    429 while another finalization of the same content is running.
    """
    stored = await pipeline.complete(
        body.upload_key,
        current_user.username,
        body.file_hash,
        body.file_size,
        body.file_name,
    )
    return ok({"file_hash": body.file_hash.lower(), "deduplicated": not stored})


@router.post("/cancel", response_model=Envelope[None], summary="Cancel an upload")
async def cancel_upload(
    body: MultipartCancelRequest,
    current_user: User = Depends(get_current_active_user),
    sessions: UploadSessionManager = Depends(get_upload_sessions),
) -> dict:
    await sessions.cancel(body.upload_key, current_user.username)
    return ok()


@router.get("/status", response_model=Envelope[UploadSessionResponse], summary="Upload progress")
async def upload_status(
    upload_key: str = Query(..., min_length=1),
    current_user: User = Depends(get_current_active_user),
    sessions: UploadSessionManager = Depends(get_upload_sessions),
) -> dict:
    session, chunks = await sessions.status(upload_key, current_user.username)
    return ok(_session_payload(session, chunks))
