"""
Multipart upload schemas.
"""
from typing import List

from pydantic import BaseModel, Field


class MultipartInitRequest(BaseModel):
    """Initiate (or resume) a chunked upload of content with a known hash."""

    file_hash: str = Field(..., min_length=1, max_length=40)
    file_size: int = Field(..., gt=0)


class UploadSessionResponse(BaseModel):
    """Session shape returned by init and status."""

    upload_key: str
    file_hash: str
    file_size: int
    chunk_size: int
    chunk_count: int
    chunk_exists: List[int] = []


class MultipartCompleteRequest(BaseModel):
    """Finalize a chunked upload."""

    upload_key: str = Field(..., min_length=1)
    file_hash: str = Field(..., min_length=1, max_length=40)
    file_size: int = Field(..., gt=0)
    file_name: str = Field(..., min_length=1, max_length=255)


class MultipartCancelRequest(BaseModel):
    upload_key: str = Field(..., min_length=1)
