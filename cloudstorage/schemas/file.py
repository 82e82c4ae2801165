"""
User file and stored file schemas.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UserFileResponse(BaseModel):
    """A user's link to stored content."""

    file_hash: str
    file_name: str
    file_size: int
    upload_at: datetime
    last_update: datetime

    model_config = ConfigDict(from_attributes=True)


class StoredFileResponse(BaseModel):
    """Deduplicated content record."""

    file_hash: str
    file_name: str
    file_size: int
    file_location: str

    model_config = ConfigDict(from_attributes=True)


class FileMetaResponse(BaseModel):
    """``/file/meta`` payload."""

    user_file: UserFileResponse
    stored_file: Optional[StoredFileResponse] = None


class FastUploadRequest(BaseModel):
    """Link to already stored content by hash alone."""

    file_hash: str = Field(..., min_length=1, max_length=40)
    file_name: str = Field(..., min_length=1, max_length=255)
    file_size: int = Field(..., ge=0)


class FileUpdateRequest(BaseModel):
    """``/file/update``; only ``op == "rename"`` is implemented."""

    file_name: str = Field(..., min_length=1, max_length=255)
    op: str = "rename"
    new_name: str = Field(default="", max_length=255)
