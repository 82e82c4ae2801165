"""
User-related Pydantic schemas for request/response validation.
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class UserCreate(BaseModel):
    """Schema for signup."""

    username: str = Field(..., min_length=3, max_length=64)
    password: str = Field(..., min_length=5, max_length=100)


class UserLogin(BaseModel):
    """Schema for signin."""

    username: str
    password: str


class UserResponse(BaseModel):
    """Schema for user info (excludes sensitive data)."""

    username: str
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SigninResponse(BaseModel):
    """Signin payload: where to go next plus the bearer token."""

    file_loc: str
    username: str
    access_token: str
    token_type: str = "bearer"
