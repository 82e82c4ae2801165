"""
Response envelope shared by every endpoint.
"""
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    """``{code, msg, data}``; ``code == 0`` on success, negative on failure."""

    code: int = 0
    msg: str = "OK"
    data: Optional[T] = None


def ok(data: Any = None, msg: str = "OK") -> dict:
    return {"code": 0, "msg": msg, "data": data}


def fail(code: int, msg: str, data: Any = None) -> dict:
    return {"code": code, "msg": msg, "data": data}
