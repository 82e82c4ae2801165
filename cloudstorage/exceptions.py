"""
Domain errors raised by the upload services.

Each error carries the HTTP status and the negative envelope code it is rendered with
by the exception handler registered in ``cloudstorage.main``. Callers decide whether
to retry: ``Conflict`` and ``Unavailable`` are retry-worthy, the rest are not.
"""
from fastapi import status


class UploadError(Exception):
    """Base class for upload/storage domain errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: int = -500
    default_detail: str = "Upload error"

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFound(UploadError):
    """Session, key or file is absent (or expired)."""

    status_code = status.HTTP_404_NOT_FOUND
    code = -404
    default_detail = "Not found"


class Forbidden(UploadError):
    """Requester is not the owner of the session."""

    status_code = status.HTTP_403_FORBIDDEN
    code = -403
    default_detail = "Not your file!"


class InvalidArgument(UploadError):
    """Bad index, malformed input, or content that does not match its declaration."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = -400
    default_detail = "Invalid argument"


class Incomplete(UploadError):
    """Finalization requested before every chunk was received."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = -2
    default_detail = "invalid request"

    def __init__(self, detail: str = None, missing: list = None):
        super().__init__(detail)
        self.missing = missing or []


class Conflict(UploadError):
    """A finalization for the same content hash is already in flight."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = -429
    default_detail = "Upload of this content is already being finalized, retry later"


class Unavailable(UploadError):
    """A downstream store or broker write did not succeed."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = -503
    default_detail = "Service unavailable"
