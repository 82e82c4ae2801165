"""
Session store key layout.
"""


def info_key(upload_key: str) -> str:
    """Hash with the upload session record."""
    return f"mpupload:info:{upload_key}"


def chunks_key(upload_key: str) -> str:
    """Set of received chunk indices."""
    return f"mpupload:chunks:{upload_key}"


def resume_pointer_key(owner: str, file_hash: str) -> str:
    """(owner, content hash) -> uploadKey of the live session."""
    return f"mpupload:hash:{owner}:{file_hash}"


def guard_key(file_hash: str) -> str:
    """Completion guard, value is the holder's random token."""
    return f"mpupload:processing:{file_hash}"


def token_key(username: str) -> str:
    """Currently issued access token."""
    return f"token:{username}"
