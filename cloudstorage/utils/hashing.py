"""
Content hash helpers (SHA-1 hex, the deduplication key).
"""
import hashlib
import re
from typing import BinaryIO, Tuple

from cloudstorage.exceptions import InvalidArgument

_SHA1_HEX = re.compile(r"^[0-9a-f]{40}$")

# 해시 계산 시 읽기 단위
READ_BLOCK_SIZE = 1024 * 1024


def normalize_file_hash(value: str) -> str:
    """Lower-case a client supplied hash and reject anything that is not SHA-1 hex."""
    normalized = (value or "").strip().lower()
    if not _SHA1_HEX.match(normalized):
        raise InvalidArgument("file_hash must be a 40 character SHA-1 hex digest")
    return normalized


def sha1_stream(stream: BinaryIO) -> Tuple[str, int]:
    """SHA-1 hex digest and byte length of a readable binary stream."""
    digest = hashlib.sha1()
    size = 0
    while True:
        block = stream.read(READ_BLOCK_SIZE)
        if not block:
            break
        digest.update(block)
        size += len(block)
    return digest.hexdigest(), size
