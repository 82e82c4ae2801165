"""
Local staging area.

Layout under TEMP_FILE_PATH:
    chunks/<uploadKey>/<index>   received chunks of one upload session
    files/<fileHash>             assembled content waiting for migration
    tmp/                         in-progress writes (renamed into place when complete)

Every write lands in ``tmp/`` first and is moved with ``os.replace`` so a reader never
sees a half written chunk or file. Blocking file I/O runs in the default executor.
"""
import asyncio
import hashlib
import os
import shutil
import uuid
from pathlib import Path
from typing import AsyncIterable, Optional, Tuple

from cloudstorage.config import get_settings
from cloudstorage.exceptions import NotFound
from cloudstorage.utils.hashing import READ_BLOCK_SIZE


class StagingArea:
    """Filesystem staging for chunks and assembled files."""

    def __init__(self, root: str):
        self.root = Path(root)
        self.chunks_root = self.root / "chunks"
        self.files_root = self.root / "files"
        self.tmp_root = self.root / "tmp"

    def ensure_dirs(self) -> None:
        for path in (self.chunks_root, self.files_root, self.tmp_root):
            path.mkdir(parents=True, exist_ok=True)

    def chunk_dir(self, upload_key: str) -> Path:
        return self.chunks_root / upload_key

    def chunk_path(self, upload_key: str, index: int) -> Path:
        return self.chunk_dir(upload_key) / str(index)

    def file_path(self, file_hash: str) -> Path:
        return self.files_root / file_hash

    def is_staged_location(self, location: str) -> bool:
        """True if ``location`` points into this staging area."""
        try:
            Path(location).resolve().relative_to(self.root.resolve())
        except ValueError:
            return False
        return True

    def _tmp_path(self) -> Path:
        self.tmp_root.mkdir(parents=True, exist_ok=True)
        return self.tmp_root / uuid.uuid4().hex

    async def write_chunk(
        self, upload_key: str, index: int, data: AsyncIterable[bytes]
    ) -> int:
        """
        Persist one chunk, fully replacing any earlier write of the same index.

        Returns:
            Number of bytes written
        """
        loop = asyncio.get_running_loop()
        tmp_path = self._tmp_path()
        size = 0
        f = await loop.run_in_executor(None, open, tmp_path, "wb")
        try:
            async for piece in data:
                if piece:
                    await loop.run_in_executor(None, f.write, piece)
                    size += len(piece)
        except BaseException:
            f.close()
            tmp_path.unlink(missing_ok=True)
            raise
        f.close()

        target = self.chunk_path(upload_key, index)
        await loop.run_in_executor(None, self._move_into_place, tmp_path, target)
        return size

    @staticmethod
    def _move_into_place(src: Path, dst: Path) -> None:
        dst.parent.mkdir(parents=True, exist_ok=True)
        os.replace(src, dst)

    async def merge_chunks(self, upload_key: str, chunk_count: int) -> Tuple[Path, str, int]:
        """
        Concatenate chunks ``0..chunk_count-1`` in index order into one temp file.

        Returns:
            (merged temp path, SHA-1 hex of merged bytes, merged length)

        Raises:
            NotFound: a chunk file is missing (session purged concurrently)
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._merge_sync, upload_key, chunk_count)

    def _merge_sync(self, upload_key: str, chunk_count: int) -> Tuple[Path, str, int]:
        merged_path = self._tmp_path()
        digest = hashlib.sha1()
        size = 0
        try:
            with open(merged_path, "wb") as out:
                for index in range(chunk_count):
                    try:
                        part = open(self.chunk_path(upload_key, index), "rb")
                    except FileNotFoundError:
                        raise NotFound(f"Chunk {index} is missing")
                    with part:
                        while True:
                            block = part.read(READ_BLOCK_SIZE)
                            if not block:
                                break
                            out.write(block)
                            digest.update(block)
                            size += len(block)
        except BaseException:
            merged_path.unlink(missing_ok=True)
            raise
        return merged_path, digest.hexdigest(), size

    async def stage_file(self, src: Path, file_hash: str) -> Path:
        """Move an assembled temp file to its hash keyed staging location."""
        target = self.file_path(file_hash)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._move_into_place, src, target)
        return target

    async def save_stream(self, data: AsyncIterable[bytes]) -> Tuple[Path, str, int]:
        """Write a stream to a temp file, hashing it on the way."""
        loop = asyncio.get_running_loop()
        tmp_path = self._tmp_path()
        digest = hashlib.sha1()
        size = 0
        f = await loop.run_in_executor(None, open, tmp_path, "wb")
        try:
            async for piece in data:
                if piece:
                    await loop.run_in_executor(None, f.write, piece)
                    digest.update(piece)
                    size += len(piece)
        except BaseException:
            f.close()
            tmp_path.unlink(missing_ok=True)
            raise
        f.close()
        return tmp_path, digest.hexdigest(), size

    async def remove_chunks(self, upload_key: str) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _remove_tree, self.chunk_dir(upload_key))

    async def discard(self, path: Optional[Path]) -> None:
        if path is None:
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _unlink_quietly, Path(path))


def _remove_tree(path: Path) -> None:
    shutil.rmtree(path, ignore_errors=True)


def _unlink_quietly(path: Path) -> None:
    path.unlink(missing_ok=True)


# Singleton instance
_staging: Optional[StagingArea] = None


def get_staging_area() -> StagingArea:
    """Get the staging area rooted at TEMP_FILE_PATH."""
    global _staging
    if _staging is None:
        _staging = StagingArea(get_settings().temp_file_path)
    return _staging
