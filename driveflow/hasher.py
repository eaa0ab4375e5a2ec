from __future__ import annotations

import asyncio
import base64
import hashlib
from typing import BinaryIO, Callable, Iterator


HASH_PREFIX = "sha256-"
DEFAULT_CHUNK_SIZE = 1024 * 1024


def create_hash_algo():
    return hashlib.sha256()


def format_hash(digest: bytes) -> str:
    return HASH_PREFIX + base64.b64encode(digest).decode("ascii")


def hash_bytes(data: bytes) -> str:
    return format_hash(hashlib.sha256(data).digest())


def iter_chunks(fh: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    while True:
        chunk = fh.read(chunk_size)
        if not chunk:
            return
        yield chunk


async def hash_stream(
    fh: BinaryIO,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    *,
    on_chunk: Callable[[int], None] | None = None,
) -> str:
    digest = create_hash_algo()
    for chunk in iter_chunks(fh, chunk_size):
        digest.update(chunk)
        if on_chunk is not None:
            on_chunk(len(chunk))
        # Cancellation point between chunks.
        await asyncio.sleep(0)
    return format_hash(digest.digest())


class HashingWriter:
    """Write-through sink that hashes every byte passed to ``write``.

    With ``inner=None`` the bytes are hashed and dropped, which is how the
    remote hash of a revision is learned without persisting anything locally.
    """

    def __init__(self, inner: BinaryIO | None = None) -> None:
        self._inner = inner
        self._digest = create_hash_algo()
        self.bytes_written = 0

    def writable(self) -> bool:
        return True

    def write(self, data: bytes) -> int:
        view = memoryview(data)
        self._digest.update(view)
        if self._inner is not None:
            self._inner.write(view)
        self.bytes_written += len(view)
        return len(view)

    def flush(self) -> None:
        if self._inner is not None:
            self._inner.flush()

    @property
    def hash(self) -> str:
        return format_hash(self._digest.digest())
