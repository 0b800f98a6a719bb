"""
Splitting a local file into chunks for a chunked upload.

Chunk names follow the ownCloud chunking scheme: chunk ``i`` of ``n`` for
destination ``D`` is PUT to ``D-chunking-<transfer id>-<n>-<i>`` with an
``OC-Chunked: 1`` header, and the server assembles the file once the last
chunk has arrived.  The transfer id is derived from the destination and
the file size, so a resumed upload addresses the very same chunk names.
"""

import logging
import os
import zlib
from typing import AsyncIterator, List, Optional

import aiofiles

from davtransfer.protocol.types import ChunkDescriptor

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 10 * 1024 * 1024
BLOCK_SIZE = 65536


def default_transfer_id(remote_path: str, total_size: int) -> int:
    """Stable id for an upload of total_size bytes to remote_path"""
    return zlib.crc32(("%s:%d" % (remote_path, total_size)).encode("utf-8"))


def chunk_remote_path(remote_path: str, transfer_id: int, count: int, index: int) -> str:
    return "%s-chunking-%d-%d-%d" % (remote_path.rstrip("/"), transfer_id, count, index)


def plan_chunks(
    remote_path: str,
    total_size: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    transfer_id: Optional[int] = None,
) -> List[ChunkDescriptor]:
    """
    Cut total_size bytes into consecutive chunks of chunk_size bytes (the
    last one possibly shorter).  An empty file still gets one, empty,
    chunk so the server creates the file.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if total_size < 0:
        raise ValueError("total_size can't be negative")
    if transfer_id is None:
        transfer_id = default_transfer_id(remote_path, total_size)
    count = max(1, -(-total_size // chunk_size))
    chunks = []
    for index in range(count):
        offset = index * chunk_size
        chunks.append(
            ChunkDescriptor(
                index=index,
                offset=offset,
                length=min(chunk_size, total_size - offset),
                remote_path=chunk_remote_path(remote_path, transfer_id, count, index),
            )
        )
    return chunks


def plan_file_chunks(
    local_path: str,
    remote_path: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    transfer_id: Optional[int] = None,
) -> List[ChunkDescriptor]:
    return plan_chunks(remote_path, os.path.getsize(local_path), chunk_size, transfer_id)


def validate_chunks(chunks: List[ChunkDescriptor]) -> None:
    """
    Chunks must be numbered 0..n-1 in order, and lie back to back in the
    file.
    """
    offset = 0
    for expected, chunk in enumerate(chunks):
        if chunk.index != expected:
            raise ValueError(f"chunk {chunk.index} found where chunk {expected} was expected")
        if chunk.offset != offset:
            raise ValueError(f"chunk {chunk.index} starts at {chunk.offset}, expected {offset}")
        if chunk.length < 0:
            raise ValueError(f"chunk {chunk.index} has a negative length")
        offset += chunk.length


class ChunkInputStream:
    """
    Async source of the bytes of one chunk of a local file.

    Use as an async context manager; the file is closed on exit whatever
    happened.  Iterating yields blocks until exactly ``chunk.length``
    bytes have been produced.  A stream can be iterated once.
    """

    def __init__(self, local_path: str, chunk: ChunkDescriptor, block_size: int = BLOCK_SIZE) -> None:
        self.local_path = local_path
        self.chunk = chunk
        self.block_size = block_size
        self._file = None
        self._consumed = False
        self.closed = False

    def __repr__(self) -> str:
        return "ChunkInputStream(%s, chunk %d)" % (self.local_path, self.chunk.index)

    async def open(self) -> "ChunkInputStream":
        if self.closed:
            raise ValueError(f"{self} is closed")
        if self._file is None:
            self._file = await aiofiles.open(self.local_path, "rb")
            await self._file.seek(self.chunk.offset)
        return self

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._file is not None:
            await self._file.close()
            self._file = None

    async def __aenter__(self) -> "ChunkInputStream":
        return await self.open()

    async def __aexit__(self, *args) -> None:
        await self.close()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._blocks()

    async def _blocks(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise ValueError(f"{self} has already been read")
        self._consumed = True
        await self.open()
        remaining = self.chunk.length
        while remaining > 0:
            block = await self._file.read(min(self.block_size, remaining))
            if not block:
                raise OSError(
                    f"{self.local_path} ended {remaining} bytes short of chunk {self.chunk.index}"
                )
            remaining -= len(block)
            yield block
