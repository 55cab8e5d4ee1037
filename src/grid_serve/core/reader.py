"""
Forward-only byte streams over an object's stored chunks.

Reads are independent of chunk boundaries: a backend may hand back less (or
more, up to the requested size) than one stored chunk per call. Working memory
is one fixed buffer per stream, whatever the object size.
"""

from __future__ import annotations

from typing import Iterator, NamedTuple, Optional

from grid_serve.models import ObjectMetadata
from grid_serve.ports.storage import ChunkReader, StoreSession, StreamReadError

DEFAULT_BUFFER_SIZE = 64 * 1024


class ReadResult(NamedTuple):
    count: int
    done: bool


class ObjectStream:
    """One request's read position over one object. Not shareable."""

    def __init__(self, meta: ObjectMetadata, chunks: ChunkReader) -> None:
        self.meta = meta
        self._chunks = chunks
        self._position = 0
        self._closed = False

    @property
    def position(self) -> int:
        return self._position

    @property
    def closed(self) -> bool:
        return self._closed

    def readinto(self, buffer: bytearray) -> ReadResult:
        """
        Fill `buffer` from the current position.

        `ReadResult(0, True)` is a clean end of stream. A backend fault, or a
        body that ends before (or runs past) the declared size, raises
        StreamReadError.
        """
        if self._closed:
            raise ValueError("read from closed stream")

        data = self._chunks.read(len(buffer))
        count = len(data)
        if count == 0:
            if self._position != self.meta.size:
                raise StreamReadError(
                    f"{self.meta.name!r}: stream ended at byte {self._position}, "
                    f"expected {self.meta.size}"
                )
            return ReadResult(0, True)

        if count > len(buffer) or self._position + count > self.meta.size:
            raise StreamReadError(
                f"{self.meta.name!r}: stream overran declared size {self.meta.size}"
            )

        buffer[:count] = data
        self._position += count
        return ReadResult(count, False)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._chunks.close()

    def __enter__(self) -> "ObjectStream":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ObjectReader:
    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self.buffer_size = buffer_size

    def open(self, session: StoreSession, meta: ObjectMetadata) -> Optional[ObjectStream]:
        """Return a stream over `meta`'s data, or None if the store has no data for it."""
        chunks = session.open_chunks(meta.id)
        if chunks is None:
            return None
        return ObjectStream(meta, chunks)

    def iter_body(self, stream: ObjectStream) -> Iterator[bytes]:
        """Yield the body in buffer-sized pieces, reusing a single buffer."""
        buffer = bytearray(self.buffer_size)
        view = memoryview(buffer)
        while True:
            count, done = stream.readinto(buffer)
            if done:
                return
            yield bytes(view[:count])
