# src/grid_serve/infra/memory_storage.py
from __future__ import annotations

import hashlib
import threading
from typing import Any, Dict, List, Optional
from uuid import uuid4

from grid_serve.models import ObjectMetadata, TAG_SEPARATOR
from grid_serve.ports.storage import ChunkStore

# GridFS default chunk size
DEFAULT_CHUNK_SIZE = 255 * 1024


class MemoryChunkReader:
    """Returns at most the rest of the current chunk per read, like a chunk-at-a-time cursor."""

    def __init__(self, chunks: List[bytes]) -> None:
        self._chunks = chunks
        self._index = 0
        self._offset = 0
        self.closed = False

    def read(self, size: int) -> bytes:
        if self.closed:
            raise ValueError("read from closed reader")
        while self._index < len(self._chunks):
            chunk = self._chunks[self._index]
            if self._offset < len(chunk):
                out = chunk[self._offset : self._offset + size]
                self._offset += len(out)
                return out
            self._index += 1
            self._offset = 0
        return b""

    def close(self) -> None:
        self.closed = True


class MemorySession:
    def __init__(self, store: "MemoryChunkStore") -> None:
        self._store = store
        self.released = False

    def find_by_name(self, name: str) -> Optional[ObjectMetadata]:
        object_id = self._store._by_name.get(name)
        if object_id is None:
            return None
        return self._store._files.get(object_id)

    def count_by_id_and_hash(self, object_id: Any, content_hash: str) -> int:
        meta = self._store._files.get(object_id)
        return int(meta is not None and meta.content_hash == content_hash)

    def open_chunks(self, object_id: Any) -> Optional[MemoryChunkReader]:
        chunks = self._store._chunks.get(object_id)
        if chunks is None:
            return None
        return MemoryChunkReader(chunks)

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        self._store._session_done()


class MemoryChunkStore(ChunkStore):
    """
    Dev-only in-memory adapter (ephemeral), chunked the way GridFS stores files.
    NOT for production. Set GRIDSERVE_STORAGE=gridfs for a real backend.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size
        self._files: Dict[str, ObjectMetadata] = {}
        self._chunks: Dict[str, List[bytes]] = {}
        self._by_name: Dict[str, str] = {}
        self._lock = threading.Lock()
        self.sessions_opened = 0
        self.sessions_open = 0

    # --- seeding (the gateway itself never writes) ---
    def put(
        self,
        name: str,
        data: bytes,
        content_type: Optional[str] = None,
        object_id: Optional[str] = None,
        content_hash: Optional[str] = None,
    ) -> ObjectMetadata:
        oid = object_id or uuid4().hex
        meta = ObjectMetadata(
            id=oid,
            name=name,
            size=len(data),
            content_hash=content_hash or hashlib.md5(data).hexdigest(),
            content_type=content_type,
        )
        self._files[oid] = meta
        self._chunks[oid] = [data[i : i + self.chunk_size] for i in range(0, len(data), self.chunk_size)]
        # newest upload wins, like GridFS name lookup
        self._by_name[name] = oid
        return meta

    def delete(self, name: str) -> None:
        oid = self._by_name.pop(name)
        self._files.pop(oid, None)
        self._chunks.pop(oid, None)

    # --- Port methods ---
    def checkout(self) -> MemorySession:
        with self._lock:
            self.sessions_opened += 1
            self.sessions_open += 1
        return MemorySession(self)

    def _session_done(self) -> None:
        with self._lock:
            self.sessions_open -= 1

    def parse_identity(self, text: str) -> str:
        if not text or TAG_SEPARATOR in text:
            raise ValueError(f"invalid object id {text!r}")
        return text

    def ensure_indexes(self) -> None:
        pass

    def close(self) -> None:
        self._files.clear()
        self._chunks.clear()
        self._by_name.clear()
