# src/grid_serve/ports/storage.py
"""
ChunkStore: the hexagonal 'port' interface for chunked blob store backends.

The gateway only ever reads through this port:
  - ChunkStore.checkout()            -> one StoreSession per request
  - StoreSession.find_by_name        -> ObjectMetadata or None
  - StoreSession.count_by_id_and_hash-> cheap existence check for cache tags
  - StoreSession.open_chunks         -> ChunkReader or None
  - StoreSession.release()           -> return the session to the pool

NOTE:
- Sessions and readers are owned by exactly one request and are never shared.
- A missing object is a normal outcome and is signalled with None, never an
  exception. Exceptions are reserved for faults (see StoreError below).
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from grid_serve.models import ObjectMetadata


# ---------- Faults ----------
class StoreError(Exception):
    """Base class for faults raised by a store backend."""


class StoreUnavailableError(StoreError):
    """Session checkout or a metadata query failed."""


class StreamReadError(StoreError):
    """Reading object data failed, or produced a body of the wrong size."""


# ---------- Port ----------
class ChunkReader(Protocol):
    def read(self, size: int) -> bytes:
        """Return up to `size` bytes; b"" means end of data."""
        ...

    def close(self) -> None:
        ...


class StoreSession(Protocol):
    def find_by_name(self, name: str) -> Optional["ObjectMetadata"]:
        ...

    def count_by_id_and_hash(self, object_id: Any, content_hash: str) -> int:
        ...

    def open_chunks(self, object_id: Any) -> Optional[ChunkReader]:
        ...

    def release(self) -> None:
        ...


class ChunkStore(Protocol):
    """
    Contract that all store adapters must implement.

    `parse_identity` turns the identity half of a cache tag into the backend's
    native id, raising ValueError when the text is not a valid identity.
    """

    def checkout(self) -> StoreSession:
        ...

    def parse_identity(self, text: str) -> Any:
        ...

    def ensure_indexes(self) -> None:
        ...

    def close(self) -> None:
        ...
