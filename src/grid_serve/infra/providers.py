# src/grid_serve/infra/providers.py
from __future__ import annotations

from grid_serve.config.settings import ConfigurationError, GatewaySettings
from grid_serve.ports.storage import ChunkStore
from .memory_storage import MemoryChunkStore


def build_store(settings: GatewaySettings) -> ChunkStore:
    """
    Adapter selector. Default: GridFS.
    Set GRIDSERVE_STORAGE=memory for an empty in-process store (dev only).
    """
    backend = settings.storage.lower()

    if backend in ("gridfs", "mongo", "mongodb"):
        from .gridfs_storage import GridFSChunkStore
        return GridFSChunkStore.from_settings(settings)

    if backend in ("memory", "mem", "inmemory", "in-memory"):
        return MemoryChunkStore()

    raise ConfigurationError(f"unknown storage backend {settings.storage!r}")
