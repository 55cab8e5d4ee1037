# src/grid_serve/infra/gridfs_storage.py
from __future__ import annotations

from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from gridfs import GridFSBucket
from gridfs.errors import NoFile
from loguru import logger
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.client_session import ClientSession
from pymongo.errors import PyMongoError

from grid_serve.config.settings import GatewaySettings
from grid_serve.models import ObjectMetadata
from grid_serve.ports.storage import (
    ChunkStore,
    StoreUnavailableError,
    StreamReadError,
)


def metadata_from_document(doc: Dict[str, Any]) -> ObjectMetadata:
    """Map a GridFS `<bucket>.files` document onto ObjectMetadata."""
    content_type = doc.get("contentType")
    if content_type is None:
        content_type = (doc.get("metadata") or {}).get("contentType")
    return ObjectMetadata(
        id=doc["_id"],
        name=doc.get("filename") or "",
        size=int(doc.get("length", 0)),
        content_hash=doc.get("md5"),
        content_type=content_type,
    )


class GridFSChunkReader:
    def __init__(self, grid_out) -> None:
        self._grid_out = grid_out

    def read(self, size: int) -> bytes:
        try:
            return self._grid_out.read(size)
        except PyMongoError as e:
            raise StreamReadError(f"reading file {self._grid_out._id}: {e}") from e

    def close(self) -> None:
        self._grid_out.close()


class GridFSSession:
    """One request's view of the store, bound to a causally consistent client session."""

    def __init__(self, store: "GridFSChunkStore", session: ClientSession) -> None:
        self._store = store
        self._session = session

    def find_by_name(self, name: str) -> Optional[ObjectMetadata]:
        try:
            doc = self._store.files.find_one(
                {"filename": name},
                sort=[("uploadDate", DESCENDING)],
                session=self._session,
            )
        except PyMongoError as e:
            raise StoreUnavailableError(f"looking up {name!r}: {e}") from e
        if doc is None:
            return None
        return metadata_from_document(doc)

    def count_by_id_and_hash(self, object_id: Any, content_hash: str) -> int:
        try:
            return self._store.files.count_documents(
                {"_id": object_id, "md5": content_hash},
                session=self._session,
            )
        except PyMongoError as e:
            raise StoreUnavailableError(f"checking {object_id}: {e}") from e

    def open_chunks(self, object_id: Any) -> Optional[GridFSChunkReader]:
        try:
            grid_out = self._store.bucket.open_download_stream(object_id, session=self._session)
        except NoFile:
            return None
        except PyMongoError as e:
            raise StoreUnavailableError(f"opening {object_id}: {e}") from e
        return GridFSChunkReader(grid_out)

    def release(self) -> None:
        self._session.end_session()


class GridFSChunkStore(ChunkStore):
    """ChunkStore backed by a MongoDB GridFS bucket. The MongoClient owns the connection pool."""

    def __init__(self, client: MongoClient, database: str, collection: str = "fs") -> None:
        self.client = client
        self.db = client[database]
        self.files = self.db[f"{collection}.files"]
        self.bucket = GridFSBucket(self.db, bucket_name=collection)

    @classmethod
    def from_settings(cls, settings: GatewaySettings) -> "GridFSChunkStore":
        client = MongoClient(settings.mongo_uri, appname="grid-serve")
        return cls(client, settings.database, settings.collection)

    def checkout(self) -> GridFSSession:
        try:
            session = self.client.start_session(causal_consistency=True)
        except PyMongoError as e:
            raise StoreUnavailableError(f"session checkout failed: {e}") from e
        return GridFSSession(self, session)

    def parse_identity(self, text: str) -> ObjectId:
        try:
            return ObjectId(text)
        except (InvalidId, TypeError) as e:
            raise ValueError(str(e)) from e

    def ensure_indexes(self) -> None:
        logger.info(f"Ensuring indexes on {self.files.full_name}")
        self.files.create_index([("filename", ASCENDING), ("uploadDate", DESCENDING)], background=True)
        self.files.create_index([("_id", ASCENDING), ("md5", ASCENDING)], background=True)

    def close(self) -> None:
        self.client.close()
