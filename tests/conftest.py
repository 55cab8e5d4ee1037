# tests/conftest.py
from typing import Any, List, Optional

import anyio
import pytest
from fastapi.testclient import TestClient

from grid_serve.api.files import get_store
from grid_serve.config.settings import GatewaySettings
from grid_serve.infra.memory_storage import MemoryChunkReader, MemoryChunkStore, MemorySession
from grid_serve.main import create_app
from grid_serve.models import ObjectMetadata
from grid_serve.ports.storage import StoreUnavailableError, StreamReadError


# ------------------ Settings used by tests ------------------

# Small buffer and chunks so every body spans several reads and chunk boundaries.
TEST_BUFFER_SIZE = 4
TEST_CHUNK_SIZE = 3

TEST_SETTINGS = GatewaySettings(
    database="testdb",
    storage="memory",
    buffer_size=TEST_BUFFER_SIZE,
)


# ------------------ Test doubles ------------------

class FailingChunkReader(MemoryChunkReader):
    """Serves `good_reads` reads, then fails like a dropped connection."""

    def __init__(self, chunks: List[bytes], good_reads: int) -> None:
        super().__init__(chunks)
        self._remaining = good_reads

    def read(self, size: int) -> bytes:
        if self._remaining == 0:
            raise StreamReadError("connection reset while reading chunk")
        self._remaining -= 1
        return super().read(size)


class FlakySession(MemorySession):
    def __init__(self, store: "FlakyStore") -> None:
        super().__init__(store)
        self._flaky = store

    def count_by_id_and_hash(self, object_id: Any, content_hash: str) -> int:
        self._flaky.exists_calls += 1
        if self._flaky.fail_exists:
            raise StoreUnavailableError("exists query timed out")
        return super().count_by_id_and_hash(object_id, content_hash)

    def find_by_name(self, name: str) -> Optional[ObjectMetadata]:
        self._flaky.lookups += 1
        if self._flaky.fail_lookup:
            raise StoreUnavailableError("metadata query failed")
        return super().find_by_name(name)

    def open_chunks(self, object_id: Any) -> Optional[MemoryChunkReader]:
        self._flaky.opens += 1
        if self._flaky.fail_after_reads is not None:
            chunks = self._flaky._chunks.get(object_id)
            if chunks is None:
                return None
            reader = FailingChunkReader(chunks, self._flaky.fail_after_reads)
        else:
            reader = super().open_chunks(object_id)
        if reader is not None:
            self._flaky.readers.append(reader)
        return reader


class FlakyStore(MemoryChunkStore):
    """MemoryChunkStore that records calls and can inject faults."""

    def __init__(self, chunk_size: int = TEST_CHUNK_SIZE) -> None:
        super().__init__(chunk_size=chunk_size)
        self.exists_calls = 0
        self.lookups = 0
        self.opens = 0
        self.readers: List[MemoryChunkReader] = []
        self.fail_exists = False
        self.fail_lookup = False
        self.fail_after_reads: Optional[int] = None

    def checkout(self) -> FlakySession:
        super().checkout()
        return FlakySession(self)


class UntouchableStore(MemoryChunkStore):
    """Fails the test if the gateway touches the store at all."""

    def checkout(self):
        pytest.fail("store was checked out")

    def parse_identity(self, text: str):
        pytest.fail("store was asked to parse an identity")


# ------------------ Raw ASGI driver ------------------

def asgi_get(asgi_app, path: str, send) -> None:
    """
    Run one GET through `asgi_app` with a caller-supplied `send`, so tests can
    see (or break) each response message the way a real server would.
    """
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("latin-1"),
        "root_path": "",
        "query_string": b"",
        "headers": [(b"host", b"testserver")],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }
    requested = False

    async def receive():
        nonlocal requested
        if not requested:
            requested = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await anyio.sleep_forever()

    async def run():
        await asgi_app(scope, receive, send)

    anyio.run(run)


# ------------------ Per-test wiring ------------------

app = create_app(settings=TEST_SETTINGS, store=MemoryChunkStore())


@pytest.fixture(autouse=True)
def _override_store():
    """
    Give each test a fresh store instance by overriding the app dependency.
    """
    fake = FlakyStore()
    app.dependency_overrides[get_store] = lambda: fake
    try:
        yield fake
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def store(_override_store) -> FlakyStore:
    return _override_store


# IMPORTANT:
# Tests do `from tests.conftest import client` and call client.get(...)
# So we expose a module-level TestClient named `client` (NOT a fixture).
client = TestClient(app)
