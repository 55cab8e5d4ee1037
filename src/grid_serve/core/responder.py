"""
Request lifecycle for one file retrieval.

Order of side effects is fixed because headers cannot change once body bytes
are on the wire:

  1. check out a store session
  2. cache tag fast path -> 304, no body
  3. metadata lookup + stream open -> 404 if either is missing
  4. headers (ETag, Cache-Control, Content-MD5, Content-Type, Content-Length)
  5. body, one buffer at a time
  6. close the stream and release the session, on every path
"""

from __future__ import annotations

from contextlib import ExitStack
from typing import Dict, Iterator, Optional

import anyio
from loguru import logger
from starlette.concurrency import run_in_threadpool
from starlette.responses import Response, StreamingResponse
from starlette.types import Receive, Scope, Send

from grid_serve.config.settings import GatewaySettings
from grid_serve.core.cache import CacheDecision, validate
from grid_serve.core.reader import ObjectReader, ObjectStream
from grid_serve.models import ObjectMetadata
from grid_serve.ports.storage import ChunkStore, StreamReadError


class ObjectStreamResponse(StreamingResponse):
    """StreamingResponse that releases request-owned resources when it finishes, however it finishes."""

    def __init__(self, content: Iterator[bytes], *, resources: ExitStack, **kwargs) -> None:
        super().__init__(content, **kwargs)
        self._resources = resources

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await run_in_threadpool(self._resources.close)


class StreamingResponder:
    def __init__(self, settings: GatewaySettings, reader: Optional[ObjectReader] = None) -> None:
        self.settings = settings
        self.reader = reader or ObjectReader(settings.buffer_size)

    # --- responses without a body ---
    def not_modified(self, tag: str) -> Response:
        return Response(
            status_code=304,
            headers={"Cache-Control": self.settings.cache_control, "ETag": tag},
        )

    def not_found(self) -> Response:
        return Response(status_code=404)

    # --- full retrieval ---
    def headers_for(self, meta: ObjectMetadata) -> Dict[str, str]:
        headers = {"Cache-Control": self.settings.cache_control}
        tag = meta.cache_tag()
        if tag is not None:
            headers["ETag"] = tag
            headers["Content-MD5"] = meta.content_hash
        headers["Content-Type"] = meta.content_type or self.settings.default_content_type
        headers["Content-Length"] = str(meta.size)
        return headers

    def _body(self, stream: ObjectStream) -> Iterator[bytes]:
        try:
            yield from self.reader.iter_body(stream)
        except StreamReadError:
            # Headers are committed; the server must abort rather than finish a short 200.
            logger.exception(
                f"Aborting response for {stream.meta.name!r} after {stream.position} of {stream.meta.size} bytes"
            )
            raise

    def respond(
        self,
        decision: CacheDecision,
        tag: Optional[str],
        meta: Optional[ObjectMetadata],
        stream: Optional[ObjectStream],
        resources: ExitStack,
    ) -> Response:
        """
        Build the response for an already validated and looked-up request.

        Ownership of `resources` moves into the returned streaming response;
        for bodiless responses the caller keeps it.
        """
        if decision is CacheDecision.FRESH and tag:
            return self.not_modified(tag)
        if meta is None or stream is None:
            return self.not_found()
        return ObjectStreamResponse(
            self._body(stream),
            headers=self.headers_for(meta),
            resources=resources.pop_all(),
        )

    def serve(self, store: ChunkStore, name: str, if_none_match: Optional[str] = None) -> Response:
        resources = ExitStack()
        with resources:
            session = store.checkout()
            resources.callback(session.release)

            decision = validate(if_none_match, store.parse_identity, session.count_by_id_and_hash)
            logger.debug(f"{name!r}: cache tag {decision.value}")
            if decision is CacheDecision.FRESH:
                return self.respond(decision, if_none_match, None, None, resources)

            meta = session.find_by_name(name)
            stream = self.reader.open(session, meta) if meta is not None else None
            if stream is None:
                logger.debug(f"{name!r}: not found")
                return self.not_found()
            resources.callback(stream.close)

            return self.respond(decision, if_none_match, meta, stream, resources)
