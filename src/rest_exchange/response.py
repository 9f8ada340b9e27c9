"""
Response envelope for rest_exchange.

A ResponseEnvelope is created as soon as the status line and headers of
a response are known. It carries the metadata and exposes exactly one
way of reading the body, chosen by the response framing:

- standard bodies: ``read_bytes()``, ``read_text()``, ``read_json()``
  or the raw ``stream``
- chunked bodies: ``read_chunk()`` / ``iter_chunks()``
- event streams: ``read_event()`` / ``iter_events()``
"""

import asyncio
import codecs
import logging
from typing import Any, AsyncIterator, Optional, Type, TypeVar

from .cancellation import CancellationToken
from .chunked import ChunkedBodyReader, ChunkedPayloadStream, ChunkRecord
from .content_type import extract_charset, extract_media_type
from .exceptions import InvalidStateError
from .http_primitives import Headers, Timestamp
from .serialization import DefaultSerializationHelper, SerializationHelper
from .sse import SseEvent, SseReader
from .streams import ResponseStream

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CONTENT_TYPE = "application/octet-stream"
DEFAULT_CHARACTER_SET = "utf-8"
EVENT_STREAM_MEDIA_TYPE = "text/event-stream"


def _parse_content_length(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        length = int(value.split(",")[0].strip())
    except ValueError:
        return None
    return length if length >= 0 else None


class ResponseEnvelope:
    """
    Status, headers, timing and body access for one response.

    Closing the envelope (or draining its body) closes the connection.
    An event stream sent with chunked transfer coding is read as events;
    the chunk framing is removed underneath.
    """

    def __init__(
        self,
        status_code: int,
        headers: Headers,
        stream: ResponseStream,
        reason_phrase: str = "",
        protocol_version: str = "HTTP/1.1",
        time: Optional[Timestamp] = None,
        serializer: Optional[SerializationHelper] = None,
        has_body: bool = True,
    ) -> None:
        self.status_code = status_code
        self.reason_phrase = reason_phrase
        self.protocol_version = protocol_version
        self.headers = headers
        self.time = time or Timestamp()

        raw_content_type = headers.get("Content-Type")
        self.content_type = extract_media_type(raw_content_type) or DEFAULT_CONTENT_TYPE
        self.character_set = extract_charset(raw_content_type) or DEFAULT_CHARACTER_SET
        self.content_length = _parse_content_length(headers.get("Content-Length"))
        self.content_encoding = headers.get("Content-Encoding")

        codings = [
            coding.strip().lower()
            for coding in (headers.get("Transfer-Encoding") or "").split(",")
        ]
        # Framing headers on a bodiless response (HEAD, 204, 304) describe nothing
        self.chunked_transfer_encoding = has_body and "chunked" in codings
        self.server_sent_events = has_body and self.content_type == EVENT_STREAM_MEDIA_TYPE
        self.has_body = has_body

        self._stream = stream
        self._serializer = serializer or DefaultSerializationHelper()
        self._body: Optional[bytes] = None
        self._body_lock = asyncio.Lock()
        self._chunk_reader: Optional[ChunkedBodyReader] = None
        self._event_reader: Optional[SseReader] = None

    @property
    def body_mode(self) -> str:
        """How the body is read: "events", "chunked" or "standard"."""
        if self.server_sent_events:
            return "events"
        if self.chunked_transfer_encoding:
            return "chunked"
        return "standard"

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_redirect(self) -> bool:
        return 300 <= self.status_code < 400

    @property
    def closed(self) -> bool:
        return self._stream.closed

    @property
    def serializer(self) -> SerializationHelper:
        return self._serializer

    @serializer.setter
    def serializer(self, value: SerializationHelper) -> None:
        if value is None:
            raise ValueError("serializer must not be None")
        self._serializer = value

    def _require_mode(self, mode: str) -> None:
        if self.body_mode != mode:
            hints = {
                "events": "use read_event() or iter_events()",
                "chunked": "use read_chunk() or iter_chunks()",
                "standard": "use read_bytes(), read_text() or stream",
            }
            raise InvalidStateError(
                f"response body is {self.body_mode}; {hints[self.body_mode]}"
            )

    @property
    def stream(self) -> ResponseStream:
        """Raw body stream of a standard response."""
        self._require_mode("standard")
        return self._stream

    async def read_bytes(self, token: Optional[CancellationToken] = None) -> bytes:
        """
        Read the whole body into memory.

        The body is read from the network once; later calls return the
        cached bytes.
        """
        self._require_mode("standard")
        async with self._body_lock:
            if self._body is None:
                self._body = await self._stream.aread(token)
                logger.debug(f"Response body materialized: {len(self._body)} bytes")
            return self._body

    async def read_text(self, token: Optional[CancellationToken] = None) -> str:
        """Read the body and decode it with the response character set."""
        data = await self.read_bytes(token)
        encoding = self.character_set
        try:
            codecs.lookup(encoding)
        except LookupError:
            logger.debug(f"Unknown character set {encoding!r}, decoding as utf-8")
            encoding = DEFAULT_CHARACTER_SET
        return data.decode(encoding, errors="replace")

    async def read_json(
        self,
        cls: Optional[Type[T]] = None,
        token: Optional[CancellationToken] = None,
    ) -> Any:
        """
        Deserialize a JSON body, optionally into ``cls``.

        Raises:
            InvalidStateError: If the body is empty
        """
        text = await self.read_text(token)
        if not text.strip():
            raise InvalidStateError("no data in the response")
        return self._serializer.deserialize_json(text, cls)

    async def read_chunk(
        self, token: Optional[CancellationToken] = None
    ) -> Optional[ChunkRecord]:
        """
        Read the next chunk of a chunked body.

        Returns:
            The next ChunkRecord (the last one has ``is_final`` set), then None
        """
        self._require_mode("chunked")
        if self._chunk_reader is None:
            self._chunk_reader = ChunkedBodyReader(self._stream)
        return await self._chunk_reader.read_next_chunk(token)

    async def iter_chunks(
        self, token: Optional[CancellationToken] = None
    ) -> AsyncIterator[ChunkRecord]:
        while True:
            record = await self.read_chunk(token)
            if record is None:
                return
            yield record

    @property
    def trailers(self) -> Headers:
        """Trailer fields received after the last chunk."""
        if self._chunk_reader is not None:
            return self._chunk_reader.trailers
        return Headers()

    async def read_event(
        self, token: Optional[CancellationToken] = None
    ) -> Optional[SseEvent]:
        """
        Read the next server-sent event.

        Returns:
            The next SseEvent, or None at end of stream
        """
        self._require_mode("events")
        if self._event_reader is None:
            if self.chunked_transfer_encoding:
                self._chunk_reader = ChunkedBodyReader(self._stream)
                self._event_reader = SseReader(ChunkedPayloadStream(self._chunk_reader))
            else:
                self._event_reader = SseReader(self._stream)
        return await self._event_reader.read_next_event(token)

    async def iter_events(
        self, token: Optional[CancellationToken] = None
    ) -> AsyncIterator[SseEvent]:
        while True:
            event = await self.read_event(token)
            if event is None:
                return
            yield event

    async def aclose(self) -> None:
        """Discard any unread body and close the connection."""
        await self._stream.aclose()

    async def __aenter__(self) -> "ResponseEnvelope":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def describe(self) -> str:
        """Human-readable summary of the response."""
        lines = ["REST Response"]
        if self.headers:
            lines.append("  Headers")
            for name, value in self.headers.items():
                lines.append(f"  | {name}: {value}")
        if self.content_encoding:
            lines.append(f"  Content Encoding   : {self.content_encoding}")
        lines.extend(
            [
                f"  Content Type       : {self.content_type}",
                f"  Status Code        : {self.status_code}",
                f"  Status Description : {self.reason_phrase}",
                f"  Content Length     : {'' if self.content_length is None else self.content_length}",
                f"  Chunked Transfer   : {self.chunked_transfer_encoding}",
                f"  Server-Sent Events : {self.server_sent_events}",
                "  Time",
                f"  | Start (UTC)      : {self.time.start:%Y-%m-%d %H:%M:%S}",
            ]
        )
        if self.time.end is not None:
            lines.append(f"  | End (UTC)        : {self.time.end:%Y-%m-%d %H:%M:%S}")
            lines.append(f"  | Total            : {self.time.total_ms:.2f}ms")

        if self.server_sent_events:
            data = "[server-sent events]"
        elif self.chunked_transfer_encoding:
            data = "[chunked]"
        elif self.content_length:
            data = "[stream]"
        else:
            data = "[none]"
        lines.append(f"  Data               : {data}")
        return "\n".join(lines) + "\n"

    def __repr__(self) -> str:
        return (
            f"<ResponseEnvelope [{self.status_code}] "
            f"{self.content_type} ({self.body_mode})>"
        )
