"""
Chunked transfer coding for rest_exchange.

Outbound bodies are framed by ChunkedBodyWriter, which buffers
``<HEX-SIZE>\\r\\n<data>\\r\\n`` frames until it is finalized with the
terminal ``0\\r\\n\\r\\n``. Inbound bodies are decoded one chunk at a time
by ChunkedBodyReader.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional, Union

from .cancellation import CancellationToken
from .exceptions import (
    ExchangeCancelledError,
    ExchangeError,
    FramingError,
    IncompleteDataError,
    InvalidStateError,
    StreamError,
)
from .http_primitives import Headers
from .streams import ResponseStream

logger = logging.getLogger(__name__)

CRLF = b"\r\n"
FINAL_CHUNK = b"0\r\n\r\n"

_HEX_SIZE = re.compile(rb"[0-9A-Fa-f]+")

ChunkData = Union[bytes, bytearray, str, None]


def _to_bytes(data: ChunkData) -> bytes:
    if data is None:
        return b""
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def encode_chunk(data: bytes) -> bytes:
    """Frame ``data`` as one chunk with an upper-case hex size line."""
    return b"%X\r\n%s\r\n" % (len(data), data)


def encode_final_chunk() -> bytes:
    return FINAL_CHUNK


@dataclass(frozen=True)
class ChunkRecord:
    """One decoded chunk. The terminal record has empty data and is_final set."""

    data: bytes
    is_final: bool = False


class WriterState(Enum):
    """States of a ChunkedBodyWriter."""
    BUFFERING = "buffering"   # Accepting chunks
    FINALIZED = "finalized"   # Terminal chunk written, body complete
    ABANDONED = "abandoned"   # Buffer dropped, nothing will be sent


class ChunkedBodyWriter:
    """
    Buffers an outbound body as chunk frames.

    Appending performs no I/O. The buffer is only handed to the
    connection after ``finalize()``, so the wire sees one complete
    chunked body or nothing at all.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._state = WriterState.BUFFERING
        self._chunk_count = 0
        self._payload_size = 0

    def _check_buffering(self) -> None:
        if self._state is not WriterState.BUFFERING:
            raise InvalidStateError(f"chunked body is {self._state.value}")

    def append_chunk(self, data: ChunkData) -> None:
        """
        Frame and buffer one chunk.

        Empty data is skipped: a zero-size frame would end the body early.

        Raises:
            InvalidStateError: If the writer was finalized or abandoned
        """
        self._check_buffering()
        payload = _to_bytes(data)
        if not payload:
            return
        self._buffer += encode_chunk(payload)
        self._chunk_count += 1
        self._payload_size += len(payload)

    def finalize(self, data: ChunkData = None) -> bytes:
        """
        Frame the last data chunk (if any) and the terminal chunk.

        Returns:
            The complete chunk-framed body
        """
        self.append_chunk(data)
        self._buffer += FINAL_CHUNK
        self._state = WriterState.FINALIZED
        logger.debug(
            f"Chunked body finalized: {self._chunk_count} chunks, "
            f"{self._payload_size} payload bytes"
        )
        return bytes(self._buffer)

    def abandon(self) -> None:
        """Drop the buffered chunks; later calls raise InvalidStateError."""
        if self._state is WriterState.BUFFERING:
            logger.debug(f"Chunked body abandoned after {self._chunk_count} chunks")
        self._buffer.clear()
        self._state = WriterState.ABANDONED

    def getvalue(self) -> bytes:
        """The framed bytes buffered so far."""
        return bytes(self._buffer)

    @property
    def state(self) -> WriterState:
        return self._state

    @property
    def is_finalized(self) -> bool:
        return self._state is WriterState.FINALIZED

    @property
    def chunk_count(self) -> int:
        """Number of non-empty data chunks framed."""
        return self._chunk_count

    @property
    def payload_size(self) -> int:
        return self._payload_size


class ChunkedReaderState(Enum):
    """States of a ChunkedBodyReader."""
    READ_SIZE = "read_size"
    READ_DATA = "read_data"
    READ_TRAILING_CRLF = "read_trailing_crlf"
    DONE = "done"


class ChunkedBodyReader:
    """
    Incremental decoder for a chunk-framed response body.

    Each ``read_next_chunk()`` returns one ChunkRecord; the terminal
    record has ``is_final`` set and every later call returns None.
    Trailer fields after the zero-size chunk are collected in
    ``trailers``. A framing error or cancellation closes the source;
    records returned before it stay valid.
    """

    MAX_SIZE_LINE = 4096

    def __init__(self, source: ResponseStream) -> None:
        self._source = source
        self._state = ChunkedReaderState.READ_SIZE
        self._chunk_size = 0
        self._chunks_read = 0
        self.trailers = Headers()

    @property
    def state(self) -> ChunkedReaderState:
        return self._state

    @property
    def chunks_read(self) -> int:
        return self._chunks_read

    async def read_next_chunk(
        self, token: Optional[CancellationToken] = None
    ) -> Optional[ChunkRecord]:
        """
        Decode the next chunk.

        Returns:
            The next ChunkRecord, or None once the terminal chunk was read

        Raises:
            FramingError: On a malformed size line or chunk terminator
            IncompleteDataError: If the stream ends mid-body
            ExchangeCancelledError: If ``token`` fires
        """
        if self._state is ChunkedReaderState.DONE:
            return None

        try:
            if token is not None:
                token.raise_if_cancelled()
            record = await self._read_chunk(token)
        except (ExchangeError, ExchangeCancelledError):
            self._state = ChunkedReaderState.DONE
            await self._source.aclose()
            raise

        if record.is_final:
            await self._source.aclose()
        else:
            self._chunks_read += 1
        return record

    async def _read_chunk(self, token: Optional[CancellationToken]) -> ChunkRecord:
        data = b""
        while True:
            if self._state is ChunkedReaderState.READ_SIZE:
                self._chunk_size = await self._read_size_line(token)
                if self._chunk_size == 0:
                    await self._read_trailers(token)
                    self._state = ChunkedReaderState.DONE
                    return ChunkRecord(b"", True)
                self._state = ChunkedReaderState.READ_DATA

            elif self._state is ChunkedReaderState.READ_DATA:
                data = await self._source.readexactly(self._chunk_size, token, "chunk data")
                self._state = ChunkedReaderState.READ_TRAILING_CRLF

            elif self._state is ChunkedReaderState.READ_TRAILING_CRLF:
                terminator = await self._source.readexactly(2, token, "chunk terminator")
                if terminator != CRLF:
                    raise FramingError(f"chunk data not followed by CRLF: {terminator!r}")
                self._state = ChunkedReaderState.READ_SIZE
                return ChunkRecord(data, False)

            else:
                raise InvalidStateError("chunked body already fully read")

    async def _read_line(self, token: Optional[CancellationToken], what: str) -> bytes:
        line = await self._source.readuntil(CRLF, limit=self.MAX_SIZE_LINE, token=token)
        if len(line) > self.MAX_SIZE_LINE + len(CRLF):
            raise FramingError(f"{what} longer than {self.MAX_SIZE_LINE} bytes")
        return line

    async def _read_size_line(self, token: Optional[CancellationToken]) -> int:
        line = await self._read_line(token, "chunk size line")
        if not line.endswith(CRLF):
            raise IncompleteDataError(len(line) + len(CRLF), len(line), "chunk size line")

        size_text = line[:-2].split(b";", 1)[0].strip()
        if not _HEX_SIZE.fullmatch(size_text):
            raise FramingError(f"invalid chunk size: {size_text!r}")
        return int(size_text, 16)

    async def _read_trailers(self, token: Optional[CancellationToken]) -> None:
        while True:
            line = await self._read_line(token, "trailer line")
            # A peer closing right after the zero chunk is tolerated
            if not line.endswith(CRLF) or line == CRLF:
                return
            name, sep, value = line[:-2].partition(b":")
            if sep:
                self.trailers.add(name.strip(), value.strip())

    def __aiter__(self) -> AsyncIterator[ChunkRecord]:
        return self

    async def __anext__(self) -> ChunkRecord:
        record = await self.read_next_chunk()
        if record is None:
            raise StopAsyncIteration
        return record

    async def aclose(self) -> None:
        self._state = ChunkedReaderState.DONE
        await self._source.aclose()


class ChunkedPayloadStream:
    """
    Dechunked view of a chunked body.

    Exposes the concatenated chunk payloads through the same
    ``read``/``readuntil``/``readline`` calls as ResponseStream, so line
    based decoders (SSE) can sit on top of a chunked response.
    """

    def __init__(self, reader: ChunkedBodyReader) -> None:
        self._reader = reader
        self._buffer = bytearray()
        self._closed = False

    async def _fill(self, token: Optional[CancellationToken]) -> bool:
        if self._closed:
            raise StreamError("Cannot read from closed stream")
        while True:
            record = await self._reader.read_next_chunk(token)
            if record is None or record.is_final:
                return False
            if record.data:
                self._buffer += record.data
                return True

    def _take(self, size: int) -> bytes:
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    async def read(
        self,
        max_bytes: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> bytes:
        if not self._buffer:
            await self._fill(token)
        size = len(self._buffer) if max_bytes is None else min(max_bytes, len(self._buffer))
        return self._take(size)

    async def readuntil(
        self,
        separator: bytes = b"\n",
        limit: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> bytes:
        """Same contract as ``ResponseStream.readuntil``."""
        start = 0
        while True:
            index = self._buffer.find(separator, start)
            if index >= 0:
                return self._take(index + len(separator))
            if limit is not None and len(self._buffer) > limit:
                raise FramingError(f"no delimiter within {limit} bytes")
            start = max(0, len(self._buffer) - len(separator) + 1)
            if not await self._fill(token):
                return self._take(len(self._buffer))

    async def readline(self, token: Optional[CancellationToken] = None) -> bytes:
        return await self.readuntil(b"\n", token=token)

    async def aread(self, token: Optional[CancellationToken] = None) -> bytes:
        chunks = []
        while True:
            chunk = await self.read(token=token)
            if not chunk:
                break
            chunks.append(chunk)
        await self.aclose()
        return b"".join(chunks)

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            self._buffer.clear()
            await self._reader.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def trailers(self) -> Headers:
        return self._reader.trailers
