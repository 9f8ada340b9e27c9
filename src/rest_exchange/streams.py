"""
Streaming framework for rest_exchange.

This module provides streaming abstractions for HTTP request and response
bodies. Response bodies are exposed as raw payload bytes: the chunked and
SSE decoders read from a ResponseStream, and consumption drives reading
from the network.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import (
    TYPE_CHECKING,
    AsyncIterable,
    AsyncIterator,
    List,
    Optional,
    Union,
)

from .cancellation import CancellationToken, run_cancellable
from .exceptions import (
    ExchangeCancelledError,
    ExchangeError,
    FramingError,
    IncompleteDataError,
    StreamError,
)

if TYPE_CHECKING:
    from .http11 import HTTP11Connection  # Forward reference

logger = logging.getLogger(__name__)

RequestData = Union[bytes, str, List[bytes], AsyncIterable[bytes]]

DEFAULT_READ_SIZE = 65536


class StreamInterface(ABC):
    """
    Base interface for all streams.

    All streams must implement this interface to ensure
    consistent behavior across the library.
    """

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[bytes]:
        """Return an async iterator over the stream's byte chunks."""

    @abstractmethod
    async def aclose(self) -> None:
        """Close the stream and cleanup resources."""

    @abstractmethod
    async def aread(self) -> bytes:
        """Read entire stream and return as bytes."""


class RequestStream(StreamInterface):
    """
    Stream for HTTP request bodies.

    Wraps bytes, a list of byte chunks or an async iterable. Bytes and
    lists can be iterated again (needed to replay a body on redirect);
    async iterables are single-pass.
    """

    def __init__(
        self,
        data: RequestData,
        content_length: Optional[int] = None,
        chunked: bool = False,
    ) -> None:
        """
        Initialize RequestStream.

        Args:
            data: The data to stream. Can be bytes, str, list of bytes, or async iterable
            content_length: Optional content length for validation
            chunked: Whether to use chunked transfer encoding
        """
        if isinstance(data, str):
            data = data.encode("utf-8")

        self._data = data
        self._content_length = content_length
        self._chunked = chunked
        self._closed = False
        self._consumed = False

        if content_length is not None and content_length < 0:
            raise ValueError("content_length must be non-negative")

        actual_length = self._calculate_actual_length()
        if content_length is None and actual_length >= 0:
            self._content_length = actual_length
        elif content_length is not None and actual_length >= 0 and actual_length != content_length:
            raise ValueError(
                f"Actual content length ({actual_length}) "
                f"does not match provided content_length ({content_length})"
            )

    def _calculate_actual_length(self) -> int:
        """Calculate the content length, or -1 for async iterables."""
        if isinstance(self._data, (bytes, bytearray)):
            return len(self._data)
        elif isinstance(self._data, list):
            return sum(len(chunk) for chunk in self._data)
        return -1

    async def _iterate(self) -> AsyncIterator[bytes]:
        if isinstance(self._data, (bytes, bytearray)):
            if self._data:
                yield bytes(self._data)
        elif isinstance(self._data, list):
            for chunk in self._data:
                if chunk:  # Skip empty chunks
                    yield chunk
        else:
            if self._consumed:
                raise StreamError("Request body stream cannot be replayed")
            self._consumed = True
            async for chunk in self._data:
                if chunk:
                    yield chunk

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._closed:
            raise StreamError("Cannot iterate over closed stream")
        return self._iterate()

    async def aread(self) -> bytes:
        if self._closed:
            raise StreamError("Cannot read from closed stream")
        return b"".join([chunk async for chunk in self])

    async def aclose(self) -> None:
        self._closed = True

    @property
    def content_length(self) -> Optional[int]:
        """Content length, known for bytes and list bodies."""
        return self._content_length

    @property
    def chunked(self) -> bool:
        return self._chunked

    @property
    def replayable(self) -> bool:
        """Whether the body can be sent again, e.g. after a 307 redirect."""
        return not self._closed and isinstance(self._data, (bytes, bytearray, list))

    @property
    def closed(self) -> bool:
        return self._closed


class ResponseStream(StreamInterface):
    """
    Raw payload bytes of an HTTP response body.

    The stream starts with whatever the connection had buffered past the
    response head and then reads from the network on demand. With a known
    ``content_length`` it never yields more than that many bytes. It is
    single-consumer and forward-only; draining it to the end, an error,
    a cancellation or ``aclose()`` closes the underlying connection.
    """

    def __init__(
        self,
        connection: "HTTP11Connection",
        initial: bytes = b"",
        content_length: Optional[int] = None,
        read_size: int = DEFAULT_READ_SIZE,
    ) -> None:
        """
        Initialize ResponseStream.

        Args:
            connection: The HTTP11Connection that owns this stream
            initial: Body bytes already received with the response head
            content_length: Optional content length limiting the body
            read_size: Maximum bytes requested per network read
        """
        if content_length is not None and content_length < 0:
            raise ValueError("content_length must be non-negative")

        self._connection = connection
        self._buffer = bytearray(initial)
        self._content_length = content_length
        self._read_size = read_size
        self._bytes_read = 0
        self._eof = False
        self._closed = False
        self._trim_to_limit()

    def _trim_to_limit(self) -> None:
        if self._content_length is None:
            return
        allowed = self._content_length - self._bytes_read
        if len(self._buffer) > allowed:
            del self._buffer[allowed:]

    def _at_limit(self) -> bool:
        return (
            self._content_length is not None
            and self._bytes_read + len(self._buffer) >= self._content_length
        )

    def _take(self, size: int) -> bytes:
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        self._bytes_read += len(data)
        return data

    async def _fill(self, token: Optional[CancellationToken]) -> bool:
        """
        Read more bytes from the connection into the buffer.

        Returns:
            False once the body is complete (limit reached or peer closed)
        """
        if self._closed:
            raise StreamError("Cannot read from closed stream")
        if self._eof or self._at_limit():
            return False

        try:
            data = await run_cancellable(
                self._connection.receive_raw(self._read_size), token
            )
        except (ExchangeError, ExchangeCancelledError):
            await self.aclose()
            raise

        if not data:
            self._eof = True
            return False

        self._buffer.extend(data)
        self._trim_to_limit()
        return True

    async def read(
        self,
        max_bytes: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> bytes:
        """
        Read up to ``max_bytes`` (default: whatever is available).

        Returns:
            The bytes read; ``b""`` at the end of the body.
        """
        if self._closed:
            raise StreamError("Cannot read from closed stream")
        if not self._buffer:
            await self._fill(token)
        size = len(self._buffer) if max_bytes is None else min(max_bytes, len(self._buffer))
        return self._take(size)

    async def readexactly(
        self,
        size: int,
        token: Optional[CancellationToken] = None,
        what: str = "chunk data",
    ) -> bytes:
        """
        Read exactly ``size`` bytes.

        Raises:
            IncompleteDataError: If the body ends first
        """
        if self._closed:
            raise StreamError("Cannot read from closed stream")
        while len(self._buffer) < size:
            if not await self._fill(token):
                raise IncompleteDataError(size, len(self._buffer), what)
        return self._take(size)

    async def readuntil(
        self,
        separator: bytes = b"\r\n",
        limit: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> bytes:
        """
        Read up to and including ``separator``.

        At the end of the body the remaining bytes are returned without
        the separator (``b""`` if nothing is left).

        Raises:
            FramingError: If ``limit`` bytes pass without a separator
        """
        if self._closed:
            raise StreamError("Cannot read from closed stream")
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
        """Read one LF-terminated line, terminator included."""
        return await self.readuntil(b"\n", token=token)

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read()
            if not chunk:
                await self.aclose()
                return
            yield chunk

    async def aread(self, token: Optional[CancellationToken] = None) -> bytes:
        """Read the rest of the body and close the stream."""
        if self._closed:
            raise StreamError("Cannot read from closed stream")
        chunks = []
        while True:
            chunk = await self.read(token=token)
            if not chunk:
                break
            chunks.append(chunk)
        await self.aclose()
        return b"".join(chunks)

    async def buffer_remaining(self, timeout: float) -> None:
        """
        Read what is left of the body into memory and stop using the connection.

        Reading stops at the end of the body, on a read failure or after
        ``timeout`` seconds. Bytes received up to that point stay readable
        after the connection is closed.
        """
        if self._closed:
            return
        try:
            await asyncio.wait_for(self._read_to_end(), timeout=timeout)
        except (ExchangeError, asyncio.TimeoutError) as e:
            logger.debug(f"Body buffering stopped after {len(self._buffer)} bytes: {e}")
        self._eof = True

    async def _read_to_end(self) -> None:
        while not self._eof and not self._at_limit():
            data = await self._connection.receive_raw(self._read_size)
            if not data:
                return
            self._buffer.extend(data)
            self._trim_to_limit()

    async def aclose(self) -> None:
        """Close the stream and the connection it reads from."""
        if not self._closed:
            self._closed = True
            self._buffer.clear()
            await self._connection.close()

    @property
    def content_length(self) -> Optional[int]:
        return self._content_length

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def bytes_read(self) -> int:
        """Number of body bytes handed to the consumer so far."""
        return self._bytes_read


def create_request_stream(
    data: RequestData,
    content_length: Optional[int] = None,
    chunked: bool = False,
) -> RequestStream:
    """
    Factory function to create RequestStream from various data types.

    Args:
        data: The data to stream. Can be bytes, string, list of bytes, or async iterable
        content_length: Optional content length for validation
        chunked: Whether to use chunked transfer encoding

    Returns:
        RequestStream instance
    """
    return RequestStream(data=data, content_length=content_length, chunked=chunked)
