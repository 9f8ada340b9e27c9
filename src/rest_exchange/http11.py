"""
HTTP/1.1 connection implementation for rest_exchange.

This module implements the HTTP11Connection class that drives a single
request/response exchange over a NetworkStream. Message heads are framed
by h11; once the response head is parsed, the body is handed to the
caller as raw bytes so the chunked and SSE decoders can frame it.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import h11

from .cancellation import CancellationToken, run_cancellable
from .exceptions import (
    ConnectionError,
    InvalidStateError,
    ProtocolError,
    TimeoutError,
)
from .http_primitives import RawHeaders
from .network.stream import NetworkStream
from .streams import RequestStream

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """States of an HTTP/1.1 connection."""
    NEW = "new"           # Connection created, nothing sent yet
    ACTIVE = "active"     # Request in flight or response being read
    CLOSED = "closed"     # Connection closed, cannot be used again


class HTTP11Connection:
    """
    HTTP/1.1 connection for one exchange.

    Every request carries ``Connection: close``, so a connection serves
    exactly one request/response cycle and is closed when the response
    body is drained or discarded.
    """

    # Default configuration
    DEFAULT_READ_TIMEOUT = 30.0  # 30 seconds
    DEFAULT_WRITE_TIMEOUT = 30.0  # 30 seconds
    DEFAULT_READ_SIZE = 65536  # 64KB chunks

    def __init__(
        self,
        stream: NetworkStream,
        read_timeout: Optional[float] = None,
        write_timeout: Optional[float] = None,
        read_size: Optional[int] = None,
    ):
        """
        Initialize HTTP/1.1 connection.

        Args:
            stream: The NetworkStream to use for communication
            read_timeout: Timeout for each read operation in seconds
            write_timeout: Timeout for each write operation in seconds
            read_size: Maximum bytes requested per network read
        """
        self._stream = stream
        self._h11_connection = h11.Connection(h11.CLIENT)
        self._state = ConnectionState.NEW

        # Configuration
        self._read_timeout = read_timeout or self.DEFAULT_READ_TIMEOUT
        self._write_timeout = write_timeout or self.DEFAULT_WRITE_TIMEOUT
        self._read_size = read_size or self.DEFAULT_READ_SIZE

        # Metrics
        self._bytes_sent = 0
        self._bytes_received = 0

        logger.debug("HTTP/1.1 connection initialized")

    def _check_open(self) -> None:
        if self._state == ConnectionState.CLOSED:
            raise InvalidStateError("connection is closed")

    async def _write(self, data: bytes) -> None:
        self._check_open()
        try:
            await asyncio.wait_for(self._stream.write(data), timeout=self._write_timeout)
        except asyncio.TimeoutError as e:
            raise TimeoutError("Write timed out", self._write_timeout) from e
        except OSError as e:
            raise ConnectionError(f"write failed: {e}", e) from e
        self._bytes_sent += len(data)

    async def _send_event(self, event: h11.Event) -> None:
        """
        Send an h11 event to the network stream.

        Args:
            event: The h11 event to send
        """
        try:
            data = self._h11_connection.send(event)
        except h11.LocalProtocolError as e:
            raise ProtocolError(f"invalid outbound message: {e}", e) from e
        if data:
            await self._write(data)

    async def send_request_head(self, method: str, target: str, headers: RawHeaders) -> None:
        """Send the request line and header block."""
        self._check_open()
        try:
            request = h11.Request(method=method, target=target, headers=headers)
        except h11.LocalProtocolError as e:
            raise ProtocolError(f"invalid request head: {e}", e) from e
        self._state = ConnectionState.ACTIVE
        await self._send_event(request)

    async def send_body(
        self,
        body: RequestStream,
        token: Optional[CancellationToken] = None,
    ) -> None:
        """
        Send a request body through h11 and end the message.

        h11 applies the framing announced in the head: Content-Length
        bodies are written as-is, chunked bodies get chunk frames.
        """
        async for chunk in body:
            await run_cancellable(self._send_event(h11.Data(data=chunk)), token)
        await run_cancellable(self._send_event(h11.EndOfMessage()), token)

    async def end_request(self) -> None:
        """End a request that has no body."""
        await self._send_event(h11.EndOfMessage())

    async def send_raw(self, data: bytes) -> None:
        """
        Write pre-framed body bytes verbatim.

        Used for bodies that are already chunk-framed; h11 is bypassed so
        the frames reach the wire unchanged.
        """
        await self._write(data)

    async def _read(self, max_bytes: Optional[int] = None) -> bytes:
        self._check_open()
        try:
            data = await asyncio.wait_for(
                self._stream.read(max_bytes or self._read_size),
                timeout=self._read_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TimeoutError("Read timed out", self._read_timeout) from e
        except OSError as e:
            raise ConnectionError(f"read failed: {e}", e) from e
        self._bytes_received += len(data)
        return data

    async def receive_response_head(self) -> Tuple[h11.Response, bytes]:
        """
        Receive the final response head.

        Informational (1xx) heads are skipped.

        Returns:
            The h11 Response event and the body bytes that arrived with it

        Raises:
            ProtocolError: If the head is malformed or the peer closes first
        """
        while True:
            try:
                event = self._h11_connection.next_event()
            except h11.RemoteProtocolError as e:
                raise ProtocolError(f"malformed response head: {e}", e) from e

            if event is h11.NEED_DATA:
                data = await self._read()
                if not data:
                    raise ProtocolError("connection closed before response head was received")
                self._h11_connection.receive_data(data)
                continue

            if isinstance(event, h11.InformationalResponse):
                logger.debug(f"Skipping informational response {event.status_code}")
                continue

            if isinstance(event, h11.Response):
                trailing, _ = self._h11_connection.trailing_data
                return event, bytes(trailing)

            if isinstance(event, h11.ConnectionClosed):
                raise ProtocolError("connection closed by server")

            raise ProtocolError(f"unexpected event while reading response head: {event!r}")

    async def receive_raw(self, max_bytes: Optional[int] = None) -> bytes:
        """
        Read raw response body bytes.

        Returns:
            Up to ``max_bytes`` bytes; ``b""`` when the peer closed
        """
        return await self._read(max_bytes)

    async def close(self) -> None:
        """
        Close the connection and cleanup resources.
        """
        if self._state == ConnectionState.CLOSED:
            return
        self._state = ConnectionState.CLOSED
        await self._stream.aclose()
        logger.debug(
            f"Connection closed ({self._bytes_sent} bytes sent, "
            f"{self._bytes_received} bytes received)"
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_closed(self) -> bool:
        """Check if connection is closed."""
        return self._state == ConnectionState.CLOSED

    @property
    def metrics(self) -> Dict[str, Any]:
        """
        Get connection metrics.

        Returns:
            Dictionary with connection metrics
        """
        return {
            "bytes_sent": self._bytes_sent,
            "bytes_received": self._bytes_received,
            "state": self._state.value,
        }
