"""
Mock network implementations for testing.

This module provides mock implementations of NetworkStream and NetworkBackend
that serve scripted bytes, so exchanges can be tested without a server.
"""

import asyncio
import ssl
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Tuple

from .backend import NetworkBackend
from .stream import NetworkStream


class MockNetworkStream(NetworkStream):
    """
    Mock network stream for testing.

    Reads are served from an in-memory buffer. With ``stall_when_empty``
    a read on an exhausted buffer waits for ``add_data`` or ``feed_eof``
    instead of returning end of stream, which simulates a silent server.
    """

    def __init__(
        self,
        data: bytes = b"",
        stall_when_empty: bool = False,
        fail_writes_after: Optional[int] = None,
    ) -> None:
        """
        Initialize the mock stream.

        Args:
            data: Initial data to be available for reading.
            stall_when_empty: Block reads instead of signalling EOF.
            fail_writes_after: Raise ConnectionResetError once this many
                               bytes have been written.
        """
        self._data = data
        self._position = 0
        self._closed = False
        self._eof = not stall_when_empty
        self._data_available = asyncio.Event()
        self._extra_info: Dict[str, Any] = {}
        self._write_buffer: List[bytes] = []
        self._fail_writes_after = fail_writes_after

    async def read(self, max_bytes: Optional[int] = None) -> bytes:
        if self._closed:
            raise RuntimeError("Stream is closed")

        while self._position >= len(self._data):
            if self._eof:
                return b""
            self._data_available.clear()
            await self._data_available.wait()
            if self._closed:
                raise RuntimeError("Stream is closed")

        if max_bytes is None:
            end = len(self._data)
        else:
            end = min(self._position + max_bytes, len(self._data))
        result = self._data[self._position:end]
        self._position = end
        return result

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise RuntimeError("Stream is closed")

        if self._fail_writes_after is not None:
            remaining = self._fail_writes_after - len(self.written_data)
            if len(data) > remaining:
                if remaining > 0:
                    self._write_buffer.append(data[:remaining])
                raise ConnectionResetError("Connection reset by peer")

        self._write_buffer.append(data)

    async def aclose(self) -> None:
        self._closed = True
        self._data_available.set()

    def get_extra_info(self, name: str) -> Optional[Any]:
        return self._extra_info.get(name)

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def written_data(self) -> bytes:
        """Get all data that was written to the stream."""
        return b"".join(self._write_buffer)

    def set_extra_info(self, name: str, value: Any) -> None:
        self._extra_info[name] = value

    def add_data(self, data: bytes) -> None:
        """Make more data available for reading."""
        self._data += data
        self._data_available.set()

    def feed_eof(self) -> None:
        """Signal end of stream once buffered data is consumed."""
        self._eof = True
        self._data_available.set()


class MockNetworkBackend(NetworkBackend):
    """
    Mock network backend for testing.

    Streams are scripted per (host, port) with ``add_stream``; each
    connect pops the next one. Unscripted connects get an empty stream.
    """

    def __init__(self) -> None:
        self._scripted: Dict[Tuple[str, int], Deque[MockNetworkStream]] = defaultdict(deque)
        self._errors: Dict[Tuple[str, int], Exception] = {}
        self.connections: List[Dict[str, Any]] = []

    def add_stream(
        self,
        host: str,
        port: int,
        data: bytes = b"",
        **stream_options: Any,
    ) -> MockNetworkStream:
        """
        Script the stream returned by the next connect to host:port.

        Returns:
            The stream, so tests can inspect what was written to it.
        """
        stream = MockNetworkStream(data, **stream_options)
        self._scripted[(host, port)].append(stream)
        return stream

    def fail_connect(self, host: str, port: int, error: Exception) -> None:
        """Make every connect to host:port raise ``error``."""
        self._errors[(host, port)] = error

    def _open(
        self,
        host: str,
        port: int,
        ssl_context: Optional[ssl.SSLContext],
        timeout: Optional[float],
    ) -> MockNetworkStream:
        key = (host, port)
        if key in self._errors:
            raise self._errors[key]

        scripted = self._scripted[key]
        stream = scripted.popleft() if scripted else MockNetworkStream()
        stream.set_extra_info("peername", key)
        stream.set_extra_info("sockname", ("127.0.0.1", 12345))
        if ssl_context is not None:
            stream.set_extra_info("ssl_object", True)

        self.connections.append(
            {
                "host": host,
                "port": port,
                "tls": ssl_context is not None,
                "ssl_context": ssl_context,
                "timeout": timeout,
                "stream": stream,
            }
        )
        return stream

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
    ) -> MockNetworkStream:
        return self._open(host, port, None, timeout)

    async def connect_tls(
        self,
        host: str,
        port: int,
        ssl_context: ssl.SSLContext,
        timeout: Optional[float] = None,
    ) -> MockNetworkStream:
        return self._open(host, port, ssl_context, timeout)

    def reset(self) -> None:
        """Reset all scripted streams and recorded connections."""
        self._scripted.clear()
        self._errors.clear()
        self.connections.clear()
