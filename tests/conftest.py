"""
Pytest configuration for rest_exchange tests.

This file contains shared fixtures and configuration
for all tests in the project.
"""

import pytest
from typing import Iterable, List, Optional, Tuple

from rest_exchange.http11 import HTTP11Connection
from rest_exchange.network.mock import MockNetworkBackend, MockNetworkStream
from rest_exchange.streams import ResponseStream


def _build_response(
    status: int = 200,
    reason: str = "OK",
    headers: Optional[Iterable[Tuple[str, str]]] = None,
    body: bytes = b"",
    content_length: bool = True,
) -> bytes:
    """Serialize a response the way a server would put it on the wire."""
    lines = [f"HTTP/1.1 {status} {reason}"]
    header_list = list(headers or [])
    names = {name.lower() for name, _ in header_list}
    if content_length and "content-length" not in names and "transfer-encoding" not in names:
        header_list.append(("Content-Length", str(len(body))))
    for name, value in header_list:
        lines.append(f"{name}: {value}")
    head = "\r\n".join(lines) + "\r\n\r\n"
    return head.encode("latin-1") + body


def _chunked(*chunks: bytes, trailers: bytes = b"") -> bytes:
    """Frame chunks by hand, independent of the library's encoder."""
    body = b"".join(b"%x\r\n%s\r\n" % (len(chunk), chunk) for chunk in chunks)
    return body + b"0\r\n" + trailers + b"\r\n"


@pytest.fixture
def build_response():
    """Factory producing raw HTTP/1.1 response bytes."""
    return _build_response


@pytest.fixture
def chunked_body():
    """Factory producing a chunk-framed body."""
    return _chunked


@pytest.fixture
def mock_backend() -> MockNetworkBackend:
    """Scripted network backend."""
    return MockNetworkBackend()


@pytest.fixture
def body_stream():
    """Factory for a ResponseStream reading raw bytes from a mock socket."""
    def _create(
        data: bytes,
        read_size: int = 65536,
        content_length: Optional[int] = None,
        initial: bytes = b"",
        stall_when_empty: bool = False,
    ) -> ResponseStream:
        network = MockNetworkStream(data, stall_when_empty=stall_when_empty)
        connection = HTTP11Connection(network, read_size=read_size)
        return ResponseStream(
            connection,
            initial=initial,
            content_length=content_length,
            read_size=read_size,
        )
    return _create


@pytest.fixture
def sample_stream_data() -> List[bytes]:
    """Sample stream data for testing."""
    return [
        b"Hello",
        b", ",
        b"World",
        b"!",
    ]


@pytest.fixture
def async_data_generator():
    """Create an async data generator for testing."""
    async def generator(data: List[bytes]):
        for chunk in data:
            yield chunk

    return generator
