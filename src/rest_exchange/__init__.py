"""
rest_exchange - asyncio HTTP/1.1 client exchange engine

Builds outbound requests from an ExchangeSpec, dispatches them, and
decodes response bodies as plain bytes, chunked transfer coding or
Server-Sent Events.
"""

__version__ = "0.1.0"
__author__ = "Developer"
__email__ = "dev@example.com"

# Import main components for easy access
from .auth import AuthorizationSpec
from .cancellation import CancellationToken, run_cancellable
from .chunked import (
    ChunkedBodyReader,
    ChunkedBodyWriter,
    ChunkedPayloadStream,
    ChunkedReaderState,
    ChunkRecord,
    WriterState,
    encode_chunk,
    encode_final_chunk,
)
from .engine import ExchangeEngine, ExchangeState
from .exceptions import (
    ConfigurationError,
    ConnectionError,
    ExchangeCancelledError,
    ExchangeError,
    FramingError,
    IncompleteDataError,
    InvalidStateError,
    ProtocolError,
    StreamError,
    TimeoutError,
    TransportError,
)
from .http11 import ConnectionState, HTTP11Connection
from .http_primitives import ExchangeSpec, Headers, HttpMethod, Timestamp, URLComponents
from .response import ResponseEnvelope
from .serialization import DefaultSerializationHelper, SerializationHelper
from .sse import SseEvent, SseReader
from .streams import RequestStream, ResponseStream, create_request_stream

__all__ = [
    "AuthorizationSpec",
    "CancellationToken",
    "run_cancellable",
    "ChunkedBodyReader",
    "ChunkedBodyWriter",
    "ChunkedPayloadStream",
    "ChunkedReaderState",
    "ChunkRecord",
    "WriterState",
    "encode_chunk",
    "encode_final_chunk",
    "ExchangeEngine",
    "ExchangeState",
    "ConfigurationError",
    "ConnectionError",
    "ExchangeCancelledError",
    "ExchangeError",
    "FramingError",
    "IncompleteDataError",
    "InvalidStateError",
    "ProtocolError",
    "StreamError",
    "TimeoutError",
    "TransportError",
    "ConnectionState",
    "HTTP11Connection",
    "ExchangeSpec",
    "Headers",
    "HttpMethod",
    "Timestamp",
    "URLComponents",
    "ResponseEnvelope",
    "DefaultSerializationHelper",
    "SerializationHelper",
    "SseEvent",
    "SseReader",
    "RequestStream",
    "ResponseStream",
    "create_request_stream",
]
