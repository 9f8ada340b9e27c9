"""
Exchange engine for rest_exchange.

The ExchangeEngine is the only component that touches the network. It
turns an ExchangeSpec plus an optional body into a request, dispatches
it over a fresh connection, follows redirects and hands back a
ResponseEnvelope whose body is still on the wire.
"""

import asyncio
import logging
import ssl
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    AsyncIterable,
    Iterable,
    Mapping,
    Optional,
    Tuple,
    Union,
)
from urllib.parse import urlencode, urljoin

from .cancellation import CancellationToken, run_cancellable
from .chunked import ChunkData, ChunkedBodyWriter
from .exceptions import (
    ConfigurationError,
    ConnectionError,
    ExchangeCancelledError,
    ExchangeError,
    InvalidStateError,
    TimeoutError,
)
from .http11 import HTTP11Connection
from .http_primitives import (
    ExchangeSpec,
    Headers,
    HttpMethod,
    Timestamp,
    URLComponents,
)
from .network import AsyncIONetworkBackend, NetworkBackend, NetworkStream
from .network.utils import create_ssl_context, format_host_header
from .response import ResponseEnvelope
from .serialization import DefaultSerializationHelper, SerializationHelper
from .streams import RequestStream, ResponseStream

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"

# Managed by the transport, never copied from the caller's headers
SKIPPED_HEADERS = frozenset({"connection", "close", "content-length", "transfer-encoding"})

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})

FormData = Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]


class ExchangeState(Enum):
    """Lifecycle of an ExchangeEngine."""
    IDLE = "idle"               # Nothing sent yet
    BUFFERING = "buffering"     # Chunked body being accumulated
    DISPATCHED = "dispatched"   # Request in flight
    COMPLETED = "completed"     # Response head received
    FAILED = "failed"           # Last exchange raised an error
    CANCELLED = "cancelled"     # Last exchange was cancelled


@dataclass
class _OutboundBody:
    """Request body as handed to the connection."""

    content_type: str
    stream: Optional[RequestStream] = None
    framed: Optional[bytes] = None

    @property
    def replayable(self) -> bool:
        return self.framed is not None or (self.stream is not None and self.stream.replayable)

    @property
    def chunked(self) -> bool:
        """Pre-framed bodies are always chunked."""
        if self.stream is None:
            return True
        return self.stream.chunked or self.stream.content_length is None


class ExchangeEngine:
    """
    Runs exchanges described by an ExchangeSpec.

    The spec is read through a validated snapshot at dispatch, so the
    caller may keep editing it between exchanges. One engine runs one
    exchange at a time; chunked uploads buffer every ``append_chunk()``
    and only touch the network in ``complete_chunked()``.

    Example:
        async with ExchangeEngine(ExchangeSpec("https://example.com")) as engine:
            response = await engine.send()
            text = await response.read_text()
    """

    # Default configuration
    DEFAULT_MAX_REDIRECTS = 50
    DEFAULT_PARTIAL_RESPONSE_TIMEOUT = 1.0  # 1 second

    def __init__(
        self,
        spec: ExchangeSpec,
        backend: Optional[NetworkBackend] = None,
        serializer: Optional[SerializationHelper] = None,
        max_redirects: Optional[int] = None,
    ):
        """
        Initialize the engine.

        Args:
            spec: Description of the exchange
            backend: Network backend (asyncio streams by default)
            serializer: JSON helper for send_json and response envelopes
            max_redirects: Maximum number of redirects followed per exchange
        """
        if not isinstance(spec, ExchangeSpec):
            raise ConfigurationError(f"spec must be an ExchangeSpec, got {type(spec).__name__}")

        self.spec = spec
        self._backend = backend or AsyncIONetworkBackend()
        self.serializer = serializer or DefaultSerializationHelper()
        self._max_redirects = (
            self.DEFAULT_MAX_REDIRECTS if max_redirects is None else max_redirects
        )

        self._state = ExchangeState.IDLE
        self._writer: Optional[ChunkedBodyWriter] = None
        self._in_flight = False
        self._closed = False
        self.time: Optional[Timestamp] = None

    @property
    def state(self) -> ExchangeState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _check_ready(self) -> None:
        if self._closed:
            raise InvalidStateError("engine is closed")
        if self._in_flight:
            raise InvalidStateError("an exchange is already in flight on this engine")

    def _check_can_send(self) -> None:
        self._check_ready()
        if self._state is ExchangeState.BUFFERING:
            raise InvalidStateError("a chunked upload is in progress; use complete_chunked()")

    def _chunk_writer(self) -> ChunkedBodyWriter:
        self._check_ready()
        if not self.spec.chunked_transfer:
            raise InvalidStateError("chunked_transfer is not enabled on the exchange spec")
        if self._writer is None:
            self._writer = ChunkedBodyWriter()
            self._state = ExchangeState.BUFFERING
        return self._writer

    def _content_type(self, default: str) -> str:
        return self.spec.content_type or default

    # Sending

    async def send(
        self,
        data: Union[bytes, str, None] = None,
        token: Optional[CancellationToken] = None,
    ) -> ResponseEnvelope:
        """
        Send the request with an optional in-memory body.

        Bodies are dropped for GET and HEAD.
        """
        self._check_can_send()
        body = None
        if data:
            body = _OutboundBody(
                content_type=self._content_type(DEFAULT_CONTENT_TYPE),
                stream=RequestStream(data, chunked=self.spec.chunked_transfer),
            )
        return await self._dispatch(body, token)

    async def send_form(
        self,
        form: FormData,
        token: Optional[CancellationToken] = None,
    ) -> ResponseEnvelope:
        """Send ``form`` URL-encoded (``application/x-www-form-urlencoded``)."""
        self._check_can_send()
        encoded = urlencode(form, doseq=True).encode("ascii")
        body = _OutboundBody(
            content_type=self._content_type(FORM_CONTENT_TYPE),
            stream=RequestStream(encoded, chunked=self.spec.chunked_transfer),
        )
        return await self._dispatch(body, token)

    async def send_json(
        self,
        obj: Any,
        token: Optional[CancellationToken] = None,
        pretty: bool = False,
    ) -> ResponseEnvelope:
        """Serialize ``obj`` with the engine's serializer and send it."""
        self._check_can_send()
        encoded = self.serializer.serialize_json(obj, pretty=pretty).encode("utf-8")
        body = _OutboundBody(
            content_type=self._content_type(JSON_CONTENT_TYPE),
            stream=RequestStream(encoded, chunked=self.spec.chunked_transfer),
        )
        return await self._dispatch(body, token)

    async def send_stream(
        self,
        stream: AsyncIterable[bytes],
        content_length: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> ResponseEnvelope:
        """
        Send a body read from an async iterable.

        Without ``content_length`` the body goes out with chunked
        transfer coding. Streamed bodies cannot be replayed on redirect.
        """
        self._check_can_send()
        body = _OutboundBody(
            content_type=self._content_type(DEFAULT_CONTENT_TYPE),
            stream=RequestStream(
                stream,
                content_length=content_length,
                chunked=self.spec.chunked_transfer or content_length is None,
            ),
        )
        return await self._dispatch(body, token)

    def append_chunk(self, data: ChunkData) -> None:
        """
        Buffer one chunk of a chunked upload. No network I/O happens.

        Raises:
            InvalidStateError: If chunked transfer is disabled on the ExchangeSpec,
                or the upload was already completed or abandoned
        """
        self._chunk_writer().append_chunk(data)

    async def complete_chunked(
        self,
        data: ChunkData = None,
        token: Optional[CancellationToken] = None,
    ) -> ResponseEnvelope:
        """
        Frame the last chunk, finish the body and dispatch the request.

        Returns:
            The response to the chunked upload
        """
        framed = self._chunk_writer().finalize(data)
        body = _OutboundBody(
            content_type=self._content_type(DEFAULT_CONTENT_TYPE),
            framed=framed,
        )
        return await self._dispatch(body, token)

    async def send_chunk(
        self,
        data: ChunkData,
        is_final: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> Optional[ResponseEnvelope]:
        """
        Buffer a chunk, or complete the upload when ``is_final`` is set.

        Returns:
            None for non-final chunks, the response for the final one
        """
        if not is_final:
            self.append_chunk(data)
            return None
        return await self.complete_chunked(data, token)

    # Dispatch

    async def _dispatch(
        self,
        body: Optional[_OutboundBody],
        token: Optional[CancellationToken],
    ) -> ResponseEnvelope:
        timestamp = Timestamp()
        self.time = timestamp
        self._in_flight = True
        self._state = ExchangeState.DISPATCHED

        try:
            if token is not None:
                token.raise_if_cancelled()
            spec = self.spec.snapshot()
            logger.debug(f"{spec.method.value} {spec.url}")

            if body is not None and spec.method.suppresses_body:
                logger.debug(f"Dropping request body for {spec.method.value} request")
                body = None

            # TLS configuration errors surface before any connection attempt
            ssl_context = None
            if spec.url_components.is_tls or spec.certificate_filename:
                ssl_context = self._create_ssl_context(spec)

            try:
                response = await asyncio.wait_for(
                    self._follow_redirects(spec, body, ssl_context, timestamp, token),
                    timeout=spec.timeout,
                )
            except asyncio.TimeoutError as e:
                raise TimeoutError(f"No response from {spec.url}", spec.timeout) from e

        except ExchangeCancelledError:
            self._state = ExchangeState.CANCELLED
            timestamp.stop()
            logger.debug(f"Exchange cancelled ({timestamp.total_ms:.2f}ms)")
            raise
        except asyncio.CancelledError:
            self._state = ExchangeState.CANCELLED
            timestamp.stop()
            raise
        except ExchangeError as e:
            self._state = ExchangeState.FAILED
            timestamp.stop()
            logger.error(f"Exchange failed after {timestamp.total_ms:.2f}ms: {e}")
            raise
        finally:
            self._in_flight = False

        timestamp.stop()
        self._state = ExchangeState.COMPLETED
        logger.debug(
            f"{response.status_code} response received after {timestamp.total_ms:.2f}ms"
        )
        return response

    def _create_ssl_context(self, spec: ExchangeSpec) -> ssl.SSLContext:
        if spec.ignore_certificate_errors:
            logger.debug("Certificate validation disabled")
        return create_ssl_context(
            verify=not spec.ignore_certificate_errors,
            cert_file=spec.certificate_filename,
            cert_password=spec.certificate_password,
        )

    async def _follow_redirects(
        self,
        spec: ExchangeSpec,
        body: Optional[_OutboundBody],
        ssl_context: Optional[ssl.SSLContext],
        timestamp: Timestamp,
        token: Optional[CancellationToken],
    ) -> ResponseEnvelope:
        method = spec.method
        url = spec.url
        origin = spec.url_components.origin
        redirects = 0

        while True:
            components = URLComponents.from_url(url)
            if components.is_tls and ssl_context is None:
                ssl_context = self._create_ssl_context(spec)

            headers = self._build_headers(
                spec, components, body, with_authorization=components.origin == origin
            )
            response = await self._round_trip(
                spec, method, components, headers, body, ssl_context, timestamp, token
            )

            if not spec.allow_auto_redirect or response.status_code not in REDIRECT_STATUSES:
                return response

            location = response.headers.get("Location")
            if not location:
                return response

            if redirects >= self._max_redirects:
                logger.warning(f"Redirect limit ({self._max_redirects}) reached at {url}")
                return response

            target = urljoin(url, location)
            try:
                target_components = URLComponents.from_url(target)
            except ConfigurationError as e:
                logger.warning(f"Not following redirect to {target!r}: {e}")
                return response

            if components.is_tls and not target_components.is_tls:
                logger.warning(f"Not following redirect from {url} to insecure {target}")
                return response

            status = response.status_code
            if status == 303 or (status in (301, 302) and method is HttpMethod.POST):
                if method is not HttpMethod.HEAD:
                    method = HttpMethod.GET
                body = None
            elif body is not None and not body.replayable:
                logger.warning(f"Not following {status} redirect: request body cannot be replayed")
                return response

            await response.aclose()
            redirects += 1
            logger.debug(f"Following {status} redirect to {method.value} {target}")
            url = target

    def _build_headers(
        self,
        spec: ExchangeSpec,
        components: URLComponents,
        body: Optional[_OutboundBody],
        with_authorization: bool = True,
    ) -> Headers:
        headers = Headers()
        for name, value in spec.headers.items():
            if not name.strip() or not value:
                continue
            if name.strip().lower() in SKIPPED_HEADERS:
                continue
            headers.add(name.strip(), value)

        if "Host" not in headers:
            headers["Host"] = format_host_header(
                components.host, components.port, components.scheme
            )
        if "User-Agent" not in headers:
            headers["User-Agent"] = spec.user_agent
        if "Accept" not in headers:
            headers["Accept"] = "*/*"

        authorization = spec.authorization.header_value() if with_authorization else None
        if authorization is not None:
            logger.debug(f"Adding {spec.authorization.scheme} authorization")
            headers["Authorization"] = authorization
        elif not with_authorization and "Authorization" in headers:
            logger.debug("Dropping authorization for cross-origin redirect")
            del headers["Authorization"]

        headers["Connection"] = "close"

        if body is not None:
            if "Content-Type" not in headers:
                headers["Content-Type"] = body.content_type
            if body.chunked:
                headers["Transfer-Encoding"] = "chunked"
            elif body.stream is not None:
                headers["Content-Length"] = str(body.stream.content_length)

        return headers

    async def _connect(
        self,
        components: URLComponents,
        ssl_context: Optional[ssl.SSLContext],
        timeout: float,
        token: Optional[CancellationToken],
    ) -> NetworkStream:
        try:
            if components.is_tls:
                if ssl_context is None:
                    raise InvalidStateError(f"no TLS context for {components.host}")
                return await run_cancellable(
                    self._backend.connect_tls(
                        components.host, components.port, ssl_context, timeout=timeout
                    ),
                    token,
                )
            return await run_cancellable(
                self._backend.connect_tcp(components.host, components.port, timeout=timeout),
                token,
            )
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"Connecting to {components.host}:{components.port} timed out", timeout
            ) from e
        except OSError as e:
            raise ConnectionError(
                f"unable to connect to {components.host}:{components.port}: {e}", e
            ) from e

    async def _round_trip(
        self,
        spec: ExchangeSpec,
        method: HttpMethod,
        components: URLComponents,
        headers: Headers,
        body: Optional[_OutboundBody],
        ssl_context: Optional[ssl.SSLContext],
        timestamp: Timestamp,
        token: Optional[CancellationToken],
    ) -> ResponseEnvelope:
        stream = await self._connect(components, ssl_context, spec.timeout, token)
        connection = HTTP11Connection(
            stream,
            read_timeout=spec.timeout,
            write_timeout=spec.timeout,
            read_size=spec.buffer_size,
        )

        try:
            await run_cancellable(
                connection.send_request_head(method.value, components.target, headers.to_list()),
                token,
            )
            try:
                await self._send_body(connection, body, token)
            except ConnectionError as e:
                e.response = await self._receive_partial_response(
                    connection, method, timestamp
                )
                raise

            event, trailing = await run_cancellable(connection.receive_response_head(), token)
        except (Exception, asyncio.CancelledError):
            await connection.close()
            raise

        return await self._build_envelope(
            connection, method, event, trailing, spec.buffer_size, timestamp
        )

    async def _send_body(
        self,
        connection: HTTP11Connection,
        body: Optional[_OutboundBody],
        token: Optional[CancellationToken],
    ) -> None:
        if body is not None and body.framed is not None:
            await run_cancellable(connection.send_raw(body.framed), token)
        elif body is not None and body.stream is not None:
            await connection.send_body(body.stream, token)
        else:
            await run_cancellable(connection.end_request(), token)

    async def _receive_partial_response(
        self,
        connection: HTTP11Connection,
        method: HttpMethod,
        timestamp: Timestamp,
    ) -> Optional[ResponseEnvelope]:
        """Parse a response head the server sent before the body write failed."""
        try:
            event, trailing = await asyncio.wait_for(
                connection.receive_response_head(),
                timeout=self.DEFAULT_PARTIAL_RESPONSE_TIMEOUT,
            )
        except (ExchangeError, asyncio.TimeoutError) as e:
            logger.debug(f"No response received before the write failure: {e}")
            return None
        logger.debug(f"Server answered {event.status_code} before the body was sent")
        return await self._build_envelope(
            connection,
            method,
            event,
            trailing,
            None,
            timestamp,
            buffer_timeout=self.DEFAULT_PARTIAL_RESPONSE_TIMEOUT,
        )

    async def _build_envelope(
        self,
        connection: HTTP11Connection,
        method: HttpMethod,
        event: Any,
        trailing: bytes,
        read_size: Optional[int],
        timestamp: Timestamp,
        buffer_timeout: Optional[float] = None,
    ) -> ResponseEnvelope:
        headers = Headers.from_raw(event.headers)
        status = event.status_code
        has_body = not (
            method is HttpMethod.HEAD or status < 200 or status in (204, 304)
        )

        content_length: Optional[int] = 0
        if has_body:
            codings = (headers.get("Transfer-Encoding") or "").lower()
            content_length = None
            if "chunked" not in codings:
                try:
                    content_length = int(headers.get("Content-Length", ""))
                except ValueError:
                    content_length = None
        else:
            await connection.close()

        body_stream = ResponseStream(
            connection,
            initial=trailing if has_body else b"",
            content_length=content_length,
            read_size=read_size or HTTP11Connection.DEFAULT_READ_SIZE,
        )
        if buffer_timeout is not None:
            # The connection is closed right after this envelope is returned
            await body_stream.buffer_remaining(buffer_timeout)
        return ResponseEnvelope(
            status_code=status,
            headers=headers,
            stream=body_stream,
            reason_phrase=event.reason.decode("latin-1"),
            protocol_version="HTTP/" + event.http_version.decode("ascii"),
            time=timestamp,
            serializer=self.serializer,
            has_body=has_body,
        )

    # Lifecycle

    async def aclose(self) -> None:
        """
        Close the engine.

        An unfinished chunked upload is abandoned and nothing is sent.
        """
        if self._closed:
            return
        self._closed = True
        if self._writer is not None and not self._writer.is_finalized:
            self._writer.abandon()
            self._state = ExchangeState.CANCELLED
        logger.debug("Exchange engine closed")

    async def __aenter__(self) -> "ExchangeEngine":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return (
            f"<ExchangeEngine {HttpMethod.parse(self.spec.method).value} "
            f"{self.spec.url} [{self._state.value}]>"
        )
