"""
End-to-end tests for the exchange engine.

Every test scripts the server side with MockNetworkBackend and checks
both the bytes the engine put on the wire and the envelope it returned.
"""

import asyncio
import ssl
from typing import Dict, Tuple

import pytest

from rest_exchange.auth import AuthorizationSpec
from rest_exchange.cancellation import CancellationToken
from rest_exchange.engine import ExchangeEngine, ExchangeState
from rest_exchange.exceptions import (
    ConfigurationError,
    ConnectionError,
    ExchangeCancelledError,
    InvalidStateError,
    ProtocolError,
    TimeoutError,
)
from rest_exchange.http_primitives import ExchangeSpec, Headers, URLComponents
from rest_exchange.sse import SseEvent


def parse_request(data: bytes) -> Tuple[str, Dict[str, str], bytes]:
    """Split written bytes into request line, lower-cased headers and body."""
    head, _, body = data.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    return lines[0], headers, body


class TestRequestConstruction:
    """Test the request the engine writes."""

    @pytest.mark.asyncio
    async def test_get_headers(self, mock_backend, build_response):
        stream = mock_backend.add_stream("api.test", 80, build_response(body=b"ok"))
        spec = ExchangeSpec(
            "http://api.test/items?page=2",
            headers=Headers(
                [("X-Trace", "abc"), ("Connection", "keep-alive"), ("Content-Length", "99"), ("X-Empty", "")]
            ),
        )

        async with ExchangeEngine(spec, backend=mock_backend) as engine:
            response = await engine.send()
            assert await response.read_text() == "ok"

        line, headers, body = parse_request(stream.written_data)
        assert line == "GET /items?page=2 HTTP/1.1"
        assert headers["host"] == "api.test"
        assert headers["accept"] == "*/*"
        assert headers["user-agent"] == spec.user_agent
        assert headers["connection"] == "close"
        assert headers["x-trace"] == "abc"
        assert "content-length" not in headers
        assert "x-empty" not in headers
        assert body == b""

    @pytest.mark.asyncio
    async def test_get_body_suppressed(self, mock_backend, build_response):
        stream = mock_backend.add_stream("api.test", 80, build_response())
        engine = ExchangeEngine(ExchangeSpec("http://api.test/"), backend=mock_backend)

        await engine.send(b"ignored payload")

        _, headers, body = parse_request(stream.written_data)
        assert body == b""
        assert "content-type" not in headers
        assert "content-length" not in headers

    @pytest.mark.asyncio
    async def test_post_bytes(self, mock_backend, build_response):
        stream = mock_backend.add_stream("api.test", 8080, build_response(201, "Created"))
        spec = ExchangeSpec("http://api.test:8080/items", method="post")

        response = await ExchangeEngine(spec, backend=mock_backend).send("payload")

        line, headers, body = parse_request(stream.written_data)
        assert line == "POST /items HTTP/1.1"
        assert headers["host"] == "api.test:8080"
        assert headers["content-type"] == "application/octet-stream"
        assert headers["content-length"] == "7"
        assert body == b"payload"
        assert response.status_code == 201
        assert response.reason_phrase == "Created"

    @pytest.mark.asyncio
    async def test_send_json(self, mock_backend, build_response):
        stream = mock_backend.add_stream("api.test", 80, build_response())
        spec = ExchangeSpec("http://api.test/items", method="PUT")

        await ExchangeEngine(spec, backend=mock_backend).send_json({"name": "pen", "note": None})

        _, headers, body = parse_request(stream.written_data)
        assert headers["content-type"] == "application/json"
        assert body == b'{"name":"pen"}'

    @pytest.mark.asyncio
    async def test_send_form(self, mock_backend, build_response):
        stream = mock_backend.add_stream("api.test", 80, build_response())
        spec = ExchangeSpec("http://api.test/search", method="POST")

        await ExchangeEngine(spec, backend=mock_backend).send_form({"q": "a b", "tag": ["x", "y"]})

        _, headers, body = parse_request(stream.written_data)
        assert headers["content-type"] == "application/x-www-form-urlencoded"
        assert body == b"q=a+b&tag=x&tag=y"

    @pytest.mark.asyncio
    async def test_content_type_precedence(self, mock_backend, build_response):
        first = mock_backend.add_stream("api.test", 80, build_response())
        second = mock_backend.add_stream("api.test", 80, build_response())
        spec = ExchangeSpec("http://api.test/", method="POST", content_type="text/csv")
        engine = ExchangeEngine(spec, backend=mock_backend)

        await engine.send(b"a,b")
        spec.headers["Content-Type"] = "text/tab-separated-values"
        await engine.send(b"a\tb")

        assert parse_request(first.written_data)[1]["content-type"] == "text/csv"
        assert parse_request(second.written_data)[1]["content-type"] == "text/tab-separated-values"

    @pytest.mark.asyncio
    async def test_send_stream_without_length(self, mock_backend, build_response, async_data_generator):
        stream = mock_backend.add_stream("api.test", 80, build_response())
        spec = ExchangeSpec("http://api.test/upload", method="POST")

        await ExchangeEngine(spec, backend=mock_backend).send_stream(
            async_data_generator([b"abc", b"de"])
        )

        _, headers, body = parse_request(stream.written_data)
        assert headers["transfer-encoding"] == "chunked"
        assert body == b"3\r\nabc\r\n2\r\nde\r\n0\r\n\r\n"

    @pytest.mark.asyncio
    async def test_basic_authorization(self, mock_backend, build_response):
        stream = mock_backend.add_stream("api.test", 80, build_response())
        spec = ExchangeSpec(
            "http://api.test/",
            headers=Headers({"Authorization": "Bearer stale"}),
            authorization=AuthorizationSpec(user="user", password="pass", bearer_token="ignored"),
        )

        await ExchangeEngine(spec, backend=mock_backend).send()

        assert parse_request(stream.written_data)[1]["authorization"] == "Basic dXNlcjpwYXNz"

    def test_invalid_spec(self):
        with pytest.raises(ConfigurationError):
            ExchangeEngine("http://api.test/")
        with pytest.raises(ConfigurationError):
            ExchangeSpec("ftp://api.test/")
        with pytest.raises(ConfigurationError):
            ExchangeSpec("http://api.test/", timeout=0)


class TestChunkedUpload:
    """Test buffered chunked uploads."""

    @pytest.mark.asyncio
    async def test_alpha_beta(self, mock_backend, build_response):
        stream = mock_backend.add_stream("api.test", 80, build_response(body=b"stored"))
        spec = ExchangeSpec("http://api.test/upload", method="POST", chunked_transfer=True)
        engine = ExchangeEngine(spec, backend=mock_backend)

        assert await engine.send_chunk("alpha") is None
        assert await engine.send_chunk(b"beta") is None
        assert engine.state is ExchangeState.BUFFERING
        assert mock_backend.connections == []

        response = await engine.send_chunk(None, is_final=True)

        _, headers, body = parse_request(stream.written_data)
        assert headers["transfer-encoding"] == "chunked"
        assert "content-length" not in headers
        assert body == b"5\r\nalpha\r\n4\r\nbeta\r\n0\r\n\r\n"
        assert await response.read_text() == "stored"
        assert engine.state is ExchangeState.COMPLETED

    @pytest.mark.asyncio
    async def test_chunk_after_completion(self, mock_backend, build_response):
        mock_backend.add_stream("api.test", 80, build_response())
        spec = ExchangeSpec("http://api.test/upload", method="POST", chunked_transfer=True)
        engine = ExchangeEngine(spec, backend=mock_backend)

        engine.append_chunk(b"only")
        await engine.complete_chunked()

        with pytest.raises(InvalidStateError):
            engine.append_chunk(b"late")
        with pytest.raises(InvalidStateError):
            await engine.complete_chunked()

    @pytest.mark.asyncio
    async def test_chunked_requires_flag(self, mock_backend):
        engine = ExchangeEngine(ExchangeSpec("http://api.test/", method="POST"), backend=mock_backend)
        with pytest.raises(InvalidStateError):
            engine.append_chunk(b"data")

    @pytest.mark.asyncio
    async def test_send_while_buffering(self, mock_backend):
        spec = ExchangeSpec("http://api.test/", method="POST", chunked_transfer=True)
        engine = ExchangeEngine(spec, backend=mock_backend)
        engine.append_chunk(b"data")

        with pytest.raises(InvalidStateError):
            await engine.send(b"other")

    @pytest.mark.asyncio
    async def test_aclose_abandons_upload(self, mock_backend):
        spec = ExchangeSpec("http://api.test/", method="POST", chunked_transfer=True)
        engine = ExchangeEngine(spec, backend=mock_backend)
        engine.append_chunk(b"never sent")

        await engine.aclose()

        assert engine.is_closed
        assert engine.state is ExchangeState.CANCELLED
        assert mock_backend.connections == []
        with pytest.raises(InvalidStateError):
            await engine.send()


class TestResponseBodies:
    """Test body classification end to end."""

    @pytest.mark.asyncio
    async def test_read_text_idempotent(self, mock_backend, build_response):
        mock_backend.add_stream(
            "api.test", 80, build_response(headers=[("Content-Type", "text/plain")], body=b"hello")
        )
        response = await ExchangeEngine(ExchangeSpec("http://api.test/"), backend=mock_backend).send()

        assert await response.read_text() == "hello"
        assert await response.read_text() == "hello"
        assert response.time.end is not None

    @pytest.mark.asyncio
    async def test_body_without_length_reads_to_close(self, mock_backend, build_response):
        mock_backend.add_stream("api.test", 80, build_response(body=b"until close", content_length=False))
        spec = ExchangeSpec("http://api.test/", buffer_size=4)
        response = await ExchangeEngine(spec, backend=mock_backend).send()

        assert response.content_length is None
        assert await response.read_bytes() == b"until close"

    @pytest.mark.asyncio
    async def test_chunked_response(self, mock_backend, build_response, chunked_body):
        mock_backend.add_stream(
            "api.test",
            80,
            build_response(headers=[("Transfer-Encoding", "chunked")], body=chunked_body(b"alpha", b"beta")),
        )
        response = await ExchangeEngine(ExchangeSpec("http://api.test/"), backend=mock_backend).send()

        assert response.chunked_transfer_encoding
        records = [record async for record in response.iter_chunks()]
        assert [(record.data, record.is_final) for record in records] == [
            (b"alpha", False),
            (b"beta", False),
            (b"", True),
        ]

    @pytest.mark.asyncio
    async def test_twenty_one_events(self, mock_backend, build_response):
        body = b"".join(f"data: Event {i}\n\n".encode() for i in range(20))
        body += b"data: Final event\n\n"
        mock_backend.add_stream(
            "stream.test",
            80,
            build_response(headers=[("Content-Type", "text/event-stream")], body=body, content_length=False),
        )
        spec = ExchangeSpec("http://stream.test/events", buffer_size=32)
        response = await ExchangeEngine(spec, backend=mock_backend).send()

        assert response.server_sent_events
        events = [event async for event in response.iter_events()]
        assert len(events) == 21
        assert events[0] == SseEvent(data="Event 0")
        assert events[19].data == "Event 19"
        assert events[-1].data == "Final event"
        assert response.closed

    @pytest.mark.asyncio
    async def test_events_over_chunked_response(self, mock_backend, build_response, chunked_body):
        body = chunked_body(b"data: one\n", b"\ndata: two\n\n")
        mock_backend.add_stream(
            "stream.test",
            80,
            build_response(
                headers=[("Content-Type", "text/event-stream"), ("Transfer-Encoding", "chunked")],
                body=body,
            ),
        )
        response = await ExchangeEngine(ExchangeSpec("http://stream.test/"), backend=mock_backend).send()

        assert [event.data async for event in response.iter_events()] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_head_response_has_no_body(self, mock_backend, build_response):
        stream = mock_backend.add_stream(
            "api.test", 80, build_response(headers=[("Content-Length", "1234")])
        )
        spec = ExchangeSpec("http://api.test/file", method="HEAD")
        response = await ExchangeEngine(spec, backend=mock_backend).send()

        assert response.has_body is False
        assert response.content_length == 1234
        assert await response.read_bytes() == b""
        assert stream.is_closed

    @pytest.mark.asyncio
    async def test_no_content_response(self, mock_backend, build_response):
        mock_backend.add_stream("api.test", 80, build_response(204, "No Content", content_length=False))
        spec = ExchangeSpec("http://api.test/items/1", method="DELETE")
        response = await ExchangeEngine(spec, backend=mock_backend).send()

        assert response.status_code == 204
        assert await response.read_bytes() == b""

    @pytest.mark.asyncio
    async def test_error_status_is_a_response(self, mock_backend, build_response):
        mock_backend.add_stream("api.test", 80, build_response(500, "Internal Server Error", body=b"oops"))
        engine = ExchangeEngine(ExchangeSpec("http://api.test/"), backend=mock_backend)

        response = await engine.send()

        assert response.status_code == 500
        assert not response.is_success
        assert engine.state is ExchangeState.COMPLETED

    @pytest.mark.asyncio
    async def test_sequential_sends(self, mock_backend, build_response):
        mock_backend.add_stream("api.test", 80, build_response(body=b"first"))
        mock_backend.add_stream("api.test", 80, build_response(body=b"second"))
        engine = ExchangeEngine(ExchangeSpec("http://api.test/"), backend=mock_backend)

        assert await (await engine.send()).read_text() == "first"
        assert await (await engine.send()).read_text() == "second"


class TestRedirects:
    """Test redirect handling."""

    @pytest.mark.asyncio
    async def test_see_other_switches_to_get(self, mock_backend, build_response):
        first = mock_backend.add_stream("api.test", 80, build_response(303, "See Other", [("Location", "/result")]))
        second = mock_backend.add_stream("api.test", 80, build_response(body=b"done"))
        spec = ExchangeSpec("http://api.test/submit", method="POST")

        response = await ExchangeEngine(spec, backend=mock_backend).send(b"form")

        assert parse_request(first.written_data)[0] == "POST /submit HTTP/1.1"
        line, headers, body = parse_request(second.written_data)
        assert line == "GET /result HTTP/1.1"
        assert "content-length" not in headers
        assert body == b""
        assert await response.read_text() == "done"
        assert first.is_closed

    @pytest.mark.asyncio
    async def test_temporary_redirect_replays_body(self, mock_backend, build_response):
        mock_backend.add_stream(
            "api.test", 80, build_response(307, "Temporary Redirect", [("Location", "http://api.test/v2")])
        )
        second = mock_backend.add_stream("api.test", 80, build_response())
        spec = ExchangeSpec("http://api.test/v1", method="POST")

        response = await ExchangeEngine(spec, backend=mock_backend).send(b"data")

        line, _, body = parse_request(second.written_data)
        assert line == "POST /v2 HTTP/1.1"
        assert body == b"data"
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_chunked_upload_replayed(self, mock_backend, build_response):
        mock_backend.add_stream("api.test", 80, build_response(308, "Permanent Redirect", [("Location", "/new")]))
        second = mock_backend.add_stream("api.test", 80, build_response())
        spec = ExchangeSpec("http://api.test/old", method="PUT", chunked_transfer=True)
        engine = ExchangeEngine(spec, backend=mock_backend)

        engine.append_chunk(b"abc")
        await engine.complete_chunked()

        assert parse_request(second.written_data)[2] == b"3\r\nabc\r\n0\r\n\r\n"

    @pytest.mark.asyncio
    async def test_streamed_body_not_replayed(self, mock_backend, build_response, async_data_generator):
        mock_backend.add_stream("api.test", 80, build_response(307, "Temporary Redirect", [("Location", "/v2")]))
        spec = ExchangeSpec("http://api.test/v1", method="POST")

        response = await ExchangeEngine(spec, backend=mock_backend).send_stream(
            async_data_generator([b"once"])
        )

        assert response.status_code == 307
        assert len(mock_backend.connections) == 1

    @pytest.mark.asyncio
    async def test_https_to_http_not_followed(self, mock_backend, build_response):
        mock_backend.add_stream(
            "secure.test", 443, build_response(302, "Found", [("Location", "http://secure.test/")])
        )
        spec = ExchangeSpec("https://secure.test/")

        response = await ExchangeEngine(spec, backend=mock_backend).send()

        assert response.status_code == 302
        assert len(mock_backend.connections) == 1
        assert mock_backend.connections[0]["tls"] is True

    @pytest.mark.asyncio
    async def test_authorization_dropped_across_origins(self, mock_backend, build_response):
        first = mock_backend.add_stream("api.test", 80, build_response(302, "Found", [("Location", "/same")]))
        second = mock_backend.add_stream(
            "api.test", 80, build_response(302, "Found", [("Location", "http://other.test/x")])
        )
        third = mock_backend.add_stream("other.test", 80, build_response())
        spec = ExchangeSpec("http://api.test/", authorization=AuthorizationSpec(bearer_token="secret"))

        await ExchangeEngine(spec, backend=mock_backend).send()

        assert parse_request(first.written_data)[1]["authorization"] == "Bearer secret"
        assert parse_request(second.written_data)[1]["authorization"] == "Bearer secret"
        _, headers, _ = parse_request(third.written_data)
        assert "authorization" not in headers
        assert headers["host"] == "other.test"

    @pytest.mark.asyncio
    async def test_auto_redirect_disabled(self, mock_backend, build_response):
        mock_backend.add_stream("api.test", 80, build_response(301, "Moved Permanently", [("Location", "/new")]))
        spec = ExchangeSpec("http://api.test/old", allow_auto_redirect=False)

        response = await ExchangeEngine(spec, backend=mock_backend).send()

        assert response.status_code == 301
        assert response.headers["location"] == "/new"
        assert len(mock_backend.connections) == 1

    @pytest.mark.asyncio
    async def test_redirect_limit(self, mock_backend, build_response):
        for _ in range(3):
            mock_backend.add_stream("api.test", 80, build_response(302, "Found", [("Location", "/loop")]))
        engine = ExchangeEngine(ExchangeSpec("http://api.test/loop"), backend=mock_backend, max_redirects=2)

        response = await engine.send()

        assert response.status_code == 302
        assert len(mock_backend.connections) == 3

    @pytest.mark.asyncio
    async def test_redirect_without_location(self, mock_backend, build_response):
        mock_backend.add_stream("api.test", 80, build_response(302, "Found"))
        response = await ExchangeEngine(ExchangeSpec("http://api.test/"), backend=mock_backend).send()
        assert response.status_code == 302


class TestFailures:
    """Test cancellation, timeouts and transport errors."""

    @pytest.mark.asyncio
    async def test_cancel_before_headers(self, mock_backend):
        stream = mock_backend.add_stream("slow.test", 80, stall_when_empty=True)
        engine = ExchangeEngine(ExchangeSpec("http://slow.test/"), backend=mock_backend)
        token = CancellationToken()
        token.cancel_after(0.01, "user gave up")

        with pytest.raises(ExchangeCancelledError) as exc_info:
            await engine.send(token=token)

        assert exc_info.value.reason == "user gave up"
        assert engine.state is ExchangeState.CANCELLED
        assert engine.time.end is not None
        assert stream.is_closed

    @pytest.mark.asyncio
    async def test_already_cancelled_token(self, mock_backend):
        engine = ExchangeEngine(ExchangeSpec("http://api.test/"), backend=mock_backend)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(ExchangeCancelledError):
            await engine.send(token=token)
        assert mock_backend.connections == []

    @pytest.mark.asyncio
    async def test_concurrent_send_rejected(self, mock_backend):
        mock_backend.add_stream("slow.test", 80, stall_when_empty=True)
        engine = ExchangeEngine(ExchangeSpec("http://slow.test/"), backend=mock_backend)
        token = CancellationToken()

        first = asyncio.ensure_future(engine.send(token=token))
        await asyncio.sleep(0)
        with pytest.raises(InvalidStateError):
            await engine.send()

        token.cancel()
        with pytest.raises(ExchangeCancelledError):
            await first

    @pytest.mark.asyncio
    async def test_timeout(self, mock_backend):
        mock_backend.add_stream("slow.test", 80, stall_when_empty=True)
        engine = ExchangeEngine(ExchangeSpec("http://slow.test/", timeout=0.05), backend=mock_backend)

        with pytest.raises(TimeoutError):
            await engine.send()
        assert engine.state is ExchangeState.FAILED
        assert engine.time.end is not None

    @pytest.mark.asyncio
    async def test_connect_refused(self, mock_backend):
        mock_backend.fail_connect("down.test", 80, ConnectionRefusedError("refused"))
        engine = ExchangeEngine(ExchangeSpec("http://down.test/"), backend=mock_backend)

        with pytest.raises(ConnectionError) as exc_info:
            await engine.send()
        assert isinstance(exc_info.value.cause, ConnectionRefusedError)
        assert exc_info.value.response is None
        assert engine.state is ExchangeState.FAILED

    @pytest.mark.asyncio
    async def test_malformed_response(self, mock_backend):
        mock_backend.add_stream("api.test", 80, b"garbage\r\n\r\n")
        engine = ExchangeEngine(ExchangeSpec("http://api.test/"), backend=mock_backend)

        with pytest.raises(ProtocolError):
            await engine.send()

    @pytest.mark.asyncio
    async def test_partial_response_on_write_failure(self, mock_backend, build_response):
        stream = mock_backend.add_stream(
            "api.test",
            80,
            build_response(413, "Payload Too Large", body=b"too big"),
            fail_writes_after=1000,
        )
        spec = ExchangeSpec("http://api.test/upload", method="POST")

        with pytest.raises(ConnectionError) as exc_info:
            await ExchangeEngine(spec, backend=mock_backend).send(b"x" * 100000)

        response = exc_info.value.response
        assert response is not None
        assert response.status_code == 413
        assert response.reason_phrase == "Payload Too Large"
        assert stream.is_closed
        assert await response.read_bytes() == b"too big"

    @pytest.mark.asyncio
    async def test_partial_response_body_without_length(self, mock_backend, build_response):
        """Body bytes that arrive before the write failure stay readable."""
        mock_backend.add_stream(
            "api.test",
            80,
            build_response(413, "Payload Too Large", body=b"body-too-large", content_length=False),
            fail_writes_after=200,
        )
        spec = ExchangeSpec("http://api.test/upload", method="POST")

        with pytest.raises(ConnectionError) as exc_info:
            await ExchangeEngine(spec, backend=mock_backend).send(b"x" * 100000)

        response = exc_info.value.response
        assert response.status_code == 413
        assert response.content_length is None
        assert await response.read_text() == "body-too-large"


class TestCertificates:
    """Test TLS policy."""

    @pytest.mark.asyncio
    async def test_bad_certificate_file(self, mock_backend, tmp_path):
        spec = ExchangeSpec("https://secure.test/", certificate_filename=str(tmp_path / "client.pem"))
        engine = ExchangeEngine(spec, backend=mock_backend)

        with pytest.raises(ConfigurationError):
            await engine.send()
        assert mock_backend.connections == []
        assert engine.state is ExchangeState.FAILED

    @pytest.mark.asyncio
    async def test_ignore_certificate_errors(self, mock_backend, build_response):
        mock_backend.add_stream("self-signed.test", 443, build_response())
        spec = ExchangeSpec("https://self-signed.test/", ignore_certificate_errors=True)

        await ExchangeEngine(spec, backend=mock_backend).send()

        context = mock_backend.connections[0]["ssl_context"]
        assert context.verify_mode == ssl.CERT_NONE
        assert context.check_hostname is False

    @pytest.mark.asyncio
    async def test_default_verification(self, mock_backend, build_response):
        mock_backend.add_stream("secure.test", 443, build_response())
        await ExchangeEngine(ExchangeSpec("https://secure.test/"), backend=mock_backend).send()

        assert mock_backend.connections[0]["ssl_context"].verify_mode == ssl.CERT_REQUIRED

    @pytest.mark.asyncio
    async def test_handshake_failure(self, mock_backend):
        mock_backend.fail_connect(
            "expired.test", 443, ssl.SSLCertVerificationError("certificate verify failed")
        )
        engine = ExchangeEngine(ExchangeSpec("https://expired.test/"), backend=mock_backend)

        with pytest.raises(ConnectionError) as exc_info:
            await engine.send()
        assert isinstance(exc_info.value.cause, ssl.SSLError)

    @pytest.mark.asyncio
    async def test_tls_connect_requires_context(self, mock_backend):
        """A TLS origin is never dialed in plain text."""
        engine = ExchangeEngine(ExchangeSpec("https://secure.test/"), backend=mock_backend)
        components = URLComponents.from_url("https://secure.test/")

        with pytest.raises(InvalidStateError):
            await engine._connect(components, None, 5.0, None)
        assert mock_backend.connections == []


class TestEngineLifecycle:
    """Test engine bookkeeping."""

    def test_repr(self, mock_backend):
        engine = ExchangeEngine(ExchangeSpec("http://api.test/items"), backend=mock_backend)
        assert repr(engine) == "<ExchangeEngine GET http://api.test/items [idle]>"

    @pytest.mark.asyncio
    async def test_spec_changes_between_sends(self, mock_backend, build_response):
        first = mock_backend.add_stream("api.test", 80, build_response())
        second = mock_backend.add_stream("api.test", 80, build_response())
        spec = ExchangeSpec("http://api.test/a")
        engine = ExchangeEngine(spec, backend=mock_backend)

        await engine.send()
        spec.url = "http://api.test/b"
        await engine.send()

        assert parse_request(first.written_data)[0] == "GET /a HTTP/1.1"
        assert parse_request(second.written_data)[0] == "GET /b HTTP/1.1"
