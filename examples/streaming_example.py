"""
Example usage of rest_exchange.

This example runs a chunked upload, a server-sent events download and a
cancelled exchange against a scripted MockNetworkBackend, so it works
without network access. Pass ``--live URL`` to fetch a real URL instead.
"""

import asyncio
import logging
import sys

from rest_exchange import (
    CancellationToken,
    ExchangeCancelledError,
    ExchangeEngine,
    ExchangeSpec,
)
from rest_exchange.network import MockNetworkBackend

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def scripted_response(headers: str, body: bytes) -> bytes:
    return f"HTTP/1.1 200 OK\r\n{headers}\r\n\r\n".encode("latin-1") + body


async def chunked_upload_example(backend: MockNetworkBackend) -> None:
    """Buffer two chunks and send them in one chunked request."""
    logger.info("=== Chunked Upload Example ===")
    stream = backend.add_stream(
        "api.example.com", 80, scripted_response("Content-Length: 2", b"ok")
    )
    spec = ExchangeSpec("http://api.example.com/upload", method="POST", chunked_transfer=True)

    async with ExchangeEngine(spec, backend=backend) as engine:
        engine.append_chunk("alpha")
        engine.append_chunk(b"beta")
        response = await engine.complete_chunked()
        logger.info(f"Response: {response.status_code} {await response.read_text()!r}")

    body = stream.written_data.partition(b"\r\n\r\n")[2]
    logger.info(f"Bytes on the wire: {body!r}")


async def server_sent_events_example(backend: MockNetworkBackend) -> None:
    """Read an event stream one event at a time."""
    logger.info("=== Server-Sent Events Example ===")
    events = b"".join(f"id: {i}\ndata: Event {i}\n\n".encode() for i in range(5))
    backend.add_stream(
        "events.example.com",
        80,
        scripted_response("Content-Type: text/event-stream", b":keepalive\n\n" + events),
    )

    async with ExchangeEngine(ExchangeSpec("http://events.example.com/feed"), backend=backend) as engine:
        response = await engine.send()
        async with response:
            async for event in response.iter_events():
                logger.info(f"Event id={event.id} data={event.data!r}")


async def cancellation_example(backend: MockNetworkBackend) -> None:
    """Give up on a server that never answers."""
    logger.info("=== Cancellation Example ===")
    backend.add_stream("slow.example.com", 80, stall_when_empty=True)
    token = CancellationToken()
    token.cancel_after(0.1, "took too long")

    engine = ExchangeEngine(ExchangeSpec("http://slow.example.com/"), backend=backend)
    try:
        await engine.send(token=token)
    except ExchangeCancelledError as e:
        logger.info(f"{e} (engine state: {engine.state.value})")


async def live_example(url: str) -> None:
    """Fetch a real URL with the default asyncio backend."""
    async with ExchangeEngine(ExchangeSpec(url, timeout=10.0)) as engine:
        response = await engine.send()
        print(response.describe())
        if response.body_mode == "standard":
            text = await response.read_text()
            logger.info(f"Body: {len(text)} characters")
        else:
            await response.aclose()


async def main() -> None:
    if len(sys.argv) == 3 and sys.argv[1] == "--live":
        await live_example(sys.argv[2])
        return

    backend = MockNetworkBackend()
    await chunked_upload_example(backend)
    await server_sent_events_example(backend)
    await cancellation_example(backend)


if __name__ == "__main__":
    asyncio.run(main())
