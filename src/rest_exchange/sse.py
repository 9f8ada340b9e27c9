"""
Server-Sent Events decoding for rest_exchange.

Reads a ``text/event-stream`` body line by line and reassembles the
``event``/``data``/``id``/``retry`` fields into SseEvent records, one
record per ``read_next_event()`` call.
"""

import logging
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Union

from .cancellation import CancellationToken
from .chunked import ChunkedPayloadStream
from .exceptions import ExchangeCancelledError, ExchangeError
from .streams import ResponseStream

logger = logging.getLogger(__name__)

LineSource = Union[ResponseStream, ChunkedPayloadStream]


@dataclass
class SseEvent:
    """One server-sent event. ``retry`` is the reconnection time in milliseconds."""

    data: str = ""
    event: Optional[str] = None
    id: Optional[str] = None
    retry: Optional[int] = None


class SseReader:
    """
    Incremental decoder for an event stream.

    An event is emitted at a blank line once ``event`` or at least one
    ``data`` line has been seen. At end of stream a pending event is
    emitted; after that every call returns None.
    """

    def __init__(self, source: LineSource) -> None:
        self._source = source
        self._done = False
        self._events_read = 0

    @property
    def events_read(self) -> int:
        return self._events_read

    async def read_next_event(
        self, token: Optional[CancellationToken] = None
    ) -> Optional[SseEvent]:
        """
        Decode the next event.

        Returns:
            The next SseEvent, or None at end of stream

        Raises:
            ExchangeCancelledError: If ``token`` fires
        """
        if self._done:
            return None

        try:
            if token is not None:
                token.raise_if_cancelled()
            event = await self._read_event(token)
        except (ExchangeError, ExchangeCancelledError):
            await self.aclose()
            raise

        if event is None:
            await self.aclose()
        else:
            self._events_read += 1
        return event

    async def _read_event(self, token: Optional[CancellationToken]) -> Optional[SseEvent]:
        event = SseEvent()
        data_lines: List[str] = []

        while True:
            raw = await self._source.readline(token)
            if not raw:
                break

            line = raw.decode("utf-8", errors="replace")
            if line.endswith("\n"):
                line = line[:-1]
            if line.endswith("\r"):
                line = line[:-1]

            if not line:
                if data_lines or event.event is not None:
                    event.data = "\n".join(data_lines)
                    return event
                continue

            if line.startswith(":"):
                continue

            field, sep, value = line.partition(":")
            if not sep:
                continue
            if value.startswith(" "):
                value = value[1:]

            if field == "event":
                event.event = value
            elif field == "data":
                data_lines.append(value)
            elif field == "id":
                event.id = value
            elif field == "retry":
                if value.isascii() and value.isdigit():
                    event.retry = int(value)
                else:
                    logger.debug(f"Ignoring non-numeric retry value: {value!r}")

        if data_lines or event.event is not None:
            event.data = "\n".join(data_lines)
            return event
        return None

    def __aiter__(self) -> AsyncIterator[SseEvent]:
        return self

    async def __anext__(self) -> SseEvent:
        event = await self.read_next_event()
        if event is None:
            raise StopAsyncIteration
        return event

    async def aclose(self) -> None:
        self._done = True
        await self._source.aclose()
