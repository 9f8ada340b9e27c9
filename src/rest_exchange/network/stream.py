"""
Network stream interface for rest_exchange.

This module defines the NetworkStream interface that every transport
used by HTTP11Connection must follow.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class NetworkStream(ABC):
    """
    Interface for a connected byte stream with async I/O operations.

    One stream carries exactly one exchange; it is closed once the
    response body is drained, the caller disposes the response, or the
    exchange fails or is cancelled.
    """

    @abstractmethod
    async def read(self, max_bytes: Optional[int] = None) -> bytes:
        """
        Read up to ``max_bytes`` from the stream.

        Returns:
            The data read; ``b""`` once the peer closed its side.

        Raises:
            RuntimeError: If the stream is closed.
            OSError: If a network error occurs.
        """

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """
        Write data to the stream and wait until it is flushed.

        Raises:
            RuntimeError: If the stream is closed.
            OSError: If a network error occurs.
        """

    @abstractmethod
    async def aclose(self) -> None:
        """Close the stream. Closing twice is a no-op."""

    @abstractmethod
    def get_extra_info(self, name: str) -> Optional[Any]:
        """
        Get extra information about the stream.

        Common names: "peername", "sockname", "ssl_object".
        """

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """Check if the stream is closed."""
