"""
Custom exceptions for rest_exchange.

This module defines the exception hierarchy used throughout
the library for error handling and debugging.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .response import ResponseEnvelope


class ExchangeError(Exception):
    """Base exception for all rest_exchange errors."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class ConfigurationError(ExchangeError):
    """Raised when an exchange is misconfigured, before any network activity."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Configuration error: {message}", cause)


class TransportError(ExchangeError):
    """
    Base class for failed exchanges at the network level.

    When the server managed to send a response head before the
    failure, ``response`` holds the partially-populated envelope.
    """

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        response: Optional["ResponseEnvelope"] = None,
    ) -> None:
        super().__init__(message, cause)
        self.response = response


class ConnectionError(TransportError):
    """Raised when there's an error with network connections."""

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        response: Optional["ResponseEnvelope"] = None,
    ) -> None:
        super().__init__(f"Connection error: {message}", cause, response)


class ProtocolError(TransportError):
    """Raised when the response head violates HTTP/1.1."""

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        response: Optional["ResponseEnvelope"] = None,
    ) -> None:
        super().__init__(f"Protocol error: {message}", cause, response)


class TimeoutError(TransportError):
    """Raised when an operation times out."""

    def __init__(self, message: str, timeout: Optional[float] = None) -> None:
        if timeout is not None:
            message = f"{message} (timeout: {timeout}s)"
        super().__init__(f"Timeout error: {message}")
        self.timeout = timeout


class FramingError(ExchangeError):
    """Raised when a body framing (chunk size, delimiter) is malformed."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Framing error: {message}", cause)


class IncompleteDataError(FramingError):
    """Raised when the stream ends before a complete frame was read."""

    def __init__(self, expected: int, received: int, what: str = "chunk data") -> None:
        super().__init__(
            f"expected {expected} bytes of {what}, stream ended after {received}"
        )
        self.expected = expected
        self.received = received


class StreamError(ExchangeError):
    """Raised when there's an error with stream operations."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Stream error: {message}", cause)


class InvalidStateError(ExchangeError):
    """Raised when an operation is not allowed in the current state."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Invalid state: {message}")


class ExchangeCancelledError(Exception):
    """
    Raised when a cancellation token fires at a suspension point.

    Not a subclass of ExchangeError: cancellation is a separate
    outcome from failure.
    """

    def __init__(self, reason: Optional[str] = None) -> None:
        message = "Exchange cancelled"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.reason = reason
