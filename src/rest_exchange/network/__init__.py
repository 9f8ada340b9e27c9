"""
Network backend components for rest_exchange.

This module provides the low-level networking abstractions:
backends that open connections and the streams they return.
"""

from .backend import NetworkBackend
from .stream import NetworkStream
from .asyncio_backend import AsyncIONetworkBackend, AsyncIONetworkStream
from .mock import MockNetworkBackend, MockNetworkStream
from .utils import create_ssl_context, format_host_header

__all__ = [
    "NetworkBackend",
    "NetworkStream",
    "AsyncIONetworkBackend",
    "AsyncIONetworkStream",
    "MockNetworkBackend",
    "MockNetworkStream",
    "create_ssl_context",
    "format_host_header",
]
