"""
Network backend interface for rest_exchange.

This module defines the NetworkBackend interface that opens the
connections an exchange runs over.
"""

import ssl
from abc import ABC, abstractmethod
from typing import Optional

from .stream import NetworkStream


class NetworkBackend(ABC):
    """
    Interface for network backend implementations.

    A backend opens plain TCP or TLS connections. It owns no pool: every
    call returns a fresh stream that the caller closes.
    """

    @abstractmethod
    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
    ) -> NetworkStream:
        """
        Connect to a TCP endpoint.

        Args:
            host: The hostname or IP address to connect to.
            port: The port number to connect to.
            timeout: Optional timeout in seconds for the connection.

        Raises:
            OSError: If the connection fails.
            asyncio.TimeoutError: If the connection times out.
        """

    @abstractmethod
    async def connect_tls(
        self,
        host: str,
        port: int,
        ssl_context: ssl.SSLContext,
        timeout: Optional[float] = None,
    ) -> NetworkStream:
        """
        Connect to a TCP endpoint and complete a TLS handshake.

        Args:
            host: The hostname, also used for SNI and certificate checks.
            port: The port number to connect to.
            ssl_context: Trust policy and client certificate to use.
            timeout: Optional timeout in seconds for connect plus handshake.

        Raises:
            OSError: If the connection fails.
            ssl.SSLError: If the TLS handshake fails.
            asyncio.TimeoutError: If the handshake times out.
        """
