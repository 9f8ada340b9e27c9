"""
Network utilities for rest_exchange.

This module provides TLS context construction (trust policy plus client
certificate) and Host header formatting.
"""

import ssl
from typing import List, Optional

from ..exceptions import ConfigurationError


def create_ssl_context(
    verify: bool = True,
    cert_file: Optional[str] = None,
    key_file: Optional[str] = None,
    cert_password: Optional[str] = None,
    alpn_protocols: Optional[List[str]] = None,
) -> ssl.SSLContext:
    """
    Create an SSL context for an outbound exchange.

    Args:
        verify: Validate the server certificate and hostname. False
                installs the accept-all policy.
        cert_file: Client certificate (PEM, optionally including the key)
        key_file: Separate private key file, if not inside cert_file
        cert_password: Password protecting the private key
        alpn_protocols: Optional list of ALPN protocols to negotiate

    Returns:
        Configured SSL context

    Raises:
        ConfigurationError: If the client certificate cannot be loaded
    """
    context = ssl.create_default_context()

    if not verify:
        # check_hostname must be cleared before verify_mode can drop to CERT_NONE
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    context.set_alpn_protocols(alpn_protocols or ["http/1.1"])

    context.options |= ssl.OP_NO_COMPRESSION
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    if cert_file:
        try:
            context.load_cert_chain(cert_file, keyfile=key_file, password=cert_password)
        except (OSError, ssl.SSLError) as e:
            raise ConfigurationError(
                f"unable to load client certificate {cert_file!r}: {e}", e
            ) from e

    return context


def format_host_header(host: str, port: int, scheme: str) -> str:
    """
    Format the Host header for an HTTP request.

    Default ports are omitted; IPv6 literals are bracketed.
    """
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    if (scheme == "https" and port == 443) or (scheme == "http" and port == 80):
        return host
    return f"{host}:{port}"
