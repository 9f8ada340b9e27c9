"""
Authorization header resolution for rest_exchange.
"""

import base64
from dataclasses import dataclass
from typing import Optional


@dataclass
class AuthorizationSpec:
    """
    Authorization header options.

    Exactly one source resolves per request, in this order:
    user/password (Basic) > bearer token (Bearer) > raw header value.
    Resolution happens at dispatch time through ``header_value()``.
    """

    user: Optional[str] = None
    password: Optional[str] = None
    bearer_token: Optional[str] = None
    raw: Optional[str] = None
    encode_credentials: bool = True

    def header_value(self) -> Optional[str]:
        """
        Build the Authorization header value.

        Returns:
            The header value, or None if no credentials are set
        """
        if self.user:
            credentials = f"{self.user}:{self.password or ''}"
            if self.encode_credentials:
                encoded = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
                return f"Basic {encoded}"
            return f"Basic {credentials}"

        if self.bearer_token:
            return f"Bearer {self.bearer_token}"

        if self.raw:
            return self.raw

        return None

    @property
    def scheme(self) -> Optional[str]:
        """Name of the source that resolves: "basic", "bearer", "raw" or None."""
        if self.user:
            return "basic"
        if self.bearer_token:
            return "bearer"
        if self.raw:
            return "raw"
        return None

    def __repr__(self) -> str:
        return (
            f"AuthorizationSpec(user={self.user!r}, "
            f"password={'(set)' if self.password else None}, "
            f"bearer_token={'(set)' if self.bearer_token else None}, "
            f"raw={'(set)' if self.raw else None}, "
            f"encode_credentials={self.encode_credentials})"
        )
