"""
HTTP primitives for rest_exchange.

This module defines the core data structures for describing an exchange:
methods, the case-insensitive header multimap, URL components, the
caller-owned ExchangeSpec and operation timestamps.
"""

import copy
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Iterable,
    Iterator,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Tuple,
    Union,
)
from urllib.parse import unquote_plus, urlsplit

from .auth import AuthorizationSpec
from .exceptions import ConfigurationError


# Type aliases for better readability
RawHeaders = List[Tuple[bytes, bytes]]
HeaderValue = Union[str, bytes]
HeaderSource = Union["Headers", Mapping[str, str], Iterable[Tuple[HeaderValue, HeaderValue]]]

DEFAULT_TIMEOUT = 60.0
DEFAULT_BUFFER_SIZE = 65536
DEFAULT_USER_AGENT = "rest_exchange/0.1.0"


class HttpMethod(str, Enum):
    """HTTP methods, i.e. GET, PUT, POST, DELETE, etc."""

    GET = "GET"
    HEAD = "HEAD"
    PUT = "PUT"
    POST = "POST"
    DELETE = "DELETE"
    PATCH = "PATCH"
    CONNECT = "CONNECT"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"

    @classmethod
    def parse(cls, value: Union["HttpMethod", str, bytes]) -> "HttpMethod":
        """Convert a method name (any case) to HttpMethod."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bytes):
            value = value.decode("ascii", errors="replace")
        if not isinstance(value, str):
            raise ConfigurationError(f"invalid method: {value!r}")
        try:
            return cls(value.strip().upper())
        except ValueError as e:
            raise ConfigurationError(f"invalid method: {value!r}", e) from e

    @property
    def suppresses_body(self) -> bool:
        """GET and HEAD never transmit a request body."""
        return self in (HttpMethod.GET, HttpMethod.HEAD)


def _to_text(value: HeaderValue) -> str:
    if isinstance(value, bytes):
        return value.decode("latin-1")
    return str(value)


class Headers:
    """
    Ordered header multimap with case-insensitive names.

    Assignment replaces every value stored under a name (last write wins);
    ``add`` appends another value for the same name.
    """

    def __init__(self, source: Optional[HeaderSource] = None) -> None:
        self._items: List[Tuple[str, str]] = []
        if source is None:
            return
        if isinstance(source, (Headers, Mapping)):
            pairs: Iterable[Tuple[HeaderValue, HeaderValue]] = source.items()
        else:
            pairs = source
        for name, value in pairs:
            self.add(name, value)

    @classmethod
    def from_raw(cls, raw: Iterable[Tuple[bytes, bytes]]) -> "Headers":
        """Build from (name, value) bytes pairs as produced by h11."""
        return cls(raw)

    def add(self, name: HeaderValue, value: HeaderValue) -> None:
        self._items.append((_to_text(name), _to_text(value)))

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return the values for ``name`` joined with ", ", or ``default``."""
        values = self.get_all(name)
        if not values:
            return default
        return ", ".join(values)

    def get_all(self, name: str) -> List[str]:
        key = name.lower()
        return [value for item_name, value in self._items if item_name.lower() == key]

    def items(self) -> List[Tuple[str, str]]:
        return list(self._items)

    def keys(self) -> List[str]:
        """Distinct names in first-seen order."""
        seen = set()
        names = []
        for name, _ in self._items:
            if name.lower() not in seen:
                seen.add(name.lower())
                names.append(name)
        return names

    def to_list(self) -> RawHeaders:
        """Encode as (name, value) bytes pairs for the wire."""
        return [
            (name.encode("latin-1"), value.encode("utf-8"))
            for name, value in self._items
        ]

    def copy(self) -> "Headers":
        return Headers(self._items)

    def __setitem__(self, name: str, value: HeaderValue) -> None:
        key = name.lower()
        self._items = [item for item in self._items if item[0].lower() != key]
        self._items.append((name, _to_text(value)))

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(name)
        return value

    def __delitem__(self, name: str) -> None:
        key = name.lower()
        remaining = [item for item in self._items if item[0].lower() != key]
        if len(remaining) == len(self._items):
            raise KeyError(name)
        self._items = remaining

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        key = name.lower()
        return any(item_name.lower() == key for item_name, _ in self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Headers):
            return NotImplemented
        return self._normalized() == other._normalized()

    def _normalized(self) -> List[Tuple[str, str]]:
        return sorted((name.lower(), value) for name, value in self._items)

    def __repr__(self) -> str:
        return f"Headers({self._items!r})"


class URLComponents(NamedTuple):
    """Immutable representation of URL components."""
    scheme: str
    host: str
    port: int
    target: str

    @classmethod
    def from_url(cls, url: str) -> "URLComponents":
        """
        Create URLComponents from a URL string.

        Raises:
            ConfigurationError: If the URL is not an absolute http(s) URL
        """
        if not url:
            raise ConfigurationError("url is required")
        try:
            parsed = urlsplit(url)
            port = parsed.port
        except ValueError as e:
            raise ConfigurationError(f"malformed url: {url!r}", e) from e

        scheme = parsed.scheme.lower()
        if scheme not in ("http", "https"):
            raise ConfigurationError(f"unsupported url scheme: {parsed.scheme!r}")
        if not parsed.hostname:
            raise ConfigurationError(f"no hostname found in url: {url!r}")

        target = parsed.path or "/"
        if parsed.query:
            target += "?" + parsed.query

        return cls(
            scheme=scheme,
            host=parsed.hostname,
            port=port or (443 if scheme == "https" else 80),
            target=target,
        )

    @property
    def is_tls(self) -> bool:
        return self.scheme == "https"

    @property
    def origin(self) -> Tuple[str, str, int]:
        return (self.scheme, self.host, self.port)


@dataclass
class ExchangeSpec:
    """
    Caller-owned description of one exchange.

    The spec stays mutable until dispatch. The engine only ever reads a
    validated ``snapshot()`` and never writes back to this object.
    """

    url: str
    method: Union[HttpMethod, str] = HttpMethod.GET
    headers: Headers = field(default_factory=Headers)
    content_type: Optional[str] = None
    authorization: AuthorizationSpec = field(default_factory=AuthorizationSpec)
    ignore_certificate_errors: bool = False
    certificate_filename: Optional[str] = None
    certificate_password: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    allow_auto_redirect: bool = True
    chunked_transfer: bool = False
    buffer_size: int = DEFAULT_BUFFER_SIZE
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self) -> None:
        if not isinstance(self.headers, Headers):
            self.headers = Headers(self.headers)
        if self.authorization is None:
            self.authorization = AuthorizationSpec()
        self.validate()

    def validate(self) -> None:
        """
        Check every field and normalize the method.

        Raises:
            ConfigurationError: On the first invalid field
        """
        self.method = HttpMethod.parse(self.method)
        URLComponents.from_url(self.url)

        if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)):
            raise ConfigurationError(f"timeout must be a number of seconds, got {self.timeout!r}")
        if self.timeout <= 0:
            raise ConfigurationError(f"timeout must be greater than zero, got {self.timeout}")

        if isinstance(self.buffer_size, bool) or not isinstance(self.buffer_size, int):
            raise ConfigurationError(f"buffer_size must be an integer, got {self.buffer_size!r}")
        if self.buffer_size < 1:
            raise ConfigurationError("buffer_size must be at least one byte")

    def snapshot(self) -> "ExchangeSpec":
        """Return a validated deep copy that dispatch can read safely."""
        snapshot = copy.deepcopy(self)
        snapshot.validate()
        return snapshot

    @property
    def url_components(self) -> URLComponents:
        return URLComponents.from_url(self.url)

    @property
    def query(self) -> List[Tuple[str, Optional[str]]]:
        """Query string parameters; a key without ``=`` maps to None."""
        query = urlsplit(self.url).query
        params: List[Tuple[str, Optional[str]]] = []
        for element in query.split("&"):
            if not element:
                continue
            if "=" in element:
                key, value = element.split("=", 1)
                params.append((unquote_plus(key), unquote_plus(value)))
            else:
                params.append((unquote_plus(element), None))
        return params

    def describe(self) -> str:
        """Human-readable summary with secrets masked."""
        auth = self.authorization
        lines = [
            "REST Request",
            f"  Method             : {HttpMethod.parse(self.method).value}",
            f"  URL                : {self.url}",
            "  Authorization",
            f"    User             : {auth.user or ''}",
            f"    Password         : {'(set)' if auth.password else ''}",
            f"    Encode           : {auth.encode_credentials}",
            f"    Bearer Token     : {'(set)' if auth.bearer_token else ''}",
            f"  Content Type       : {self.content_type or ''}",
            f"  Certificate File   : {self.certificate_filename or ''}",
            f"  Certificate Pass   : {'(set)' if self.certificate_password else ''}",
            f"  Auto Redirect      : {self.allow_auto_redirect}",
            f"  Chunked Transfer   : {self.chunked_transfer}",
            f"  Timeout            : {self.timeout}s",
        ]
        if self.headers:
            lines.append("  Headers")
            for name, value in self.headers.items():
                lines.append(f"    {name}: {value}")
        return "\n".join(lines) + "\n"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Timestamp:
    """Start, end and elapsed time of one operation."""

    start: datetime = field(default_factory=_utcnow)
    end: Optional[datetime] = None
    _started: float = field(default_factory=time.perf_counter, repr=False)
    _stopped: Optional[float] = field(default=None, repr=False)

    def stop(self) -> None:
        self.end = _utcnow()
        self._stopped = time.perf_counter()

    @property
    def total_ms(self) -> float:
        """Elapsed milliseconds, up to now if the operation is still running."""
        stopped = self._stopped if self._stopped is not None else time.perf_counter()
        return (stopped - self._started) * 1000.0
