"""
Core cache data structures.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Protocol
from enum import Enum
from urllib.parse import urlsplit


class Strategy(Enum):
    """How an intercepted request is served."""
    BYPASS = "bypass"                                  # Not intercepted at all
    CACHE_FIRST = "cache_first"                        # Immutable assets
    NETWORK_FIRST = "network_first"                    # Documents, API calls
    STALE_WHILE_REVALIDATE = "stale_while_revalidate"  # Semi-volatile framework assets


class PartitionRole(Enum):
    """Logical role of a cache partition."""
    STATIC = "static"
    DYNAMIC = "dynamic"


@dataclass(frozen=True)
class Request:
    """An outgoing request seen by the worker."""
    url: str  # Absolute URL
    method: str = "GET"
    navigate: bool = False  # Full-page load
    headers: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)
    body: bytes = field(default=b"", compare=False)

    @property
    def key(self) -> str:
        """Normalized request identity used as the cache key."""
        return request_key(self.method, self.url)

    @property
    def scheme(self) -> str:
        return urlsplit(self.url).scheme.lower()

    @property
    def origin(self) -> str:
        parts = urlsplit(self.url)
        return f"{parts.scheme.lower()}://{parts.netloc.lower()}"

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"


@dataclass(frozen=True)
class Response:
    """Immutable snapshot of a response."""
    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)
    status_text: str = ""
    synthetic: bool = field(default=False, compare=False)

    @property
    def ok(self) -> bool:
        """True for statuses in the 2xx range; gates caching."""
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class Network(Protocol):
    """
    Network fetch interface.

    Returns a Response for any HTTP status and raises NetworkError only when
    the request is rejected outright.
    """

    def fetch(self, request: Request) -> Response:
        ...


@dataclass(frozen=True)
class CacheEntry:
    """A stored response plus the store-assigned write time."""
    key: str
    response: Response
    stored_at: datetime

    @property
    def age_seconds(self) -> float:
        """Seconds since the entry was written."""
        return (datetime.utcnow() - self.stored_at).total_seconds()


@dataclass(frozen=True)
class PartitionHandle:
    """Reference to an opened partition."""
    name: str


@dataclass(frozen=True)
class Decision:
    """Routing result: which strategy serves a request, against which partition."""
    strategy: Strategy
    role: Optional[PartitionRole] = None

    @property
    def intercepted(self) -> bool:
        return self.strategy is not Strategy.BYPASS


BYPASS = Decision(Strategy.BYPASS)

OFFLINE_BODY = "Offline"
UNAVAILABLE_BODY = "Resource not available offline"


def request_key(method: str, url: str) -> str:
    """Build the cache key for a method and absolute URL."""
    parts = urlsplit(url)
    # Fragments never reach the network
    normalized = parts._replace(
        scheme=parts.scheme.lower(),
        netloc=parts.netloc.lower(),
        path=parts.path or "/",
        fragment="",
    ).geturl()
    return f"{method.upper()} {normalized}"


def service_unavailable(message: str) -> Response:
    """Synthetic 503 returned when no content can be produced."""
    return Response(
        status=503,
        body=message.encode("utf-8"),
        headers={"Content-Type": "text/plain"},
        status_text="Service Unavailable",
        synthetic=True,
    )
