"""
Request-to-strategy routing.

Rules are evaluated top-to-bottom; the first matching rule decides.
"""
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

from .core import BYPASS, Decision, PartitionRole, Request, Strategy


# Read-only retrieval methods the worker will serve
RETRIEVAL_METHODS = ("GET",)

# Schemes that reach the network
NETWORK_SCHEMES = ("http", "https")

DEFAULT_STATIC_EXTENSIONS = (
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".ico",
    ".woff", ".woff2", ".ttf", ".eot",
    ".css", ".js", ".webmanifest", ".json",
)


@dataclass(frozen=True)
class RouteRule:
    """Predicate -> decision assignment."""
    name: str
    predicate: Callable[[Request], bool]
    decision: Decision

    def matches(self, request: Request) -> bool:
        return self.predicate(request)


def is_static_asset(path: str, extensions: Iterable[str] = DEFAULT_STATIC_EXTENSIONS) -> bool:
    """Check whether a path ends with a static asset extension."""
    return any(path.endswith(ext) for ext in extensions)


def _under_prefix(path: str, prefix: str, base_path: str) -> bool:
    """True if path is under prefix, either at the root or below base_path."""
    if path.startswith(prefix):
        return True
    base = base_path.rstrip("/")
    return bool(base) and path.startswith(base + prefix)


def default_rules(
    origin: str,
    base_path: str = "",
    static_extensions: Sequence[str] = DEFAULT_STATIC_EXTENSIONS,
    sounds_prefix: str = "/sounds/",
    framework_static_prefix: str = "/_next/static/",
    framework_prefix: str = "/_next/",
) -> List[RouteRule]:
    """
    Build the standard rule table.

    Args:
        origin: The worker's own origin (scheme://host[:port])
        base_path: Deployment base path; prefixes also match beneath it
        static_extensions: Path suffixes served cache-first from the static partition
        sounds_prefix: Reserved prefix for sound files
        framework_static_prefix: Framework prefix whose assets never change
        framework_prefix: Broader framework prefix

    Returns:
        Ordered rules, highest priority first
    """
    own_origin = origin.rstrip("/").lower()
    extensions = tuple(static_extensions)

    return [
        RouteRule(
            "non-retrieval-method",
            lambda r: r.method.upper() not in RETRIEVAL_METHODS,
            BYPASS,
        ),
        RouteRule(
            "foreign-target",
            lambda r: r.scheme not in NETWORK_SCHEMES or r.origin != own_origin,
            BYPASS,
        ),
        RouteRule(
            "navigation",
            lambda r: r.navigate,
            Decision(Strategy.NETWORK_FIRST, PartitionRole.DYNAMIC),
        ),
        RouteRule(
            "static-asset",
            lambda r: is_static_asset(r.path, extensions),
            Decision(Strategy.CACHE_FIRST, PartitionRole.STATIC),
        ),
        RouteRule(
            "sounds",
            lambda r: _under_prefix(r.path, sounds_prefix, base_path),
            Decision(Strategy.CACHE_FIRST, PartitionRole.DYNAMIC),
        ),
        RouteRule(
            "framework-immutable",
            lambda r: _under_prefix(r.path, framework_static_prefix, base_path),
            Decision(Strategy.CACHE_FIRST, PartitionRole.DYNAMIC),
        ),
        RouteRule(
            "framework",
            lambda r: _under_prefix(r.path, framework_prefix, base_path),
            Decision(Strategy.STALE_WHILE_REVALIDATE, PartitionRole.DYNAMIC),
        ),
    ]


# Used when no rule matches
DEFAULT_DECISION = Decision(Strategy.NETWORK_FIRST, PartitionRole.DYNAMIC)


class RouteClassifier:
    """
    Maps a request to a (strategy, partition role) decision.

    Pure and synchronous: no I/O, no store access.
    """

    def __init__(
        self,
        rules: List[RouteRule],
        default: Decision = DEFAULT_DECISION,
    ):
        self._rules = list(rules)
        self._default = default

    @classmethod
    def from_settings(cls, settings) -> "RouteClassifier":
        """Build the standard classifier from worker settings."""
        return cls(
            default_rules(
                origin=settings.origin,
                base_path=settings.base_path,
                static_extensions=settings.static_extensions,
                sounds_prefix=settings.sounds_prefix,
                framework_static_prefix=settings.framework_static_prefix,
                framework_prefix=settings.framework_prefix,
            )
        )

    @property
    def rules(self) -> List[RouteRule]:
        return list(self._rules)

    def match_rule(self, request: Request) -> Optional[RouteRule]:
        """The first rule matching the request, if any."""
        for rule in self._rules:
            if rule.matches(request):
                return rule
        return None

    def classify(self, request: Request) -> Decision:
        rule = self.match_rule(request)
        return rule.decision if rule else self._default
