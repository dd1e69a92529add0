"""
Interception and caching engine: routing, strategies, and the partitioned store.
"""
from .core import (
    CacheEntry,
    Decision,
    PartitionHandle,
    PartitionRole,
    Request,
    Response,
    Strategy,
    request_key,
    service_unavailable,
)
from .store import CacheStore, InMemoryCacheStore, SQLiteCacheStore, create_store
from .routes import RouteClassifier, RouteRule, default_rules, is_static_asset
from .strategies import StrategyEngine

__all__ = [
    # Core types
    "CacheEntry",
    "Decision",
    "PartitionHandle",
    "PartitionRole",
    "Request",
    "Response",
    "Strategy",
    "request_key",
    "service_unavailable",
    # Store
    "CacheStore",
    "InMemoryCacheStore",
    "SQLiteCacheStore",
    "create_store",
    # Routing
    "RouteClassifier",
    "RouteRule",
    "default_rules",
    "is_static_asset",
    # Strategies
    "StrategyEngine",
]
