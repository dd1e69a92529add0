"""
Fetch/caching strategies: cache-first, network-first, stale-while-revalidate.
"""
import threading
import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Dict, Mapping, Optional, Set

from offline_worker.exceptions import NetworkError, StoreUnavailableError
from .core import (
    CacheEntry,
    Decision,
    Network,
    OFFLINE_BODY,
    PartitionHandle,
    PartitionRole,
    Request,
    Response,
    Strategy,
    UNAVAILABLE_BODY,
    request_key,
    service_unavailable,
)
from .store import CacheStore

logger = logging.getLogger("cache.strategies")


class StrategyEngine:
    """
    Serves intercepted requests against a CacheStore and the network.

    - CacheFirst: store hit wins, network only on miss
    - NetworkFirst: network wins, store (then root document) when offline
    - StaleWhileRevalidate: store hit returned at once, refreshed in background

    The engine only goes through the store's interface and never raises the
    raw network failure, except on the stale-while-revalidate cold miss.
    """

    def __init__(
        self,
        store: CacheStore,
        network: Network,
        partitions: Mapping[PartitionRole, str],
        root_url: Optional[str] = None,
        max_revalidation_workers: int = 4,
    ):
        """
        Initialize the strategy engine.

        Args:
            store: Cache store shared with the lifecycle manager
            network: Network fetch interface
            partitions: Current partition name for each role
            root_url: Absolute URL of the root document (navigation fallback)
            max_revalidation_workers: Thread pool size for background revalidation
        """
        self._store = store
        self._network = network
        self._partitions = dict(partitions)
        self._root_key = request_key("GET", root_url) if root_url else None

        # Background revalidation
        self._revalidation_pool = ThreadPoolExecutor(
            max_workers=max_revalidation_workers,
            thread_name_prefix="cache-revalidate",
        )
        self._revalidating: Set[Future] = set()
        self._revalidating_lock = threading.Lock()

        # Stats tracking
        self._stats_lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "network_responses": 0,
            "network_failures": 0,
            "offline_fallbacks": 0,
            "synthetic_responses": 0,
            "revalidations": 0,
            "store_errors": 0,
        }

    # =========================================================================
    # Dispatch
    # =========================================================================

    def handle_for(self, role: PartitionRole) -> PartitionHandle:
        """
        Handle for the current partition of a role.

        Nothing is opened here: reads of a missing partition are misses and
        writes create it.
        """
        return PartitionHandle(self._partitions[role])

    def serve(self, request: Request, decision: Decision) -> Response:
        """
        Serve an intercepted request with the decided strategy.

        Raises:
            ValueError: For a bypass decision (bypassed requests are never served here)
            NetworkError: Only from a stale-while-revalidate cold miss
        """
        if decision.strategy is Strategy.BYPASS or decision.role is None:
            raise ValueError(f"Request is not intercepted: {request.method} {request.url}")

        handle = self.handle_for(decision.role)
        if decision.strategy is Strategy.CACHE_FIRST:
            return self.cache_first(request, handle)
        if decision.strategy is Strategy.NETWORK_FIRST:
            return self.network_first(request, handle)
        return self.stale_while_revalidate(request, handle)

    # =========================================================================
    # Strategies
    # =========================================================================

    def cache_first(self, request: Request, handle: PartitionHandle) -> Response:
        """Try the store, fall back to the network."""
        entry = self._lookup(request.key, handle)
        if entry is not None:
            logger.debug(f"CACHE HIT: {request.key} [age={entry.age_seconds:.1f}s]")
            self._count("hits")
            return entry.response

        logger.debug(f"CACHE MISS: {request.key}")
        self._count("misses")
        try:
            response = self._fetch(request)
        except NetworkError as e:
            logger.info(f"Not available offline: {request.key} - {e}")
            self._count("synthetic_responses")
            return service_unavailable(UNAVAILABLE_BODY)

        if response.ok:
            self._put(handle, request.key, response)
        return response

    def network_first(self, request: Request, handle: PartitionHandle) -> Response:
        """Try the network, fall back to the store, then the root document."""
        try:
            response = self._fetch(request)
        except NetworkError as e:
            logger.info(f"Network failed, trying cache: {request.key} - {e}")
        else:
            if response.ok:
                self._put(handle, request.key, response)
            return response

        entry = self._lookup(request.key, handle)
        if entry is not None:
            self._count("hits")
            self._count("offline_fallbacks")
            return entry.response
        self._count("misses")

        if request.navigate and self._root_key:
            root = self._lookup(self._root_key, handle)
            if root is not None:
                logger.info(f"Serving root document for offline navigation: {request.url}")
                self._count("offline_fallbacks")
                return root.response

        self._count("synthetic_responses")
        return service_unavailable(OFFLINE_BODY)

    def stale_while_revalidate(self, request: Request, handle: PartitionHandle) -> Response:
        """
        Return the stored copy at once and refresh it in the background.

        Without a stored copy the caller gets the network outcome directly,
        including the NetworkError if the fetch is rejected.
        """
        entry = self._lookup(request.key, handle)
        refresh = self._trigger_background_revalidate(request, handle)

        if entry is not None:
            logger.debug(
                f"CACHE HIT (stale, revalidating): {request.key} "
                f"[age={entry.age_seconds:.1f}s]"
            )
            self._count("hits")
            return entry.response

        logger.debug(f"CACHE MISS (waiting for network): {request.key}")
        self._count("misses")
        return refresh.result()

    # =========================================================================
    # Store and network access
    # =========================================================================

    def _lookup(self, key: str, handle: PartitionHandle) -> Optional[CacheEntry]:
        """
        Find an entry, target partition first, then the other current partitions.

        Store failures count as a miss.
        """
        names = [handle.name] + [n for n in self._partitions.values() if n != handle.name]
        for name in names:
            try:
                entry = self._store.match(PartitionHandle(name), key)
            except StoreUnavailableError as e:
                logger.warning(f"Store lookup failed in {name}, treating as miss: {e}")
                self._count("store_errors")
                continue
            if entry is not None:
                return entry
        return None

    def _put(self, handle: PartitionHandle, key: str, response: Response) -> None:
        try:
            self._store.put(handle, key, response)
        except StoreUnavailableError as e:
            logger.warning(f"Could not cache {key} in {handle.name}: {e}")
            self._count("store_errors")

    def _fetch(self, request: Request) -> Response:
        try:
            response = self._network.fetch(request)
        except NetworkError:
            self._count("network_failures")
            raise
        self._count("network_responses")
        return response

    def _trigger_background_revalidate(
        self,
        request: Request,
        handle: PartitionHandle,
    ) -> Future:
        """Start a background refresh without blocking."""

        def do_revalidate() -> Response:
            logger.debug(f"Background revalidation started: {request.key}")
            response = self._fetch(request)
            if response.ok:
                self._put(handle, request.key, response)
                self._count("revalidations")
            logger.debug(f"Background revalidation complete: {request.key}")
            return response

        future = self._revalidation_pool.submit(do_revalidate)
        with self._revalidating_lock:
            self._revalidating.add(future)
        future.add_done_callback(self._revalidation_done)
        return future

    def _revalidation_done(self, future: Future) -> None:
        with self._revalidating_lock:
            self._revalidating.discard(future)
        error = future.exception()
        if error is not None:
            # Never surfaced to the original caller
            logger.debug(f"Background revalidation failed: {error}")

    # =========================================================================
    # Housekeeping
    # =========================================================================

    def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for in-flight background refreshes.

        Returns:
            True if all refreshes settled within the timeout
        """
        with self._revalidating_lock:
            pending = set(self._revalidating)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self) -> None:
        self._revalidation_pool.shutdown(wait=True)

    def _count(self, stat: str) -> None:
        with self._stats_lock:
            self._stats[stat] += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get strategy statistics."""
        with self._stats_lock:
            lookups = self._stats["hits"] + self._stats["misses"]
            hit_rate = (self._stats["hits"] / lookups * 100) if lookups > 0 else 0
            stats = dict(self._stats)
        stats["hit_rate_percent"] = round(hit_rate, 1)
        with self._revalidating_lock:
            stats["revalidating_count"] = len(self._revalidating)
        return stats
