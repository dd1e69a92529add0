"""
Worker event dispatcher.

The host's interception point calls dispatch() with an event kind; every
handler returns a Future the host waits on (or None when the event is not
handled, e.g. a bypassed fetch).
"""
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Dict, Optional
from urllib.parse import urljoin

from config.precache import sound_assets, static_assets
from offline_worker.cache.core import Request, Response
from offline_worker.cache.routes import RouteClassifier
from offline_worker.cache.store import CacheStore, create_store
from offline_worker.cache.strategies import StrategyEngine
from offline_worker.control import ControlChannel, ReplyPort
from offline_worker.lifecycle import (
    LifecycleManager,
    PartitionNaming,
    PrecacheManifest,
    Registration,
)
from offline_worker.network import HttpNetwork, Network
from offline_worker.notifications import (
    Notification,
    NotificationRenderer,
    NotificationSink,
    WindowClients,
    route_click,
)

logger = logging.getLogger("worker")

SYNC_TAG = "sync-data"


class EventKind(Enum):
    INSTALL = "install"
    ACTIVATE = "activate"
    FETCH = "fetch"
    MESSAGE = "message"
    PUSH = "push"
    NOTIFICATION_CLICK = "notificationclick"
    SYNC = "sync"


def _completed(result: Any = None) -> Future:
    future: Future = Future()
    future.set_result(result)
    return future


class OfflineWorker:
    """
    One worker instance: routing, strategies, lifecycle and control wired to
    a single injected store and network.
    """

    def __init__(
        self,
        store: CacheStore,
        network: Network,
        naming: PartitionNaming,
        manifest: PrecacheManifest,
        classifier: RouteClassifier,
        origin: str,
        root_path: str = "/",
        registration: Optional[Registration] = None,
        renderer: Optional[NotificationRenderer] = None,
        notification_sink: Optional[NotificationSink] = None,
        clients: Optional[WindowClients] = None,
        skip_waiting_on_install: bool = True,
        max_request_workers: int = 16,
        max_revalidation_workers: int = 4,
        precache_workers: int = 8,
    ):
        self.store = store
        self.network = network
        self.classifier = classifier
        self.origin = origin.rstrip("/")
        self.root_path = root_path
        self.registration = registration or Registration()
        self.renderer = renderer
        self.notification_sink = notification_sink
        self.clients = clients

        self.lifecycle = LifecycleManager(
            store=store,
            network=network,
            naming=naming,
            manifest=manifest,
            origin=self.origin,
            precache_workers=precache_workers,
            skip_waiting_on_install=skip_waiting_on_install,
        )
        self.engine = StrategyEngine(
            store=store,
            network=network,
            partitions=naming.current,
            root_url=self.absolute(root_path),
            max_revalidation_workers=max_revalidation_workers,
        )
        self.control = ControlChannel(store, self.lifecycle)

        self._requests = ThreadPoolExecutor(
            max_workers=max_request_workers,
            thread_name_prefix="worker-request",
        )
        self._handlers: Dict[EventKind, Callable[..., Optional[Future]]] = {
            EventKind.INSTALL: self.on_install,
            EventKind.ACTIVATE: self.on_activate,
            EventKind.FETCH: self.on_fetch,
            EventKind.MESSAGE: self.on_message,
            EventKind.PUSH: self.on_push,
            EventKind.NOTIFICATION_CLICK: self.on_notification_click,
            EventKind.SYNC: self.on_sync,
        }
        logger.info(f"Worker {self.version} loaded")

    @property
    def version(self) -> str:
        return self.lifecycle.version

    def absolute(self, url: str) -> str:
        return urljoin(self.origin + "/", url)

    # =========================================================================
    # Dispatch
    # =========================================================================

    def dispatch(self, kind: EventKind, *args: Any) -> Optional[Future]:
        """Invoke the handler for an event kind."""
        return self._handlers[kind](*args)

    def start(self) -> Future:
        """Install this instance through the registration, activating when allowed."""
        return self.registration.register(self.lifecycle)

    def on_install(self) -> Future:
        return self.lifecycle.install()

    def on_activate(self) -> Future:
        return self.lifecycle.activate()

    def on_fetch(self, request: Request) -> "Optional[Future[Response]]":
        """
        Intercept a request.

        Returns:
            None if the request is bypassed; the host must then send it to the
            network untouched. Otherwise a Future for the response.
        """
        decision = self.classifier.classify(request)
        if not decision.intercepted:
            return None
        return self._requests.submit(self.engine.serve, request, decision)

    def on_message(self, data: Any, port: Optional[ReplyPort] = None) -> Future:
        return self._requests.submit(self.control.dispatch, data, port)

    def on_push(self, payload: Any = None) -> Future:
        if self.renderer is None:
            return _completed(None)

        def show() -> Optional[Notification]:
            notification = self.renderer.render(payload)
            if notification is not None and self.notification_sink is not None:
                self.notification_sink.show(notification)
            return notification

        return self._requests.submit(show)

    def on_notification_click(self, notification: Notification) -> Future:
        if self.clients is None:
            notification.close()
            return _completed(None)
        return self._requests.submit(
            route_click, notification, self.clients, self.root_path
        )

    def on_sync(self, tag: str) -> Future:
        if tag == SYNC_TAG:
            # Client data lives in the client's own store; nothing to replay
            logger.info("Background sync triggered")
        return _completed(None)

    # =========================================================================
    # Housekeeping
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "state": self.lifecycle.state.value,
            "strategies": self.engine.get_stats(),
            "partitions": self.store.stats(),
        }

    def shutdown(self) -> None:
        self._requests.shutdown(wait=True)
        self.engine.drain()
        self.engine.shutdown()
        self.lifecycle.shutdown()


def create_worker(settings, **overrides: Any) -> OfflineWorker:
    """Build a worker from settings; keyword overrides replace collaborators."""
    store = overrides.pop("store", None) or create_store(
        settings.store_backend, settings.store_path
    )
    network = overrides.pop("network", None) or HttpNetwork(
        upstream_url=settings.upstream_url,
        timeout=settings.network_timeout_seconds,
        max_concurrent=settings.max_concurrent_requests,
    )
    manifest = overrides.pop("manifest", None)
    if manifest is None:
        static = settings.static_assets
        if static is None:
            static = static_assets(settings.base_path)
        sounds = settings.sound_assets
        if sounds is None:
            sounds = sound_assets(settings.base_path)
        manifest = PrecacheManifest.build(static_assets=static, dynamic_assets=sounds)
    options = dict(
        store=store,
        network=network,
        naming=PartitionNaming(settings.cache_prefix, settings.cache_generation),
        manifest=manifest,
        classifier=RouteClassifier.from_settings(settings),
        origin=settings.origin,
        root_path=settings.root_url,
        renderer=NotificationRenderer.from_settings(settings),
        skip_waiting_on_install=settings.skip_waiting_on_install,
        max_request_workers=settings.max_request_workers,
        max_revalidation_workers=settings.max_revalidation_workers,
        precache_workers=settings.precache_workers,
    )
    options.update(overrides)
    return OfflineWorker(**options)


# Global worker instance
_worker: Optional[OfflineWorker] = None


def get_worker() -> OfflineWorker:
    """Get or create the global worker."""
    global _worker
    if _worker is None:
        from config.settings import settings
        _worker = create_worker(settings)
    return _worker


def set_worker(worker: Optional[OfflineWorker]) -> None:
    """Replace the global worker (used by tests and embedding hosts)."""
    global _worker
    _worker = worker
