"""
Worker lifecycle: install (precache), activate (partition GC), and the
versioned partition naming scheme.

States:
    UNINSTALLED -> INSTALLING -> INSTALLED (waiting) -> ACTIVATING -> ACTIVATED
    plus SUPERSEDED, reached when a newer instance finishes activating.

Each transition runs as a task and hands the host a Future; a transition
is complete only once that Future has settled.
"""
import re
import threading
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple
from urllib.parse import urljoin

from offline_worker.cache.core import PartitionHandle, PartitionRole, Request
from offline_worker.cache.store import CacheStore
from offline_worker.exceptions import (
    NetworkError,
    PartitionCleanupError,
    PartitionOpenError,
    PrecacheAssetError,
    StoreUnavailableError,
)
from offline_worker.network import Network

logger = logging.getLogger("worker.lifecycle")


class WorkerState(Enum):
    UNINSTALLED = "uninstalled"
    INSTALLING = "installing"
    INSTALLED = "installed"  # Waiting for older instances to release control
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    SUPERSEDED = "superseded"


# =============================================================================
# Versioning
# =============================================================================

# Roles that may appear in reserved partition names. "cache" is only ever a
# version label, never an opened partition.
RESERVED_ROLES = ("cache", "static", "dynamic")


class PartitionNaming:
    """
    Versioned partition names: <prefix>-<role>-<generation>.

    A single generation is shared by every role, so any deployment replaces
    all partitions at once.
    """

    def __init__(
        self,
        prefix: str,
        generation: str,
        reserved_roles: Iterable[str] = RESERVED_ROLES,
    ):
        self.prefix = prefix
        self.generation = generation
        roles = "|".join(re.escape(r) for r in reserved_roles)
        self._pattern = re.compile(rf"^{re.escape(prefix)}-(?:{roles})-v\d+$")

    def name_for(self, role: PartitionRole) -> str:
        return f"{self.prefix}-{role.value}-{self.generation}"

    @property
    def version(self) -> str:
        """Version label reported to the host application."""
        return f"{self.prefix}-cache-{self.generation}"

    @property
    def current(self) -> Dict[PartitionRole, str]:
        """Current partition name for every role."""
        return {role: self.name_for(role) for role in PartitionRole}

    @property
    def current_names(self) -> FrozenSet[str]:
        return frozenset(self.current.values())

    def is_reserved(self, name: str) -> bool:
        """True if the name belongs to this worker's naming scheme (any generation)."""
        # Current names count whatever shape the generation id has
        return name in self.current_names or bool(self._pattern.match(name))

    def stale(self, existing: Iterable[str]) -> List[str]:
        """Reserved names that are not current, i.e. superseded generations."""
        current = self.current_names
        return sorted(n for n in existing if self.is_reserved(n) and n not in current)


# =============================================================================
# Precache manifest
# =============================================================================

@dataclass(frozen=True)
class PrecacheManifest:
    """Ordered URLs to fetch at install time, each bound to a partition role."""
    entries: Tuple[Tuple[str, PartitionRole], ...] = ()

    @classmethod
    def build(
        cls,
        static_assets: Iterable[str] = (),
        dynamic_assets: Iterable[str] = (),
    ) -> "PrecacheManifest":
        entries = [(url, PartitionRole.STATIC) for url in static_assets]
        entries += [(url, PartitionRole.DYNAMIC) for url in dynamic_assets]
        # Ordered set: later duplicates are dropped
        seen = set()
        unique = []
        for entry in entries:
            if entry not in seen:
                seen.add(entry)
                unique.append(entry)
        return cls(tuple(unique))

    def __len__(self) -> int:
        return len(self.entries)

    def roles(self) -> List[PartitionRole]:
        return sorted({role for _, role in self.entries}, key=lambda r: r.value)

    def for_role(self, role: PartitionRole) -> List[str]:
        return [url for url, r in self.entries if r is role]


@dataclass
class InstallReport:
    """Outcome of an install. Partial success is still success."""
    cached: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)  # url -> reason

    @property
    def total(self) -> int:
        return len(self.cached) + len(self.failed)

    def to_dict(self) -> dict:
        return {
            "cached": len(self.cached),
            "failed": len(self.failed),
            "failures": dict(self.failed),
        }


@dataclass
class ActivationReport:
    deleted: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)


# =============================================================================
# Lifecycle manager
# =============================================================================

class LifecycleManager:
    """
    Drives one worker instance through install and activation.

    Owns the versioning scheme. Reaches the store only through its interface.
    """

    def __init__(
        self,
        store: CacheStore,
        network: Network,
        naming: PartitionNaming,
        manifest: PrecacheManifest,
        origin: str,
        precache_workers: int = 8,
        skip_waiting_on_install: bool = False,
    ):
        self._store = store
        self._network = network
        self.naming = naming
        self.manifest = manifest
        self._origin = origin.rstrip("/") + "/"
        self._precache_workers = precache_workers
        self._skip_waiting_on_install = skip_waiting_on_install

        self._state = WorkerState.UNINSTALLED
        self._state_lock = threading.Lock()
        self._skip_waiting = False
        self._on_skip_waiting: Optional[Callable[["LifecycleManager"], None]] = None
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="lifecycle")
        self.install_report: Optional[InstallReport] = None
        self.activation_report: Optional[ActivationReport] = None
        self.controls_clients = False

    @property
    def state(self) -> WorkerState:
        with self._state_lock:
            return self._state

    @property
    def version(self) -> str:
        return self.naming.version

    @property
    def skip_waiting_requested(self) -> bool:
        with self._state_lock:
            return self._skip_waiting

    def _transition(self, expected: Tuple[WorkerState, ...], target: WorkerState) -> None:
        with self._state_lock:
            if self._state not in expected:
                raise RuntimeError(
                    f"Cannot move from {self._state.value} to {target.value}"
                )
            logger.debug(f"{self.version}: {self._state.value} -> {target.value}")
            self._state = target

    # =========================================================================
    # Install
    # =========================================================================

    def install(self) -> "Future[InstallReport]":
        """
        Start installing: open partitions and precache the manifest.

        The returned Future fails only with PartitionOpenError.
        """
        self._transition((WorkerState.UNINSTALLED,), WorkerState.INSTALLING)
        return self._executor.submit(self._run_install)

    def _run_install(self) -> InstallReport:
        logger.info(f"Installing worker {self.version}...")
        try:
            handles = self._open_partitions()
        except PartitionOpenError:
            with self._state_lock:
                self._state = WorkerState.UNINSTALLED
            raise

        report = InstallReport()
        urls = [(self._absolute(url), role) for url, role in self.manifest.entries]
        if urls:
            with ThreadPoolExecutor(
                max_workers=self._precache_workers,
                thread_name_prefix="precache",
            ) as pool:
                futures = [
                    (url, pool.submit(self._precache_one, url, handles[role]))
                    for url, role in urls
                ]
                # Settle every entry; one failure never affects the others
                for url, future in futures:
                    try:
                        future.result()
                        report.cached.append(url)
                    except PrecacheAssetError as e:
                        logger.info(str(e))
                        report.failed[url] = e.reason

        self.install_report = report
        self._transition((WorkerState.INSTALLING,), WorkerState.INSTALLED)
        logger.info(
            f"Installation complete: {len(report.cached)}/{report.total} assets cached"
        )

        if self._skip_waiting_on_install:
            self.skip_waiting()
        return report

    def _open_partitions(self) -> Dict[PartitionRole, PartitionHandle]:
        handles = {}
        for role, name in self.naming.current.items():
            try:
                handles[role] = self._store.open(name)
            except StoreUnavailableError as e:
                logger.error(f"Install aborted, cannot open {name}: {e}")
                raise PartitionOpenError(name, e) from e
        return handles

    def _precache_one(self, url: str, handle: PartitionHandle) -> None:
        request = Request(url=url)
        try:
            response = self._network.fetch(request)
        except NetworkError as e:
            raise PrecacheAssetError(url, str(e)) from e
        if not response.ok:
            raise PrecacheAssetError(url, f"HTTP {response.status}")
        try:
            self._store.put(handle, request.key, response)
        except StoreUnavailableError as e:
            raise PrecacheAssetError(url, str(e)) from e
        logger.debug(f"Precached {url} into {handle.name}")

    def _absolute(self, url: str) -> str:
        return urljoin(self._origin, url)

    # =========================================================================
    # Waiting
    # =========================================================================

    def skip_waiting(self) -> None:
        """
        Adopt immediately: skip the wait for older instances to release control.

        Takes effect now if installed, otherwise as soon as install completes.
        """
        with self._state_lock:
            self._skip_waiting = True
            ready = self._state is WorkerState.INSTALLED
            callback = self._on_skip_waiting
        logger.debug(f"{self.version}: skip waiting requested")
        if ready and callback is not None:
            callback(self)

    def on_skip_waiting(self, callback: Callable[["LifecycleManager"], None]) -> None:
        with self._state_lock:
            self._on_skip_waiting = callback

    # =========================================================================
    # Activate
    # =========================================================================

    def activate(self) -> "Future[ActivationReport]":
        """
        Start activating: delete superseded partitions, then take control.

        The returned Future fails with PartitionCleanupError if any superseded
        partition survives; the instance then stays installed.
        """
        self._transition((WorkerState.INSTALLED,), WorkerState.ACTIVATING)
        return self._executor.submit(self._run_activate)

    def _run_activate(self) -> ActivationReport:
        logger.info(f"Activating worker {self.version}...")
        report = ActivationReport()
        failures: Dict[str, str] = {}
        try:
            existing = self._store.list_partitions()
        except StoreUnavailableError as e:
            raise self._cleanup_failed({"*": str(e)}) from e

        # Attempt every deletion before deciding the outcome
        for name in self.naming.stale(existing):
            logger.info(f"Deleting old cache: {name}")
            try:
                self._store.delete_partition(name)
                report.deleted.append(name)
            except StoreUnavailableError as e:
                logger.warning(f"Could not delete {name}: {e}")
                failures[name] = str(e)
        report.kept = sorted(n for n in existing if n not in report.deleted)
        self.activation_report = report

        if failures:
            raise self._cleanup_failed(failures)
        self._transition((WorkerState.ACTIVATING,), WorkerState.ACTIVATED)
        self.claim_clients()
        logger.info("Activation complete")
        return report

    def _cleanup_failed(self, failures: Dict[str, str]) -> PartitionCleanupError:
        """Roll back to waiting without claiming clients."""
        with self._state_lock:
            self._state = WorkerState.INSTALLED
        self.controls_clients = False
        logger.error(f"Activation of {self.version} failed, cleanup incomplete: {failures}")
        return PartitionCleanupError(failures)

    def claim_clients(self) -> None:
        """Take control of every in-scope client."""
        self.controls_clients = True

    def supersede(self) -> None:
        with self._state_lock:
            self._state = WorkerState.SUPERSEDED
        self.controls_clients = False
        logger.info(f"Worker {self.version} superseded")

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


# =============================================================================
# Registration
# =============================================================================

class Registration:
    """
    Coordinates successive worker instances of one deployment scope.

    A newly installed instance activates at once when nothing is active,
    when it asked to skip waiting, or when the active instance releases its
    clients. Activation of a newer instance supersedes the older one.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self.active: Optional[LifecycleManager] = None
        self.waiting: Optional[LifecycleManager] = None
        self.installing: Optional[LifecycleManager] = None

    @property
    def controller(self) -> Optional[LifecycleManager]:
        with self._lock:
            if self.active is not None and self.active.controls_clients:
                return self.active
            return None

    def register(self, manager: LifecycleManager) -> "Future[LifecycleManager]":
        """
        Install a new instance and activate it when allowed.

        The Future resolves once the instance is installed and, if it did not
        have to wait, activated.
        """
        outcome: "Future[LifecycleManager]" = Future()
        with self._lock:
            self.installing = manager
        manager.on_skip_waiting(self._promote_from_callback)

        def installed(install: Future) -> None:
            error = install.exception()
            with self._lock:
                if self.installing is manager:
                    self.installing = None
            if error is not None:
                outcome.set_exception(error)
                return
            with self._lock:
                if self.waiting is not None and self.waiting is not manager:
                    self.waiting.supersede()
                self.waiting = manager
                can_activate = (
                    self.active is None
                    or manager.skip_waiting_requested
                    or self.active.state is WorkerState.SUPERSEDED
                )
            if can_activate:
                self._activate(manager, outcome)
            else:
                logger.info(f"Worker {manager.version} installed, waiting")
                outcome.set_result(manager)

        manager.install().add_done_callback(installed)
        return outcome

    def release_clients(self) -> Optional["Future[LifecycleManager]"]:
        """The active instance no longer controls any client: promote the waiting one."""
        with self._lock:
            waiting = self.waiting
        if waiting is None:
            return None
        return self._activate(waiting)

    def _promote_from_callback(self, manager: LifecycleManager) -> None:
        with self._lock:
            if self.waiting is not manager:
                return
        self._activate(manager)

    def _activate(
        self,
        manager: LifecycleManager,
        outcome: Optional["Future[LifecycleManager]"] = None,
    ) -> "Future[LifecycleManager]":
        outcome = outcome or Future()
        with self._lock:
            if manager.state is not WorkerState.INSTALLED:
                # Already being activated elsewhere
                if not outcome.done():
                    outcome.set_result(manager)
                return outcome
            previous = self.active
            activation = manager.activate()

        def activated(done: Future) -> None:
            error = done.exception()
            if error is not None:
                outcome.set_exception(error)
                return
            with self._lock:
                if self.waiting is manager:
                    self.waiting = None
                self.active = manager
            if previous is not None and previous is not manager:
                previous.supersede()
            outcome.set_result(manager)

        activation.add_done_callback(activated)
        return outcome
