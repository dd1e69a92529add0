"""
Worker error taxonomy.

Cache misses are not errors and have no exception type.
"""
from typing import Dict, Optional


class WorkerError(Exception):
    """Base class for all worker errors."""


class NetworkError(WorkerError):
    """A network fetch was rejected (connection refused, DNS failure, reset...)."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"Network request to {url} failed: {message}")


class StoreUnavailableError(WorkerError):
    """A cache store operation failed (quota, locked database, I/O error)."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Cache store {operation} failed: {message}")


class PartitionOpenError(WorkerError):
    """A partition could not be opened at install time. Fatal for the install."""

    def __init__(self, partition: str, cause: Optional[Exception] = None):
        self.partition = partition
        self.cause = cause
        super().__init__(f"Could not open cache partition {partition}: {cause}")


class PrecacheAssetError(WorkerError):
    """A single manifest entry could not be fetched or stored during install."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to cache {url}: {reason}")


class InvalidControlMessage(WorkerError):
    """A control message had no recognizable type."""


class PartitionCleanupError(WorkerError):
    """Superseded partitions could not all be removed during activation."""

    def __init__(self, failures: Dict[str, str]):
        self.failures = failures
        names = ", ".join(sorted(failures))
        super().__init__(f"Could not remove old cache partitions: {names}")
