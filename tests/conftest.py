"""
Shared fixtures: a scriptable fake network and cache stores.
"""
import threading
from typing import Dict, List, Optional, Set

import pytest

from offline_worker.cache.core import Request, Response
from offline_worker.cache.store import InMemoryCacheStore, SQLiteCacheStore
from offline_worker.exceptions import NetworkError

ORIGIN = "http://localhost:8000"


def url(path: str) -> str:
    """Absolute same-origin URL for a path."""
    return f"{ORIGIN}{path}"


class FakeNetwork:
    """
    In-process network.

    - responses: url -> Response served for that url (404 otherwise)
    - failing: urls whose fetch is rejected
    - offline: reject every fetch
    - gates: url -> Event the fetch blocks on before answering
    """

    def __init__(self, responses: Optional[Dict[str, Response]] = None):
        self.responses: Dict[str, Response] = dict(responses or {})
        self.failing: Set[str] = set()
        self.offline = False
        self.gates: Dict[str, threading.Event] = {}
        self.calls: List[Request] = []
        self._lock = threading.Lock()

    def serve(self, target: str, body: bytes = b"ok", status: int = 200, **headers) -> Response:
        response = Response(status=status, body=body, headers=headers or {"Content-Type": "text/plain"})
        self.responses[target] = response
        return response

    def calls_to(self, target: str) -> int:
        with self._lock:
            return sum(1 for r in self.calls if r.url == target)

    def fetch(self, request: Request) -> Response:
        with self._lock:
            self.calls.append(request)
        gate = self.gates.get(request.url)
        if gate is not None:
            gate.wait(timeout=5)
        if self.offline or request.url in self.failing:
            raise NetworkError(request.url, "connection refused")
        return self.responses.get(request.url, Response(status=404, body=b"Not Found"))


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def memory_store():
    return InMemoryCacheStore()


@pytest.fixture
def sqlite_store(tmp_path):
    return SQLiteCacheStore(tmp_path / "cache.db")


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Each store backend in turn."""
    if request.param == "memory":
        return InMemoryCacheStore()
    return SQLiteCacheStore(tmp_path / "cache.db")
