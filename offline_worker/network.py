"""
Network fetch interface.

fetch(request) returns a Response for any HTTP status (ok or not) and raises
NetworkError only when the request is rejected outright.
"""
import threading
import logging
from typing import Dict, Optional
from urllib.parse import urlsplit, urlunsplit

import requests

from offline_worker.cache.core import Network, Request, Response
from offline_worker.exceptions import NetworkError

logger = logging.getLogger("worker.network")

# Hop-by-hop headers are never forwarded or stored
HOP_BY_HOP_HEADERS = {
    "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "te", "trailers", "transfer-encoding", "upgrade", "content-encoding",
    "content-length", "host",
}


def _clean_headers(headers) -> Dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() not in HOP_BY_HOP_HEADERS}


class HttpNetwork:
    """
    requests-based network access.

    If upstream_url is set, the scheme and host of every request are rewritten
    to it, so the worker can sit in front of a separate origin server.
    """

    def __init__(
        self,
        upstream_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_concurrent: int = 10,
        session: Optional[requests.Session] = None,
    ):
        self._upstream = urlsplit(upstream_url) if upstream_url else None
        self._timeout = timeout
        self._session = session or requests.Session()
        # Limit concurrent upstream requests across all request threads
        self._semaphore = threading.Semaphore(max_concurrent)

    def _target_url(self, url: str) -> str:
        if self._upstream is None:
            return url
        parts = urlsplit(url)
        upstream_path = self._upstream.path.rstrip("/")
        return urlunsplit((
            self._upstream.scheme,
            self._upstream.netloc,
            upstream_path + parts.path,
            parts.query,
            "",
        ))

    def fetch(self, request: Request) -> Response:
        url = self._target_url(request.url)
        with self._semaphore:
            try:
                resp = self._session.request(
                    request.method,
                    url,
                    headers=_clean_headers(request.headers),
                    data=request.body or None,
                    timeout=self._timeout,
                    allow_redirects=True,
                )
            except requests.RequestException as e:
                logger.debug(f"Fetch rejected: {request.method} {url} - {e}")
                raise NetworkError(request.url, str(e)) from e

        logger.debug(f"Fetched {request.method} {url} -> {resp.status_code}")
        return Response(
            status=resp.status_code,
            body=resp.content,
            headers=_clean_headers(resp.headers),
            status_text=resp.reason or "",
        )

    def close(self) -> None:
        self._session.close()
