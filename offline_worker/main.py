"""
Offline Cache Worker - FastAPI host application.

Plays the interception point: every request reaching the app is offered to
the worker's fetch handler; bypassed requests go to the network untouched.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Request as HTTPRequest
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse, Response as HTTPResponse
from pydantic import BaseModel

from config.settings import settings
from offline_worker.cache.core import Request, Response
from offline_worker.exceptions import NetworkError
from offline_worker.worker import EventKind, get_worker

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("worker.host")

# Version tracking
APP_VERSION = "v0.1.0"
APP_NAME = "Offline Cache Worker"

# Reserved path prefix for the worker's own endpoints
CONTROL_PREFIX = "/__worker"

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class HealthStatus(BaseModel):
    """Health endpoint response"""
    status: str
    state: str


class VersionInfo(BaseModel):
    """Version endpoint response"""
    name: str
    version: str
    cache_version: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    worker = get_worker()
    # Readiness waits for install (and activation, unless it has to wait)
    worker.start().result()
    logger.info(f"Worker {worker.version} ready ({worker.lifecycle.state.value})")
    yield
    worker.shutdown()


app = FastAPI(
    title=APP_NAME,
    description="Offline-first caching proxy",
    version=APP_VERSION,
    lifespan=lifespan,
)


def _to_worker_request(request: HTTPRequest, body: bytes, origin: str) -> Request:
    """Translate an incoming HTTP request into the worker's request model."""
    path = request.url.path
    query = request.url.query
    url = origin + path + (f"?{query}" if query else "")
    headers = {k: v for k, v in request.headers.items()}
    return Request(
        url=url,
        method=request.method,
        navigate=request.headers.get("sec-fetch-mode", "").lower() == "navigate",
        headers=headers,
        body=body,
    )


def _to_http_response(response: Response) -> HTTPResponse:
    return HTTPResponse(
        content=response.body,
        status_code=response.status,
        headers=dict(response.headers),
    )


@app.get(f"{CONTROL_PREFIX}/health", response_model=HealthStatus)
def health_check():
    """Health check endpoint."""
    worker = get_worker()
    return HealthStatus(status="ok", state=worker.lifecycle.state.value)


@app.get(f"{CONTROL_PREFIX}/version", response_model=VersionInfo)
def version_info():
    """Version information endpoint."""
    return VersionInfo(
        name=APP_NAME,
        version=APP_VERSION,
        cache_version=get_worker().version,
    )


@app.get(f"{CONTROL_PREFIX}/stats")
def cache_stats():
    """Strategy and partition statistics."""
    return get_worker().get_stats()


@app.post(f"{CONTROL_PREFIX}/message")
def post_message(message: Any = Body(...)) -> Optional[Dict[str, Any]]:
    """
    Control channel.

    Returns the command's reply, or null for commands without one.
    CLEAR_CACHE only returns after every deletion has settled.
    """
    worker = get_worker()
    return worker.dispatch(EventKind.MESSAGE, message).result()


@app.api_route("/{path:path}", methods=PROXY_METHODS)
async def intercept(path: str, request: HTTPRequest):
    """Offer every other request to the worker."""
    body = await request.body()
    worker = get_worker()
    worker_request = _to_worker_request(request, body, worker.origin)

    future = worker.dispatch(EventKind.FETCH, worker_request)
    try:
        if future is None:
            # Bypass: straight to the network, no caching side effects
            response = await run_in_threadpool(worker.network.fetch, worker_request)
        else:
            # Wait on the worker without stalling the event loop
            response = await run_in_threadpool(future.result)
    except NetworkError as e:
        logger.info(f"Upstream unreachable: {e}")
        return PlainTextResponse("Bad Gateway", status_code=502)

    return _to_http_response(response)

