"""Prometheus metrics for the API process.

Collectors live in the default registry and are served by ``GET /metrics``.
Label values are kept to a fixed set: route templates instead of raw paths,
provider kinds instead of hosts.
"""

import time
from collections.abc import Awaitable, Callable

import httpx
from fastapi import Request, Response
from prometheus_client import Counter, Histogram

HTTP_REQUESTS = Counter(
    "http_requests_total",
    "HTTP requests handled",
    ["method", "path", "status"],
)
HTTP_DURATION = Histogram(
    "http_request_duration_seconds",
    "Time spent handling HTTP requests",
    ["method", "path"],
)
PROVIDER_REQUESTS = Counter(
    "provider_api_requests_total",
    "Outbound requests to provider APIs",
    ["provider", "method", "status"],
)
PROVIDER_DURATION = Histogram(
    "provider_api_request_duration_seconds",
    "Round trip of outbound provider requests",
    ["provider"],
)
OAUTH_CALLBACKS = Counter(
    "oauth_callbacks_total",
    "Provider callbacks by outcome",
    ["platform", "status"],
)

_STARTED = "nowplaying.started"


async def track_requests(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """HTTP middleware: count and time every request by its route template."""
    started = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    path = getattr(route, "path", "unmatched")
    HTTP_DURATION.labels(request.method, path).observe(time.perf_counter() - started)
    HTTP_REQUESTS.labels(request.method, path, str(response.status_code)).inc()
    return response


def instrument_client(client: httpx.AsyncClient, provider: str) -> httpx.AsyncClient:
    """Attach hooks that time each request *client* sends on behalf of *provider*."""

    async def on_request(request: httpx.Request) -> None:
        request.extensions[_STARTED] = time.perf_counter()

    async def on_response(response: httpx.Response) -> None:
        request = response.request
        started = request.extensions.get(_STARTED)
        if started is not None:
            PROVIDER_DURATION.labels(provider).observe(time.perf_counter() - started)
        status = f"{response.status_code // 100}xx"
        PROVIDER_REQUESTS.labels(provider, request.method, status).inc()

    client.event_hooks["request"].append(on_request)
    client.event_hooks["response"].append(on_response)
    return client


def record_callback(platform: str, status: str) -> None:
    """*status* is ``success`` or the error code sent back to the dashboard."""
    OAUTH_CALLBACKS.labels(platform, status).inc()
