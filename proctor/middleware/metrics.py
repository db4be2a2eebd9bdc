"""Prometheus instrumentation for every HTTP request.

Records the in-flight gauge, a request counter by method/route/status and
a latency histogram by method/route.

ROUTE TEMPLATES, NOT PATHS
---------------------------
Almost every URL here carries an attempt or exam UUID.  Labelling by the
raw path would create one time series per attempt, so the endpoint label
is the matched route template (/v1/attempts/{attempt_id}/events).
Requests that match no route are labelled "unmatched".
"""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match

from proctor.core.metrics import ACTIVE_REQUESTS, REQUEST_COUNT, REQUEST_DURATION


def route_template(request: Request) -> str:
    for route in request.app.router.routes:
        match, _child_scope = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", request.url.path)
    return "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Collect Prometheus metrics for every HTTP request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Scrapes of /metrics itself are not counted.
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = route_template(request)
        ACTIVE_REQUESTS.inc()
        start = time.monotonic()
        status_code: str | None = None

        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        except Exception:
            status_code = "500"
            raise
        finally:
            duration = time.monotonic() - start
            ACTIVE_REQUESTS.dec()
            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code if status_code is not None else "500",
            ).inc()
            REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(duration)

        return response
