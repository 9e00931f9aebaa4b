"""
Prometheus-style metrics endpoint.
"""
import time
from typing import Callable

from fastapi import APIRouter, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from chatroom.core.config import get_settings
from chatroom.core.metrics import generate_prometheus_metrics, record_request

router = APIRouter(tags=["Metrics"])


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Route template rather than raw path keeps label cardinality bounded
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)

        record_request(
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration=duration,
        )

        return response


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Returns metrics in Prometheus exposition format.",
    response_class=Response,
)
async def metrics() -> Response:
    """
    Prometheus-style metrics endpoint.

    Returns request metrics plus chat counters in Prometheus text format.
    """
    content = generate_prometheus_metrics(version=get_settings().app_version)
    return Response(
        content=content,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
