r"""backend/demand_engine/core/observability.py

Request logging plus Prometheus metrics for the HTTP layer and the engine."""

from __future__ import annotations

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

LOGGER = logging.getLogger(__name__)


_REQUEST_COUNTER = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "path", "status"]
)
_LATENCY_HISTOGRAM = Histogram(
    "http_request_latency_seconds", "Request latency", ["method", "path"]
)

FORECAST_COUNTER = Counter(
    "demand_forecasts_total",
    "Product forecasts computed, by outcome",
    ["outcome"],
)
FORECAST_LATENCY = Histogram(
    "demand_forecast_latency_seconds",
    "Time spent computing a single product forecast",
)


def _route_label(request: Request) -> str:
    """Route template such as /api/v1/forecasts/{product_id}, else the raw path."""

    route = request.scope.get("route")
    template = getattr(route, "path", None)
    return template or request.url.path


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Emit one JSON log line and Prometheus samples per request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        method = request.method
        client_ip = request.client.host if request.client else "unknown"
        request_id = (
            request.headers.get("x-request-id")
            or request.headers.get("request-id")
            or str(uuid.uuid4())
        )

        start_perf = time.perf_counter()
        start_wall = time.time()

        def _finalize(response: Response) -> Response:
            latency = time.perf_counter() - start_perf
            status_code = getattr(response, "status_code", 500)
            path_label = _route_label(request)

            _REQUEST_COUNTER.labels(method, path_label, str(status_code)).inc()
            _LATENCY_HISTOGRAM.labels(method, path_label).observe(latency)

            product_id = request.path_params.get("product_id") if hasattr(request, "path_params") else None
            log_payload = {
                "timestamp": datetime.fromtimestamp(start_wall, tz=timezone.utc).isoformat(),
                "path": path,
                "method": method,
                "status": status_code,
                "latency_ms": int(latency * 1000),
                "request_id": request_id,
                "client_ip": client_ip,
                "product_id": product_id,
            }
            LOGGER.info(json.dumps(log_payload))
            response.headers["x-request-id"] = request_id
            return response

        try:
            response = await call_next(request)
        except Exception:
            _finalize(PlainTextResponse("Internal Server Error", status_code=500))
            raise

        return _finalize(response)


def metrics_endpoint() -> Response:
    """Return Prometheus metrics payload."""

    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
