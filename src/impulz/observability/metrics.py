from __future__ import annotations

"""Prometheus metrics for the Impulz coaching backend.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for the chat pipeline.
"""

import logging
import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

# Histogram buckets chosen for web latencies (seconds). Chat streams run long.
REQUEST_LATENCY = Histogram(
    "impulz_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

CHAT_TURNS = Counter(
    "impulz_chat_turns_total",
    "Chat turns handled, by outcome",
    labelnames=("outcome",),
)

MALFORMED_TAGS = Counter(
    "impulz_malformed_llm_tags_total",
    "Tags in model output whose payload could not be decoded",
    labelnames=("tag",),
)

CAPABILITY_TRIGGERS = Counter(
    "impulz_capability_triggers_total",
    "Capabilities delivered in a chat turn",
    labelnames=("capability",),
)

STAGE_TRANSITIONS = Counter(
    "impulz_stage_transitions_total",
    "Workflow stage transitions",
    labelnames=("from_stage", "to_stage"),
)


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths (e.g., /api/projects/{id}) to a coarse label.

    Keeps the ``/api`` prefix plus the first resource segment.
    """
    if not path:
        return "/"
    segs = [s for s in path.split("?")[0].split("/") if s]
    if not segs:
        return "/"
    if segs[0] == "api" and len(segs) > 1:
        return "/api/" + segs[1]
    return "/" + segs[0]


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # Avoid observing the metrics endpoint itself
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        try:
            REQUEST_LATENCY.labels(
                method=request.method,
                path=sanitize_path(request.url.path),
                status=str(response.status_code),
            ).observe(elapsed)
        except Exception as exc:
            # metrics never fail the request
            logger.debug("request_latency_not_recorded", extra={"error": str(exc)})
        return response

    return middleware
