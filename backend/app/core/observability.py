from __future__ import annotations

import logging
import os
import re
import time
import uuid
from collections import deque
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Deque

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import TimeoutError as SATimeoutError
from starlette.responses import Response

_STARTED_AT = time.monotonic()

SLOW_REQUEST_MS = int(os.getenv("SLOW_REQUEST_MS", "2000"))

# Workflow endpoints worth a latency summary; the named group lets request logs
# carry the offer id without parsing paths again downstream.
_WORKFLOW_ROUTES: list[tuple[str, re.Pattern[str], str]] = [
    ("GET", re.compile(r"/offers$"), "offers.list"),
    ("GET", re.compile(r"/offers/(?P<offer_id>\d+)/timeline$"), "offers.timeline"),
    ("POST", re.compile(r"/offers/(?P<offer_id>\d+)/submit$"), "offers.submit"),
    ("POST", re.compile(r"/offers/(?P<offer_id>\d+)/manager-decision$"), "offers.manager_decision"),
    ("POST", re.compile(r"/offers/(?P<offer_id>\d+)/finance-decision$"), "offers.finance_decision"),
    ("POST", re.compile(r"/offers/(?P<offer_id>\d+)/retry$"), "offers.retry"),
    (
        "POST",
        re.compile(r"/offers/(?P<offer_id>\d+)/continue-and-return$"),
        "offers.continue_and_return",
    ),
    ("POST", re.compile(r"/offers/(?P<offer_id>\d+)/finalize$"), "offers.finalize"),
]

_QUIET_SUFFIXES = ("/health", "/healthz")


def route_context(method: str, path: str) -> tuple[str | None, int | None]:
    """Return (latency label, offer id) for a request, either may be None."""

    for route_method, pattern, label in _WORKFLOW_ROUTES:
        if route_method != method:
            continue
        match = pattern.search(path)
        if match:
            offer_id = match.groupdict().get("offer_id")
            return label, int(offer_id) if offer_id else None
    return None, None


class LatencyWindow:
    """Rolling per-endpoint latency samples, summarised every `log_every` hits."""

    def __init__(self, size: int, log_every: int):
        self.size = size
        self.log_every = max(1, log_every)
        self._lock = Lock()
        self._samples: dict[str, Deque[float]] = {}
        self._hits: dict[str, int] = {}

    def observe(self, label: str, duration_ms: float) -> dict | None:
        with self._lock:
            samples = self._samples.setdefault(label, deque(maxlen=self.size))
            samples.append(duration_ms)
            self._hits[label] = self._hits.get(label, 0) + 1
            if self._hits[label] % self.log_every:
                return None
            ordered = sorted(samples)
        return {
            "endpoint": label,
            "p50_ms": round(_nearest_rank(ordered, 50), 2),
            "p95_ms": round(_nearest_rank(ordered, 95), 2),
            "p99_ms": round(_nearest_rank(ordered, 99), 2),
            "window": len(ordered),
        }


def _nearest_rank(ordered: list[float], pct: float) -> float:
    if not ordered:
        return 0.0
    index = min(len(ordered) - 1, max(0, round(pct / 100.0 * (len(ordered) - 1))))
    return float(ordered[index])


latency = LatencyWindow(
    size=int(os.getenv("LATENCY_METRICS_WINDOW", "200")),
    log_every=int(os.getenv("LATENCY_METRICS_LOG_EVERY", "50")),
)


def uptime_seconds() -> float:
    return max(0.0, time.monotonic() - _STARTED_AT)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _pool_status() -> str | None:
    from app.database import engine

    status = getattr(engine.pool, "status", None)
    return status() if callable(status) else None


def _logger_for(request: Request) -> logging.Logger:
    return getattr(request.app.state, "logger", None) or logging.getLogger("procurement")


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id") or str(
        uuid.uuid4()
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log anything the workflow handlers did not map and answer a bare 500."""

    request_id = _request_id(request)
    _logger_for(request).exception(
        "unhandled_exception",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "exception_type": type(exc).__name__,
        },
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error. Please try again later.",
            "code": "internal_server_error",
            "request_id": request_id,
        },
        headers={"X-Request-ID": request_id},
    )


async def request_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Tag each request with an X-Request-ID and log its outcome and duration.

    Bodies are never logged; offer ids are taken from the path.
    """

    request_id = _request_id(request)
    request.state.request_id = request_id
    logger = _logger_for(request)
    label, offer_id = route_context(request.method, request.url.path)
    fields = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "endpoint": label,
        "offer_id": offer_id,
    }

    started = time.perf_counter()

    def elapsed_ms() -> float:
        duration = (time.perf_counter() - started) * 1000.0
        if label:
            summary = latency.observe(label, duration)
            if summary:
                logger.info("http_latency", extra=summary)
        return round(duration, 2)

    try:
        response: Response = await call_next(request)
    except SATimeoutError as exc:
        logger.error(
            "db_pool_timeout",
            extra={**fields, "duration_ms": elapsed_ms(), "pool_status": _pool_status(), "error": str(exc)},
        )
        raise
    except Exception:
        logger.exception("http_request_failed", extra={**fields, "duration_ms": elapsed_ms()})
        raise

    duration_ms = elapsed_ms()
    if duration_ms >= SLOW_REQUEST_MS:
        logger.warning("slow_request", extra={**fields, "duration_ms": duration_ms})
    if not request.url.path.endswith(_QUIET_SUFFIXES):
        logger.info(
            "http_request",
            extra={**fields, "status_code": response.status_code, "duration_ms": duration_ms},
        )

    response.headers.setdefault("X-Request-ID", request_id)
    return response
