"""
Request id and timing.

Every response carries ``X-Request-ID`` (the caller's own, when sent) and
``X-Request-Duration-Ms``. Requests slower than SLOW_THRESHOLD_MS log at
WARNING, 5xx responses at ERROR, everything else at DEBUG. Health probes are
not logged.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_THRESHOLD_MS = 1000

_QUIET_PATHS = frozenset({"/api/v1/health/ready", "/api/v1/health/live"})


def _level_for(status: int, duration_ms: float) -> int:
    if duration_ms > SLOW_THRESHOLD_MS:
        return logging.WARNING
    if status >= 500:
        return logging.ERROR
    return logging.DEBUG


def init_request_timing(app: Flask):
    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _stamp_response(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if request.path not in _QUIET_PATHS:
            logger.log(
                _level_for(response.status_code, duration_ms),
                "%s %s → %d (%.0fms) actor=%s",
                request.method, request.path, response.status_code, duration_ms,
                getattr(g, "actor_id", None),
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "remote_addr": request.remote_addr,
                    "actor": getattr(g, "actor_id", None),
                    "role": getattr(g, "actor_role", None),
                },
            )
        return response
