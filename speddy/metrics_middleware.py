"""
Metrics middleware for the FastAPI application.

Records request count and duration for every endpoint except /metrics.
"""

import time
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Track Prometheus metrics for HTTP requests.

    Paths are reported by their route template (``/api/v1/sessions/{session_id}/time``)
    so session ids do not explode label cardinality.
    """

    def __init__(self, app, track_func: Callable, skip_paths: tuple[str, ...] = ("/metrics",)):
        super().__init__(app)
        self.track_func = track_func
        self.skip_paths = skip_paths

    @staticmethod
    def _endpoint(request: Request) -> str:
        for route in request.app.router.routes:
            match, _ = route.matches(request.scope)
            if match == Match.FULL:
                return getattr(route, "path", request.url.path)
        return request.url.path

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.skip_paths:
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        self.track_func(
            method=request.method,
            endpoint=self._endpoint(request),
            status_code=response.status_code,
            duration=duration,
        )
        return response
