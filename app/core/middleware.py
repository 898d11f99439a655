from __future__ import annotations

import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from loguru import logger

from app.core.settings import settings
from app.utils.request_context import request_id_var


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("x-request-id") or str(uuid4())
        request.state.request_id = req_id
        token = request_id_var.set(req_id)
        try:
            resp = await call_next(request)
            resp.headers["x-request-id"] = req_id
            return resp
        finally:
            request_id_var.reset(token)


class PerformanceLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if not getattr(settings, "PERF_LOG_ENABLED", True):
            return await call_next(request)

        t0 = time.perf_counter()
        status_code: int | None = None
        try:
            resp = await call_next(request)
            status_code = int(getattr(resp, "status_code", 0) or 0)
            return resp
        finally:
            dt_ms = (time.perf_counter() - t0) * 1000.0
            # Outside RequestContextMiddleware, so the request id is passed into extra by hand.
            # Runs outside RequestContextMiddleware; the rid kwarg lands in the record's extra.
            rid = getattr(request.state, "request_id", None) or request.headers.get("x-request-id") or "-"
            slow_ms = int(getattr(settings, "PERF_LOG_SLOW_MS", 250) or 250)
            lvl = "WARNING" if dt_ms >= float(slow_ms) else "INFO"
            sc = status_code if status_code is not None else "?"
            logger.log(
                lvl,
                "HTTP {method} {path} -> {status} ({ms:.1f}ms)",
                method=request.method.upper(),
                path=request.url.path,
                status=sc,
                ms=dt_ms,
                rid=rid,
            )
