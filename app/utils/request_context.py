from __future__ import annotations

from contextvars import ContextVar

# Correlates log lines of one inbound chart/search request, including the upstream
# calls it fans out to. Set by RequestContextMiddleware; asyncio tasks inherit it.
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
