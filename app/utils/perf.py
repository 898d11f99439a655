from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from loguru import logger

from app.core.settings import settings


@contextmanager
def perf_span(op: str, **tags: Any) -> Iterator[None]:
    """Time one Capital.com call. Works around ``await``:

        with perf_span("capital.prices", epic=epic):
            r = await client.get(...)

    Slow calls (>= PERF_LOG_SLOW_MS) log at WARNING; with PERF_LOG_UPSTREAM_ALWAYS every
    call logs at DEBUG. ``tags`` with a value land in the record's ``extra``.
    """
    if not settings.PERF_LOG_ENABLED:
        yield
        return

    t0 = time.perf_counter()
    outcome = "ok"
    try:
        yield
    except Exception:
        outcome = "err"
        raise
    finally:
        ms = (time.perf_counter() - t0) * 1000.0
        slow = ms >= settings.PERF_LOG_SLOW_MS
        if slow or settings.PERF_LOG_UPSTREAM_ALWAYS:
            bound = logger.bind(op=op, **{k: v for k, v in tags.items() if v is not None})
            bound.log("WARNING" if slow else "DEBUG", "upstream {} {} in {:.1f}ms", op, outcome, ms)
