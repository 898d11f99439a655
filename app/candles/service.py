from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime
from typing import Any, Callable, Protocol

from loguru import logger

from app.auth.session_store import Session, SessionManager
from app.candles.models import Attempt, MarketData, SymbolMatch, UpstreamRequest
from app.candles.request_builder import DateInput, build_upstream_request
from app.candles.resolutions import Resolution, fallback_chain
from app.candles.symbols import SymbolResolver
from app.core.settings import settings
from app.integrations.capital.client import CapitalError, PriceResponse, summarize_error_text

# 400 bodies containing one of these mean "this window/resolution has no data", not "bad request".
RETRYABLE_400_PHRASES = (
    "no price data",
    "no data available",
    "validation.max",
    "validation.min",
    "not available for the requested resolution",
    "invalid.daterange",
    "invalid date range",
    "error.invalid.daterange",
    "error.invalid.from",
    "error.invalid.to",
)


class UpstreamRejectedError(CapitalError):
    """Auth failure or server error on the first attempt for an epic."""


class FallbackExhaustedError(CapitalError):
    """Every resolution/epic candidate failed."""


class FetchDeadlineError(CapitalError):
    pass


class PriceSource(Protocol):
    async def get_prices(self, req: UpstreamRequest, session: Session) -> PriceResponse: ...

    async def search_markets(self, term: str | None, session: Session) -> Any: ...


def is_fatal_status(status: int) -> bool:
    return status in (401, 403) or status >= 500


def allows_resolution_fallback(status: int, error_text: str | None) -> bool:
    if is_fatal_status(status):
        return False
    if status in (404, 422):
        return True
    if status == 400:
        if not error_text:
            return True
        lower = error_text.lower()
        return any(phrase in lower for phrase in RETRYABLE_400_PHRASES)
    return False


def allows_epic_fallback(status: int) -> bool:
    return status in (400, 404)


class FallbackSearch:
    """One run of the resolution x epic search.

    State lives on the instance and is discarded with it. Per epic, a worklist of
    resolutions starts at the requested one; failures that allow it push the coarser
    chain to the front. When an epic's worklist runs dry after a 400/404, the symbol
    resolver is consulted once for that epic and the worklist restarts at the requested
    resolution for the new epic.

    A 401/403/5xx or transport error ends the search only on the first attempt for an
    epic; on later attempts it is recorded and the next resolution is tried.
    """

    def __init__(
        self,
        source: PriceSource,
        sessions: SessionManager,
        resolver: SymbolResolver,
        *,
        symbol: str,
        resolution: Resolution,
        from_: DateInput = None,
        to: DateInput = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._source = source
        self._sessions = sessions
        self._resolver = resolver
        self.symbol = symbol
        self.resolution = resolution
        self._from = from_
        self._to = to
        self._clock = clock

        self.tried_resolutions: set[Resolution] = set()
        self.tried_epics: set[str] = set()
        self.attempted: set[tuple[str, Resolution]] = set()
        self.attempts: list[Attempt] = []
        self.symbol_match: SymbolMatch | None = None

    async def _attempt(self, epic: str, resolution: Resolution, *, first: bool) -> tuple[PriceResponse, UpstreamRequest] | None:
        """Run one request. Returns None when a later attempt hit a transport error."""
        session = await self._sessions.get_valid_session()
        now = self._clock() if self._clock else None
        req = build_upstream_request(epic, resolution, self._from, self._to, now=now)
        if not req.range_adjusted:
            logger.warning("Using caller range as-is for {} @ {}: {}", epic, resolution.value, req.range_note)
        self.attempted.add((epic, resolution))
        try:
            return await self._source.get_prices(req, session), req
        except CapitalError as e:
            self.attempts.append(Attempt(epic, resolution, None, "fatal", summarize_error_text(str(e))))
            if first:
                raise UpstreamRejectedError(
                    str(e),
                    details={"status": None, "epic": epic, "resolution": resolution.value, "attempts": self.trace()},
                ) from e
            logger.warning("{} @ {} failed ({}); trying next resolution", epic, resolution.value, e)
            return None

    def trace(self) -> list[dict[str, Any]]:
        return [a.as_dict() for a in self.attempts]

    async def run(self) -> MarketData:
        epic = self.symbol
        last: tuple[str, Resolution, PriceResponse] | None = None

        while True:
            worklist: deque[Resolution] = deque([self.resolution])
            epic_fallback_eligible = False
            first = True

            while worklist:
                resolution = worklist.popleft()
                if resolution in self.tried_resolutions or (epic, resolution) in self.attempted:
                    continue

                result = await self._attempt(epic, resolution, first=first)
                was_first, first = first, False
                if result is None:
                    continue
                resp, req = result
                if resp.ok:
                    self.attempts.append(Attempt(epic, resolution, resp.status, "ok"))
                    return MarketData(
                        data=resp.json(),
                        used_epic=epic,
                        used_resolution=resolution,
                        requested_symbol=self.symbol,
                        attempts=list(self.attempts),
                        symbol_match=self.symbol_match,
                        request=req,
                    )

                last = (epic, resolution, resp)
                summary = summarize_error_text(resp.text)

                if is_fatal_status(resp.status):
                    self.attempts.append(Attempt(epic, resolution, resp.status, "fatal", summary))
                    if resp.status == 401:
                        self._sessions.invalidate()
                    if was_first:
                        raise UpstreamRejectedError(
                            self._failure_message(epic, resolution, resp.status, summary),
                            details={"status": resp.status, "epic": epic, "resolution": resolution.value, "attempts": self.trace()},
                        )
                    # Only the first attempt on an epic is decisive; later ones move on.
                    logger.warning("{} @ {} -> HTTP {} ({}); trying next resolution", epic, resolution.value, resp.status, summary or "-")
                    continue

                epic_fallback_eligible = epic_fallback_eligible or allows_epic_fallback(resp.status)
                if allows_resolution_fallback(resp.status, resp.text):
                    self.attempts.append(Attempt(epic, resolution, resp.status, "resolution_fallback", summary))
                    self.tried_resolutions.add(resolution)
                    chain = [r for r in fallback_chain(resolution) if r not in self.tried_resolutions]
                    rest = [r for r in worklist if r not in chain]
                    worklist = deque(chain + rest)
                    if chain:
                        logger.info("{} @ {} -> HTTP {}; trying {}", epic, resolution.value, resp.status, chain[0].value)
                else:
                    self.attempts.append(Attempt(epic, resolution, resp.status, "no_fallback", summary))
                    logger.info("{} @ {} -> HTTP {} ({}); no resolution fallback", epic, resolution.value, resp.status, summary or "-")

            if not epic_fallback_eligible or epic in self.tried_epics:
                break

            next_epic = await self._resolve_epic(epic)
            if next_epic is None:
                break
            # A different instrument may support resolutions the original rejected.
            self.tried_resolutions.clear()
            epic = next_epic

        if last is None:
            raise FallbackExhaustedError(f"No market data request was attempted for {self.symbol}")
        epic, resolution, resp = last
        summary = summarize_error_text(resp.text)
        raise FallbackExhaustedError(
            self._failure_message(epic, resolution, resp.status, summary),
            details={"status": resp.status, "epic": epic, "resolution": resolution.value, "attempts": self.trace()},
        )

    async def _resolve_epic(self, epic: str) -> str | None:
        self.tried_epics.add(epic)
        logger.info("Attempting to resolve epic for: {}", epic)
        session = await self._sessions.get_valid_session()
        match = await self._resolver.resolve_match(epic, session)
        if match is None or match.epic in self.tried_epics:
            logger.info("No alternative epic found for: {}", epic)
            return None
        if match.low_confidence:
            logger.warning("Low-confidence epic substitute {} for {} (first search result)", match.epic, epic)
        else:
            logger.info("Found alternative epic: {} for {} ({})", match.epic, epic, match.match)
        self.symbol_match = match
        return match.epic

    @staticmethod
    def _failure_message(epic: str, resolution: Resolution, status: int, summary: str) -> str:
        return f"Market data request failed ({status}) for {epic} @ {resolution.value}{f' - {summary}' if summary else ''}"


class CandleService:
    def __init__(
        self,
        source: PriceSource,
        sessions: SessionManager,
        *,
        resolver: SymbolResolver | None = None,
        deadline_seconds: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.source = source
        self.sessions = sessions
        self.resolver = resolver or SymbolResolver(source)
        self._deadline = float(deadline_seconds if deadline_seconds is not None else settings.CHART_FETCH_DEADLINE_SECONDS)
        self._clock = clock

    async def fetch_market_data(
        self,
        symbol: str,
        resolution: Resolution,
        from_: DateInput = None,
        to: DateInput = None,
    ) -> MarketData:
        search = FallbackSearch(
            self.source,
            self.sessions,
            self.resolver,
            symbol=symbol,
            resolution=resolution,
            from_=from_,
            to=to,
            clock=self._clock,
        )
        try:
            return await asyncio.wait_for(search.run(), timeout=self._deadline if self._deadline > 0 else None)
        except asyncio.TimeoutError:
            raise FetchDeadlineError(
                f"Market data request for {symbol} @ {resolution.value} exceeded {self._deadline:.0f}s",
                details={"attempts": search.trace()},
            ) from None

    async def search(self, term: str | None) -> Any:
        session = await self.sessions.get_valid_session()
        return await self.source.search_markets(term, session)
