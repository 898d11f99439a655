from __future__ import annotations

import re
from typing import Any, Callable, Protocol

from loguru import logger

from app.auth.session_store import Session
from app.candles.models import SymbolMatch

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")

# Extra search terms for volatility-index requests; the catalog lists VIX under several names.
_VOLATILITY_ALIASES = ("VIX", "VIX.XO", "VOLATILITY", "CBOE VIX")


class MarketSearcher(Protocol):
    async def search_markets(self, term: str | None, session: Session) -> Any: ...


def normalize(value: Any) -> str:
    return _NON_ALNUM.sub("", str(value)).lower() if value else ""


def search_variants(term: str) -> list[str]:
    stripped = _NON_ALNUM.sub("", term)
    variants = [term, stripped, stripped.lower()]
    upper = term.upper()
    if "VIX" in upper or "VOLATILITY" in upper:
        variants.extend(_VOLATILITY_ALIASES)

    out: list[str] = []
    for v in variants:
        if v and v not in out:
            out.append(v)
    return out


def _first(markets: list[dict[str, Any]], pred: Callable[[dict[str, Any]], bool]) -> dict[str, Any] | None:
    return next((m for m in markets if pred(m)), None)


def pick_market(markets: list[dict[str, Any]], term: str) -> SymbolMatch | None:
    """Choose the best market for ``term`` using a fixed priority; None if no market carries an epic."""
    markets = [m for m in markets if isinstance(m, dict) and m.get("epic")]
    if not markets:
        return None

    lower = term.lower()
    norm = normalize(term)
    rules: list[tuple[str, Callable[[dict[str, Any]], bool]]] = [
        ("epic", lambda m: str(m["epic"]).lower() == lower),
        ("normalized_epic", lambda m: bool(norm) and normalize(m.get("epic")) == norm),
        ("market_id", lambda m: bool(norm) and normalize(m.get("marketId")) == norm),
        ("instrument_name", lambda m: bool(norm) and normalize(m.get("instrumentName")) == norm),
        ("partial_name", lambda m: bool(m.get("instrumentName")) and lower in str(m["instrumentName"]).lower()),
    ]
    for kind, pred in rules:
        hit = _first(markets, pred)
        if hit is not None:
            return SymbolMatch(epic=str(hit["epic"]), match=kind, term=term)

    return SymbolMatch(epic=str(markets[0]["epic"]), match="first_result", term=term)


class SymbolResolver:
    def __init__(self, searcher: MarketSearcher) -> None:
        self._searcher = searcher

    async def resolve_match(self, search_term: str, session: Session) -> SymbolMatch | None:
        try:
            for term in search_variants(search_term):
                result = await self._searcher.search_markets(term, session)
                markets = result.get("markets") if isinstance(result, dict) else None
                if not isinstance(markets, list) or not markets:
                    continue
                match = pick_market(markets, term)
                if match is not None and match.epic:
                    return match
        except Exception as e:
            logger.warning("Failed to resolve epic for {} via markets search: {}", search_term, e)
            return None
        return None

    async def resolve_candidate(self, search_term: str, session: Session) -> str | None:
        match = await self.resolve_match(search_term, session)
        return match.epic if match else None
