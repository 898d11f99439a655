from __future__ import annotations

from datetime import datetime
from typing import Any

from app.candles.models import CandleSeries, MarketData
from app.candles.request_builder import parse_instant
from app.candles.resolutions import Resolution
from app.core.settings import settings


def _epoch_seconds(value: Any) -> int:
    # Capital.com timestamp format: "2024-10-14T10:00:00" (UTC, optional fraction).
    if not value:
        return 0
    dt = parse_instant(value if isinstance(value, (str, datetime)) else str(value))
    return int(dt.timestamp()) if dt is not None else 0


def _price(record: dict[str, Any], key: str) -> float:
    quote = record.get(key)
    if not isinstance(quote, dict):
        return 0.0
    for side in ("bid", "ask"):
        v = quote.get(side)
        if v is None:
            continue
        try:
            return float(v)
        except (TypeError, ValueError):
            continue
    return 0.0


def _volume(record: dict[str, Any]) -> float:
    try:
        return float(record.get("lastTradedVolume") or 0)
    except (TypeError, ValueError):
        return 0.0


def to_canonical(
    payload: dict[str, Any] | None,
    used_epic: str,
    used_resolution: Resolution | None,
    requested_symbol: str | None = None,
) -> CandleSeries:
    """Map a Capital.com /prices payload to a CandleSeries. Never raises on missing fields.

    Record order is kept as returned upstream (ascending).
    """

    series = CandleSeries(symbol=used_epic, requested_symbol=requested_symbol or used_epic, resolution=used_resolution)
    prices = payload.get("prices") if isinstance(payload, dict) else None
    if not isinstance(prices, list):
        return series

    for rec in prices:
        if not isinstance(rec, dict):
            rec = {}
        series.timestamps.append(_epoch_seconds(rec.get("snapshotTimeUTC") or rec.get("snapshotTime")))
        series.opens.append(_price(rec, "openPrice"))
        series.highs.append(_price(rec, "highPrice"))
        series.lows.append(_price(rec, "lowPrice"))
        series.closes.append(_price(rec, "closePrice"))
        series.volumes.append(_volume(rec))
    return series


def from_market_data(md: MarketData) -> CandleSeries:
    series = to_canonical(md.data, md.used_epic, md.used_resolution, md.requested_symbol)
    req = md.request
    series.fallback = {
        "used": md.used_fallback,
        "attempts": [a.as_dict() for a in md.attempts],
        "symbolMatch": md.symbol_match.as_dict() if md.symbol_match else None,
        "rangeAdjusted": bool(req.range_adjusted) if req is not None else True,
        "rangeNote": req.range_note if req is not None else None,
    }
    return series


def to_chart_payload(series: CandleSeries) -> dict[str, Any]:
    """Yahoo Finance-style chart envelope consumed by the chart client."""
    return {
        "chart": {
            "result": [
                {
                    "meta": {
                        "symbol": series.symbol,
                        "requestedSymbol": series.requested_symbol or series.symbol,
                        "resolution": series.resolution.value if series.resolution else None,
                        "currency": settings.CHART_CURRENCY,
                        "exchangeName": settings.CHART_EXCHANGE_NAME,
                        "fallback": series.fallback or None,
                    },
                    "timestamp": list(series.timestamps),
                    "indicators": {
                        "quote": [
                            {
                                "open": list(series.opens),
                                "high": list(series.highs),
                                "low": list(series.lows),
                                "close": list(series.closes),
                                "volume": list(series.volumes),
                            }
                        ]
                    },
                }
            ]
        }
    }
