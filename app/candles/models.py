from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.candles.resolutions import Resolution


def format_capital_date(dt: datetime) -> str:
    # Capital.com expects 'YYYY-MM-DDTHH:mm:ss' (UTC) without a zone suffix.
    return dt.strftime("%Y-%m-%dT%H:%M:%S")


@dataclass(frozen=True)
class UpstreamRequest:
    epic: str
    resolution: Resolution
    from_: datetime | str | None = None
    to: datetime | str | None = None
    max_bars: int = 1000
    # False when the range logic failed and the caller's raw values are passed through.
    range_adjusted: bool = True
    range_note: str | None = None

    def params(self) -> dict[str, str]:
        out: dict[str, str] = {"resolution": self.resolution.value}
        if self.from_:
            out["from"] = format_capital_date(self.from_) if isinstance(self.from_, datetime) else str(self.from_)
        if self.to:
            out["to"] = format_capital_date(self.to) if isinstance(self.to, datetime) else str(self.to)
        out["max"] = str(int(self.max_bars))
        return out


@dataclass(frozen=True)
class Attempt:
    epic: str
    resolution: Resolution
    status: int | None
    outcome: str  # ok | resolution_fallback | no_fallback | fatal
    summary: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "epic": self.epic,
            "resolution": self.resolution.value,
            "status": self.status,
            "outcome": self.outcome,
            "summary": self.summary or None,
        }


@dataclass(frozen=True)
class SymbolMatch:
    epic: str
    # epic | normalized_epic | market_id | instrument_name | partial_name | first_result
    match: str
    term: str

    @property
    def low_confidence(self) -> bool:
        return self.match == "first_result"

    def as_dict(self) -> dict[str, Any]:
        return {"epic": self.epic, "match": self.match, "term": self.term, "lowConfidence": self.low_confidence}


@dataclass
class MarketData:
    data: dict[str, Any]
    used_epic: str
    used_resolution: Resolution
    requested_symbol: str
    attempts: list[Attempt] = field(default_factory=list)
    symbol_match: SymbolMatch | None = None
    request: UpstreamRequest | None = None

    @property
    def used_fallback(self) -> bool:
        return len(self.attempts) > 1 or self.symbol_match is not None


class CandleSeries(BaseModel):
    symbol: str
    requested_symbol: str
    resolution: Resolution | None = None
    timestamps: list[int] = Field(default_factory=list, description="Epoch seconds, ascending")
    opens: list[float] = Field(default_factory=list)
    highs: list[float] = Field(default_factory=list)
    lows: list[float] = Field(default_factory=list)
    closes: list[float] = Field(default_factory=list)
    volumes: list[float] = Field(default_factory=list)
    # Structured record of how the series was obtained (attempts, symbol match, range handling).
    fallback: dict[str, Any] = Field(default_factory=dict)
