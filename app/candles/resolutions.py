from __future__ import annotations

from enum import Enum


class Resolution(str, Enum):
    MINUTE = "MINUTE"
    MINUTE_5 = "MINUTE_5"
    MINUTE_15 = "MINUTE_15"
    MINUTE_30 = "MINUTE_30"
    HOUR = "HOUR"
    HOUR_4 = "HOUR_4"
    DAY = "DAY"
    WEEK = "WEEK"

    @property
    def bar_seconds(self) -> int:
        return _BAR_SECONDS[self]

    @property
    def is_intraday(self) -> bool:
        return 0 < self.bar_seconds < 86400

    @classmethod
    def parse(cls, value: str | None, default: "Resolution | None" = None) -> "Resolution":
        """Case-insensitive lookup by name; raises ValueError for unknown names."""
        raw = str(value or "").strip().upper()
        if not raw:
            if default is None:
                raise ValueError("resolution is required")
            return default
        try:
            return cls(raw)
        except ValueError:
            raise ValueError(f"Unsupported resolution: {value}") from None


_BAR_SECONDS: dict[Resolution, int] = {
    Resolution.MINUTE: 60,
    Resolution.MINUTE_5: 5 * 60,
    Resolution.MINUTE_15: 15 * 60,
    Resolution.MINUTE_30: 30 * 60,
    Resolution.HOUR: 60 * 60,
    Resolution.HOUR_4: 4 * 60 * 60,
    Resolution.DAY: 24 * 60 * 60,
    Resolution.WEEK: 7 * 24 * 60 * 60,
}

# Coarser resolutions to try, in order, when the upstream rejects a window.
_FALLBACKS: dict[Resolution, tuple[Resolution, ...]] = {
    Resolution.MINUTE: (
        Resolution.MINUTE_5,
        Resolution.MINUTE_15,
        Resolution.MINUTE_30,
        Resolution.HOUR,
        Resolution.HOUR_4,
        Resolution.DAY,
        Resolution.WEEK,
    ),
    Resolution.MINUTE_5: (
        Resolution.MINUTE_15,
        Resolution.MINUTE_30,
        Resolution.HOUR,
        Resolution.HOUR_4,
        Resolution.DAY,
        Resolution.WEEK,
    ),
    Resolution.MINUTE_15: (Resolution.MINUTE_30, Resolution.HOUR, Resolution.HOUR_4, Resolution.DAY, Resolution.WEEK),
    Resolution.MINUTE_30: (Resolution.HOUR, Resolution.HOUR_4, Resolution.DAY, Resolution.WEEK),
    Resolution.HOUR: (Resolution.HOUR_4, Resolution.DAY, Resolution.WEEK),
    Resolution.HOUR_4: (Resolution.DAY, Resolution.WEEK),
    Resolution.DAY: (Resolution.WEEK,),
    Resolution.WEEK: (),
}

DEFAULT_FALLBACK_CHAIN: tuple[Resolution, ...] = (Resolution.DAY, Resolution.WEEK)


def fallback_chain(resolution: Resolution) -> tuple[Resolution, ...]:
    return _FALLBACKS.get(resolution, DEFAULT_FALLBACK_CHAIN)
