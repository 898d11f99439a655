"""Turn a caller's (symbol, resolution, from, to) into a valid Capital.com price request.

Capital.com validates windows per resolution: intraday requests may span at most
``max`` bars and their bounds must sit on bar boundaries, and DAY/WEEK bars are keyed by
UTC calendar day. Adjusting the window up front avoids rejections that would otherwise
look like "no data" to the fallback search.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from app.candles.models import UpstreamRequest
from app.candles.resolutions import Resolution
from app.core.settings import settings

DateInput = datetime | str | None

# Fractional seconds are dropped; fromisoformat on 3.10 rejects 1, 2, 4 or 5 digits.
_FRACTION = re.compile(r"(\d{2}:\d{2}:\d{2})\.\d+")


def parse_instant(value: DateInput) -> datetime | None:
    """Parse an ISO-8601-ish date or date-time; naive values are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        raw = str(value).strip()
        if not raw:
            return None
        raw = _FRACTION.sub(r"\1", raw)
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def align_to_bar(dt: datetime, bar_seconds: int) -> datetime:
    ts = int(dt.timestamp())
    return datetime.fromtimestamp(ts - ts % bar_seconds, tz=timezone.utc)


def utc_midnight(dt: datetime) -> datetime:
    return datetime(dt.year, dt.month, dt.day, tzinfo=timezone.utc)


def _adjust_window(
    resolution: Resolution,
    from_raw: DateInput,
    to_raw: DateInput,
    now: datetime,
    max_bars: int,
) -> tuple[datetime | None, datetime | None]:
    bar_seconds = resolution.bar_seconds
    bar = timedelta(seconds=bar_seconds)
    max_window = bar * max_bars

    to_parsed = parse_instant(to_raw)
    to_dt = to_parsed if to_parsed is not None and to_parsed <= now else now

    if from_raw is not None and str(from_raw).strip():
        from_dt = parse_instant(from_raw)
        if from_dt is None:
            # Unparsable: let the upstream pick its default window.
            return None, to_dt if to_parsed is not None else None

        if from_dt > to_dt:
            from_dt = to_dt - max_window
        if resolution.is_intraday:
            if to_dt - from_dt > max_window:
                from_dt = to_dt - max_window
            from_dt = align_to_bar(from_dt, bar_seconds)
            to_dt = align_to_bar(to_dt, bar_seconds)
        else:
            from_dt = utc_midnight(from_dt)
            to_dt = utc_midnight(to_dt)
        if from_dt >= to_dt:
            from_dt = to_dt - bar
        return from_dt, to_dt

    if resolution.is_intraday and to_parsed is not None:
        to_dt = align_to_bar(to_dt, bar_seconds)
        from_dt = align_to_bar(to_dt - max_window, bar_seconds)
        if from_dt >= to_dt:
            from_dt = to_dt - bar
        return from_dt, to_dt

    # No "from": no window is forced. Only pass "to" along if the caller asked for one.
    return None, to_dt if to_parsed is not None else None


def build_upstream_request(
    symbol: str,
    resolution: Resolution,
    from_: DateInput = None,
    to: DateInput = None,
    *,
    now: datetime | None = None,
    max_bars: int | None = None,
) -> UpstreamRequest:
    """Build the request for one (epic, resolution) attempt. Never touches the network."""
    now = now or datetime.now(timezone.utc)
    max_bars = int(max_bars or settings.CAPITAL_MAX_BARS)

    try:
        from_adj, to_adj = _adjust_window(resolution, from_, to, now, max_bars)
    except (OverflowError, ValueError, OSError) as e:
        # Best effort only: hand the caller's values to the upstream untouched.
        return UpstreamRequest(
            epic=symbol,
            resolution=resolution,
            from_=from_ or None,
            to=to or None,
            max_bars=max_bars,
            range_adjusted=False,
            range_note=f"range adjustment skipped: {e}",
        )

    return UpstreamRequest(epic=symbol, resolution=resolution, from_=from_adj, to=to_adj, max_bars=max_bars)
