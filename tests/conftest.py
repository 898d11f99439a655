import json
import os
import sys

import pytest

# Ensure repository root is on sys.path so `import app` works when running pytest.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from app.integrations.capital.client import PriceResponse  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch):
    """Keep tests offline/deterministic even if the developer machine has live creds in env."""

    from app.core.settings import settings as app_settings

    monkeypatch.setattr(app_settings, "APP_ENV", "test", raising=False)
    monkeypatch.setattr(app_settings, "CAPITAL_API_KEY", None, raising=False)
    monkeypatch.setattr(app_settings, "CAPITAL_IDENTIFIER", None, raising=False)
    monkeypatch.setattr(app_settings, "CAPITAL_PASSWORD", None, raising=False)
    monkeypatch.setattr(app_settings, "CHART_FETCH_DEADLINE_SECONDS", 5.0, raising=False)
    yield


def price_record(ts: str, o: float, h: float, l: float, c: float, v: float = 10.0) -> dict:
    return {
        "snapshotTime": ts,
        "snapshotTimeUTC": ts,
        "openPrice": {"bid": o, "ask": o + 0.1},
        "highPrice": {"bid": h, "ask": h + 0.1},
        "lowPrice": {"bid": l, "ask": l + 0.1},
        "closePrice": {"bid": c, "ask": c + 0.1},
        "lastTradedVolume": v,
    }


class FakeCapitalClient:
    """In-memory stand-in for CapitalClient.

    ``prices`` maps (epic, resolution name) -> (status, body); anything unmapped answers
    ``default``. ``markets`` maps search term -> list of market dicts.
    """

    def __init__(self, prices=None, markets=None, default=(404, '{"errorCode":"error.not-found.epic"}')):
        self.prices = dict(prices or {})
        self.markets = dict(markets or {})
        self.default = default
        self.session_calls = 0
        self.price_calls = []
        self.search_calls = []
        self.closed = False

    async def create_session(self):
        self.session_calls += 1
        return f"CST-{self.session_calls}", f"XST-{self.session_calls}"

    async def get_prices(self, req, session):
        self.price_calls.append(req)
        status, body = self.prices.get((req.epic, req.resolution.value), self.default)
        text = body if isinstance(body, str) else json.dumps(body)
        return PriceResponse(status=status, text=text)

    async def search_markets(self, term, session):
        self.search_calls.append(term)
        return {"markets": list(self.markets.get(term, []))}

    async def aclose(self):
        self.closed = True

    @property
    def attempted_pairs(self):
        return [(r.epic, r.resolution.value) for r in self.price_calls]


@pytest.fixture
def ok_payload():
    return {
        "prices": [
            price_record("2024-10-14T10:00:00", 1.0, 2.0, 0.5, 1.5, 100),
            price_record("2024-10-14T11:00:00", 1.5, 2.5, 1.0, 2.0, 200),
        ]
    }
