import httpx
from fastapi.testclient import TestClient

from conftest import FakeCapitalClient

from app.integrations.capital.client import CapitalClient, CapitalConfig
from app.main import create_app


def _client(fake: FakeCapitalClient, **kw) -> TestClient:
    return TestClient(create_app(capital_client=fake), **kw)


def test_health_ok():
    client = _client(FakeCapitalClient())
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["session_cached"] is False
    assert r.headers.get("x-request-id")


def test_chart_missing_symbol_is_400():
    client = _client(FakeCapitalClient())
    r = client.get("/chart")
    assert r.status_code == 400
    assert r.json() == {"error": "Missing epic/symbol parameter"}


def test_chart_unknown_resolution_is_400():
    client = _client(FakeCapitalClient())
    r = client.get("/chart", params={"epic": "AAPL", "resolution": "FORTNIGHT"})
    assert r.status_code == 400
    assert "FORTNIGHT" in r.json()["error"]


def test_chart_ok_defaults_to_day(ok_payload):
    fake = FakeCapitalClient(prices={("AAPL", "DAY"): (200, ok_payload)})
    client = _client(fake)

    for path in ("/chart", "/"):
        r = client.get(path, params={"symbol": "AAPL"})
        assert r.status_code == 200
        result = r.json()["chart"]["result"][0]
        assert result["meta"]["symbol"] == "AAPL"
        assert result["meta"]["requestedSymbol"] == "AAPL"
        assert result["meta"]["resolution"] == "DAY"
        assert result["timestamp"] == [1728900000, 1728903600]
        assert result["indicators"]["quote"][0]["close"] == [1.5, 2.0]

    # Session created once, reused by the second request.
    assert fake.session_calls == 1


def test_chart_epic_wins_over_symbol_and_passes_range(ok_payload):
    fake = FakeCapitalClient(prices={("EURUSD", "HOUR"): (200, ok_payload)})
    client = _client(fake)
    r = client.get(
        "/chart",
        params={"epic": "EURUSD", "symbol": "IGNORED", "resolution": "hour", "from": "2024-10-01T10:30:00Z", "to": "2024-10-02T10:30:00Z"},
    )
    assert r.status_code == 200
    req = fake.price_calls[0]
    assert req.params() == {"resolution": "HOUR", "from": "2024-10-01T10:00:00", "to": "2024-10-02T10:00:00", "max": "1000"}


def test_chart_fallback_trace_in_meta(ok_payload):
    fake = FakeCapitalClient(
        prices={
            ("EURUSD", "MINUTE_5"): (400, '{"errorCode":"error.invalid.daterange"}'),
            ("EURUSD", "MINUTE_15"): (200, ok_payload),
        }
    )
    r = _client(fake).get("/chart", params={"epic": "EURUSD", "resolution": "MINUTE_5"})
    assert r.status_code == 200
    meta = r.json()["chart"]["result"][0]["meta"]
    assert meta["resolution"] == "MINUTE_15"
    assert meta["fallback"]["used"] is True
    assert [a["outcome"] for a in meta["fallback"]["attempts"]] == ["resolution_fallback", "ok"]


def test_chart_upstream_failure_uses_error_envelope():
    fake = FakeCapitalClient(prices={("AAPL", "DAY"): (403, '{"errorCode":"error.security.forbidden"}')})
    r = _client(fake).get("/chart", params={"epic": "AAPL"})
    assert r.status_code == 500
    body = r.json()
    assert "error.security.forbidden" in body["error"]
    assert body["details"]["status"] == 403


def test_chart_auth_failure_uses_error_envelope():
    class NoAuth(FakeCapitalClient):
        async def create_session(self):
            from app.integrations.capital.client import AuthenticationError

            raise AuthenticationError("Missing security tokens in session response")

    r = _client(NoAuth()).get("/chart", params={"epic": "AAPL"})
    assert r.status_code == 500
    assert r.json()["error"] == "Missing security tokens in session response"
    assert r.json()["details"] == "AuthenticationError"


def test_search_passes_through():
    fake = FakeCapitalClient(markets={"gold": [{"epic": "GOLD", "instrumentName": "Gold"}]})
    r = _client(fake).get("/search", params={"term": "gold"})
    assert r.status_code == 200
    assert r.json() == {"markets": [{"epic": "GOLD", "instrumentName": "Gold"}]}


def test_search_failure_is_500():
    class Broken(FakeCapitalClient):
        async def search_markets(self, term, session):
            from app.integrations.capital.client import CapitalError

            raise CapitalError("Markets search failed: 502")

    r = _client(Broken()).get("/search", params={"term": "x"})
    assert r.status_code == 500
    assert r.json()["error"] == "Markets search failed: 502"


def test_unknown_path_is_plain_404():
    r = _client(FakeCapitalClient()).get("/nope")
    assert r.status_code == 404
    assert r.text == "Not Found"


def test_cors_preflight_and_simple_requests():
    client = _client(FakeCapitalClient())
    r = client.options(
        "/chart",
        headers={"Origin": "null", "Access-Control-Request-Method": "GET"},
    )
    assert r.status_code == 200
    assert r.headers["access-control-allow-origin"] == "*"

    r2 = client.get("/nope", headers={"Origin": "https://www.figma.com"})
    assert r2.headers["access-control-allow-origin"] == "*"


def test_search_non_json_upstream_keeps_envelope_and_cors():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/v1/session":
            return httpx.Response(200, headers={"CST": "c", "X-SECURITY-TOKEN": "s"}, json={})
        return httpx.Response(200, text="<html>maintenance</html>")

    cfg = CapitalConfig(base_url="https://capital.test", api_key="k", identifier="i", password="p")
    capital = CapitalClient(cfg, transport=httpx.MockTransport(handler))
    with TestClient(create_app(capital_client=capital)) as client:
        r = client.get("/search", params={"term": "gold"}, headers={"Origin": "https://www.figma.com"})

    assert r.status_code == 500
    assert r.headers["access-control-allow-origin"] == "*"
    assert r.json()["error"].startswith("Markets search returned a non-JSON body")
