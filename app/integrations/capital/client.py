from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx
from loguru import logger

from app.core.settings import settings
from app.utils.perf import perf_span

if TYPE_CHECKING:
    from app.auth.session_store import Session
    from app.candles.models import UpstreamRequest


@dataclass(frozen=True)
class CapitalConfig:
    base_url: str = "https://api-capital.backend-capital.com"
    api_key: str | None = None
    identifier: str | None = None
    password: str | None = None
    timeout_seconds: float = 30.0

    @classmethod
    def from_settings(cls) -> "CapitalConfig":
        return cls(
            base_url=settings.CAPITAL_API_BASE,
            api_key=settings.CAPITAL_API_KEY,
            identifier=settings.CAPITAL_IDENTIFIER,
            password=settings.CAPITAL_PASSWORD,
            timeout_seconds=float(settings.CAPITAL_HTTP_TIMEOUT_SECONDS),
        )


class CapitalError(RuntimeError):
    """Base error for everything that goes wrong talking to Capital.com.

    ``details`` is a JSON-able diagnostic returned to callers in the error envelope.
    """

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.details = details


class AuthenticationError(CapitalError):
    pass


@dataclass(frozen=True)
class PriceResponse:
    status: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> dict[str, Any]:
        if not self.text:
            return {}
        try:
            data = json.loads(self.text)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}


def summarize_error_text(text: str | None) -> str:
    """Short, human-readable summary of an upstream error body (<= 180 chars)."""
    if not text:
        return ""
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        if parsed.get("errorCode"):
            return str(parsed["errorCode"])
        if parsed.get("message"):
            return str(parsed["message"])
        return json.dumps(parsed, separators=(",", ":"))[:180]
    return f"{text[:177]}..." if len(text) > 180 else text


class CapitalClient:
    """Thin async wrapper over the Capital.com REST API.

    Owns one pooled ``httpx.AsyncClient`` for the process. Price requests return the raw
    status/body so the caller can decide on fallbacks; session and search calls raise.
    """

    def __init__(self, cfg: CapitalConfig | None = None, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.cfg = cfg or CapitalConfig.from_settings()
        self._client = httpx.AsyncClient(
            base_url=self.cfg.base_url.rstrip("/"),
            timeout=httpx.Timeout(self.cfg.timeout_seconds),
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "X-CAP-API-KEY": self.cfg.api_key or "",
            },
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _session_headers(session: "Session") -> dict[str, str]:
        return {"CST": session.cst, "X-SECURITY-TOKEN": session.security_token}

    async def create_session(self) -> tuple[str, str]:
        """Exchange credentials for a (CST, X-SECURITY-TOKEN) pair."""
        if not self.cfg.api_key or not self.cfg.identifier or not self.cfg.password:
            raise AuthenticationError("Capital.com credentials are not configured (CAPITAL_API_KEY/IDENTIFIER/PASSWORD)")

        body = {"identifier": self.cfg.identifier, "password": self.cfg.password, "encryptedPassword": False}
        try:
            with perf_span("capital.session"):
                r = await self._client.post("/api/v1/session", json=body)
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Session creation failed: {e}") from e

        if r.status_code >= 400:
            raise AuthenticationError(
                f"Session creation failed: {r.status_code} - {r.text[:500]}",
                details={"status": r.status_code},
            )

        cst = r.headers.get("CST")
        security_token = r.headers.get("X-SECURITY-TOKEN")
        if not cst or not security_token:
            raise AuthenticationError("Missing security tokens in session response")
        return cst, security_token

    async def get_prices(self, req: "UpstreamRequest", session: "Session") -> PriceResponse:
        path = f"/api/v1/prices/{quote(req.epic, safe='')}"
        try:
            with perf_span("capital.prices", epic=req.epic, resolution=req.resolution.value):
                r = await self._client.get(path, params=req.params(), headers=self._session_headers(session))
        except httpx.HTTPError as e:
            raise CapitalError(
                f"Market data request failed for {req.epic} @ {req.resolution.value}: {e}",
                details={"epic": req.epic, "resolution": req.resolution.value},
            ) from e
        return PriceResponse(status=r.status_code, text=r.text)

    async def search_markets(self, term: str | None, session: "Session") -> Any:
        params = {"searchTerm": term} if term else None
        try:
            with perf_span("capital.markets", term=term):
                r = await self._client.get("/api/v1/markets", params=params, headers=self._session_headers(session))
        except httpx.HTTPError as e:
            raise CapitalError(f"Markets search failed: {e}") from e

        if r.status_code >= 400:
            logger.warning("Capital.com markets search {} -> HTTP {}", term, r.status_code)
            text = r.text
            raise CapitalError(
                f"Markets search failed: {r.status_code}{f' - {text}' if text else ''}",
                details={"status": r.status_code},
            )
        try:
            return r.json()
        except ValueError as e:
            raise CapitalError(
                f"Markets search returned a non-JSON body: {summarize_error_text(r.text)}",
                details={"status": r.status_code},
            ) from e
