from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Performance logging (console)
    # Logs request durations in ms. Useful for diagnosing a slow upstream.
    PERF_LOG_ENABLED: bool = True
    # Log slow operations (requests / upstream calls) at WARNING when >= this threshold.
    PERF_LOG_SLOW_MS: int = 250
    # Log every upstream call (session, prices, markets), not only slow ones. Noisy.
    PERF_LOG_UPSTREAM_ALWAYS: bool = False

    # CORS: the chart client runs inside a design-tool sandbox with an opaque origin.
    CORS_ALLOW_ORIGINS: list[str] = ["*"]

    # Capital.com
    CAPITAL_API_BASE: str = "https://api-capital.backend-capital.com"
    CAPITAL_API_KEY: str | None = None
    CAPITAL_IDENTIFIER: str | None = None
    CAPITAL_PASSWORD: str | None = None

    # Sessions are valid for 10 minutes upstream; refresh one minute early.
    CAPITAL_SESSION_TTL_SECONDS: int = 9 * 60
    # Upstream cap on bars per price request.
    CAPITAL_MAX_BARS: int = 1000
    # Per-call timeout for the shared httpx client.
    CAPITAL_HTTP_TIMEOUT_SECONDS: float = 30.0

    # Wall-clock budget for one whole fallback search (all attempts + symbol lookups).
    CHART_FETCH_DEADLINE_SECONDS: float = 45.0

    # Static fields of the chart metadata block.
    CHART_CURRENCY: str = "USD"
    CHART_EXCHANGE_NAME: str = "Capital.com"


settings = Settings()
