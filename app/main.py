from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.router import api_router
from app.auth.session_store import SessionManager
from app.candles.service import CandleService, PriceSource
from app.core.errors import install_error_handlers
from app.core.middleware import PerformanceLogMiddleware, RequestContextMiddleware
from app.core.settings import settings
from app.integrations.capital.client import CapitalClient
from app.utils.logger import configure_logging


def create_app(capital_client: PriceSource | None = None) -> FastAPI:
    """Build the proxy.

    ``capital_client`` replaces the real Capital.com client (tests pass a fake). The
    session cache and candle service are created here, one per app, and live as long
    as the app does.
    """

    configure_logging(settings.LOG_LEVEL)

    client = capital_client if capital_client is not None else CapitalClient()
    sessions = SessionManager(client)
    candles = CandleService(client, sessions)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        aclose = getattr(client, "aclose", None)
        if aclose is not None:
            await aclose()

    app = FastAPI(
        title="Capital.com Chart Proxy",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.capital = client
    app.state.sessions = sessions
    app.state.candles = candles

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(PerformanceLogMiddleware)
    # CORS last so it wraps every response, preflight included. The chart client calls
    # from an opaque origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    install_error_handlers(app)

    @app.get("/health")
    def health() -> dict:
        return {
            "status": "ok",
            "env": settings.APP_ENV,
            "session_cached": sessions.cached is not None,
        }

    app.include_router(api_router)

    return app


app = create_app()
