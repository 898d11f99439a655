from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.integrations.capital.client import CapitalError


def error_envelope(status_code: int, error: str, details=None) -> JSONResponse:
    content: dict = {"error": error}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(CapitalError)
    async def _capital_error(request: Request, exc: CapitalError):
        logger.error("{} {} failed: {}", request.method, request.url.path, exc)
        return error_envelope(500, str(exc), exc.details if exc.details is not None else type(exc).__name__)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return PlainTextResponse("Not Found", status_code=404)
        return error_envelope(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on {} {}", request.method, request.url.path)
        return error_envelope(500, str(exc) or type(exc).__name__, type(exc).__name__)
