from __future__ import annotations

from fastapi import Request

from app.candles.service import CandleService


def get_candle_service(request: Request) -> CandleService:
    return request.app.state.candles
