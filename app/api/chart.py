from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from app.api.deps import get_candle_service
from app.candles.converter import from_market_data, to_chart_payload
from app.candles.resolutions import Resolution
from app.candles.service import CandleService

router = APIRouter(tags=["chart"])


@router.get("/")
@router.get("/chart")
async def chart(
    epic: str | None = Query(None),
    symbol: str | None = Query(None),
    resolution: str | None = Query(None, description="MINUTE, MINUTE_5, ... DAY, WEEK (default DAY)"),
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    svc: CandleService = Depends(get_candle_service),
):
    requested = (epic or symbol or "").strip()
    if not requested:
        return JSONResponse(status_code=400, content={"error": "Missing epic/symbol parameter"})

    try:
        res = Resolution.parse(resolution, default=Resolution.DAY)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    md = await svc.fetch_market_data(requested, res, from_, to)
    return to_chart_payload(from_market_data(md))
