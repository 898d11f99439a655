from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_candle_service
from app.candles.service import CandleService

router = APIRouter(tags=["search"])


@router.get("/search")
async def search(
    term: str | None = Query(None),
    svc: CandleService = Depends(get_candle_service),
):
    """Capital.com market search, passed through unmodified."""
    return await svc.search(term)
