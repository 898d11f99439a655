from __future__ import annotations

from fastapi import APIRouter

from app.api import chart, search

api_router = APIRouter()
api_router.include_router(chart.router)
api_router.include_router(search.router)
