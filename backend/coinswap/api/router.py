from fastapi import APIRouter

from coinswap.api.routes import reports, trades

api_router = APIRouter()
api_router.include_router(trades.router)
api_router.include_router(reports.router)
