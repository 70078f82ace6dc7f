"""
Live snapshot, progress, history and analytics endpoints.
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder

from quoteflow.core.services.queries import QueryService
from quoteflow.web.models import APIResponse

router = APIRouter()


def get_queries(request: Request) -> QueryService:
    return request.app.state.runtime.queries


def _ok(data: object, message: str | None = None) -> APIResponse:
    return APIResponse(success=True, data=jsonable_encoder(data, by_alias=True), message=message)


@router.get("/symbols", response_model=APIResponse)
async def list_symbols(queries: QueryService = Depends(get_queries)) -> APIResponse:
    """Instrument universe in load order."""
    symbols = queries.symbols()
    return _ok(symbols, f"{len(symbols)} instruments")


@router.get("/cached-data", response_model=APIResponse)
async def cached_data(queries: QueryService = Depends(get_queries)) -> APIResponse:
    """Current snapshot, one entry per instrument."""
    return _ok(queries.snapshot())


@router.get("/live-data", response_model=APIResponse)
async def live_data(queries: QueryService = Depends(get_queries)) -> APIResponse:
    """Snapshot together with refresh progress and pause state."""
    return _ok(
        {
            "data": queries.snapshot(),
            "progress": queries.progress(),
            "pauseState": queries.pause_state(),
        }
    )


@router.get("/live-data/{symbol}", response_model=APIResponse)
async def live_data_for_symbol(symbol: str, queries: QueryService = Depends(get_queries)) -> APIResponse:
    return _ok(queries.snapshot_entry(symbol))


@router.get("/update-progress", response_model=APIResponse)
async def update_progress(queries: QueryService = Depends(get_queries)) -> APIResponse:
    return _ok(queries.progress())


@router.get("/recent-updates", response_model=APIResponse)
async def recent_updates(queries: QueryService = Depends(get_queries)) -> APIResponse:
    """Latest update per instrument for the most recently refreshed instruments."""
    return _ok(queries.recent_updates())


@router.get("/top-movers", response_model=APIResponse)
async def top_movers(queries: QueryService = Depends(get_queries)) -> APIResponse:
    return _ok(queries.top_movers())


@router.get("/pause-state", response_model=APIResponse)
async def pause_state(queries: QueryService = Depends(get_queries)) -> APIResponse:
    return _ok(queries.pause_state())


@router.get("/ingest/status", response_model=APIResponse)
async def ingest_status(queries: QueryService = Depends(get_queries)) -> APIResponse:
    return _ok(queries.ingest_status())


@router.get("/chart/{symbol}", response_model=APIResponse)
async def chart(
    symbol: str,
    range_name: str = Query("1mo", alias="range", description="1d, 5d, 1mo, 1y or max"),
    queries: QueryService = Depends(get_queries),
) -> APIResponse:
    return _ok(await queries.chart(symbol, range_name))


@router.get("/insights/{symbol}", response_model=APIResponse)
async def insights(
    symbol: str,
    range_name: str = Query("1mo", alias="range"),
    queries: QueryService = Depends(get_queries),
) -> APIResponse:
    """Chart, fundamentals, options, insider activity and analyst recommendations."""
    return _ok(await queries.insights(symbol, range_name))


@router.get("/history/{symbol}", response_model=APIResponse)
async def history(
    symbol: str,
    start: date | None = Query(None, description="First date (YYYY-MM-DD)"),
    end: date | None = Query(None, description="Last date (YYYY-MM-DD)"),
    queries: QueryService = Depends(get_queries),
) -> APIResponse:
    bars = queries.historical_bars(symbol, start, end)
    return _ok(bars, f"{len(bars)} bars")


@router.get("/indicators/{symbol}", response_model=APIResponse)
async def indicators(
    symbol: str,
    start: date | None = Query(None),
    end: date | None = Query(None),
    sma: int = Query(20, ge=2, le=400),
    ema: int = Query(20, ge=2, le=400),
    rsi: int = Query(14, ge=2, le=100),
    queries: QueryService = Depends(get_queries),
) -> APIResponse:
    """SMA, EMA, RSI and MACD computed from stored daily bars."""
    return _ok(queries.indicators(symbol, start=start, end=end, sma_period=sma, ema_period=ema, rsi_period=rsi))
