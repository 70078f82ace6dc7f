"""
Health check route.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder

from quoteflow import __version__
from quoteflow.core.logging import get_logger
from quoteflow.web.models import APIResponse

logger = get_logger(__name__)

router = APIRouter()

_STARTED = time.monotonic()


@router.get("/health", response_model=APIResponse)
async def health_check(request: Request) -> APIResponse:
    """Liveness plus a summary of scheduler state."""
    runtime = request.app.state.runtime
    progress = runtime.queries.progress()
    pause = runtime.bus.pause_state
    hub = request.app.state.broadcast_hub
    next_run = runtime.recorder.next_run
    data = {
        "status": "ok",
        "version": __version__,
        "uptimeSeconds": round(time.monotonic() - _STARTED, 3),
        "instruments": len(runtime.universe),
        "liveEntries": runtime.snapshot.live_count,
        "progress": progress,
        "pauseState": pause,
        "connections": hub.connection_count,
        "nextDailyIngest": next_run.due_at if next_run is not None and next_run.pending else None,
    }
    logger.debug("Health check completed")
    return APIResponse(success=True, data=jsonable_encoder(data, by_alias=True), message="healthy")
