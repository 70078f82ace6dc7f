"""API routers."""

from quoteflow.web.routes.health_routes import router as health_router
from quoteflow.web.routes.live_routes import router as live_router
from quoteflow.web.routes.stream_routes import router as stream_router

__all__ = ["health_router", "live_router", "stream_router"]
