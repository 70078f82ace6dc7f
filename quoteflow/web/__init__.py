"""HTTP and WebSocket service."""

from quoteflow.web.app import create_app, create_service_app

__all__ = ["create_app", "create_service_app"]
