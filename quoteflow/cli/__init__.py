"""Command line interface."""

from quoteflow.cli.main import app, create_app, run

__all__ = ["app", "create_app", "run"]
