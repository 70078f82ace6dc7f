"""Helpers shared across CLI commands."""

from __future__ import annotations

import json
from collections.abc import Mapping

import typer

from quoteflow.cli.formatters import OutputFormatter, create_formatter

VALIDATION_EXIT_CODE = 2
PROVIDER_EXIT_CODE = 3
SYSTEM_EXIT_CODE = 4


def get_formatter(ctx: typer.Context) -> OutputFormatter:
    ctx.ensure_object(dict)
    data = ctx.obj or {}
    return create_formatter(str(data.get("format", "table")), no_color=bool(data.get("no_color", False)))


def emit_error(message: str, code: str, *, details: Mapping[str, object] | None = None) -> None:
    """Print a structured error payload to stderr."""

    payload: dict[str, object] = {"code": code, "message": message}
    if details:
        payload["details"] = {key: value if isinstance(value, (str, int, float, bool)) or value is None else str(value) for key, value in details.items()}
    typer.echo(json.dumps(payload, ensure_ascii=False, default=str), err=True)
