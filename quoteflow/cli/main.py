"""Main entry point for the quoteflow command line interface."""

from __future__ import annotations

import typer

from quoteflow.core.logging import configure_logging

from .commands import register as register_commands
from .formatters import create_formatter


def create_app() -> typer.Typer:
    """Create a Typer application instance for quoteflow."""

    app = typer.Typer(add_completion=False, help="quoteflow command line interface")

    @app.callback()
    def main(
        ctx: typer.Context,
        format: str = typer.Option(
            "table",
            "--format",
            "-f",
            help="Output format (table or jsonl).",
            show_default=True,
        ),
        log_level: str = typer.Option(
            "WARNING",
            "--log-level",
            help="Log level for the JSON log stream on stderr.",
            show_default=True,
        ),
        no_color: bool = typer.Option(False, "--no-color", help="Disable colorized table output."),
    ) -> None:
        ctx.ensure_object(dict)
        normalized_format = format.strip().lower()
        try:
            create_formatter(normalized_format, no_color=no_color)
        except ValueError as exc:
            raise typer.BadParameter(str(exc), param_hint="--format") from exc

        ctx.obj.update({"format": normalized_format, "no_color": no_color})
        configure_logging(log_level.upper())

    register_commands(app)
    return app


app = create_app()


def run() -> None:
    app()


if __name__ == "__main__":
    run()
