"""Run one live-refresh cycle against the sample universe and print the top movers.

    python examples/run_once.py
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from rich.console import Console
from rich.table import Table

from quoteflow import QuoteflowRuntime, QuoteflowSettings

console = Console()


async def main() -> None:
    settings = QuoteflowSettings(
        universe={"path": Path(__file__).with_name("universe.json")},
        refresh={"batch_delay": 0},
        storage={
            "instruments_database": ":memory:",
            "history_database": ":memory:",
        },
    )
    runtime = QuoteflowRuntime.build(settings)
    try:
        report = await runtime.refresh.trigger()
        if report is None:
            console.print("[red]refresh cycle failed[/red]")
            return
        console.print(f"refreshed {report.succeeded}/{report.total}, {report.failed} failed")

        movers = runtime.queries.top_movers()
        table = Table(title="Top movers")
        for column in ("side", "symbol", "price", "change %"):
            table.add_column(column)
        for side, rows in (("gainer", movers.gainers), ("loser", movers.losers)):
            for mover in rows:
                table.add_row(side, mover.symbol, f"{mover.current_price:.2f}", f"{mover.change_percent:+.2f}")
        console.print(table)
    finally:
        runtime.close()


if __name__ == "__main__":
    asyncio.run(main())
