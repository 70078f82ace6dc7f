"""Top gainers and losers derived from the live snapshot."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from quoteflow.core.models import SnapshotEntry, TopMover, TopMovers
from quoteflow.core.services.timers import utc_now


def _mover(entry: SnapshotEntry) -> TopMover | None:
    price, previous = entry.current_price, entry.previous_close
    if price is None or previous is None or previous <= 0:
        return None
    change = price - previous
    return TopMover(
        symbol=entry.symbol,
        name=entry.name,
        current_price=price,
        previous_close=previous,
        change=change,
        change_percent=change / previous * 100,
    )


def compute_top_movers(
    entries: Iterable[SnapshotEntry],
    limit: int = 10,
    *,
    now: datetime | None = None,
) -> TopMovers:
    """Rank entries by percent change against the previous close.

    Entries without a price or with a non-positive previous close are ignored.
    Gainers hold strictly positive changes (largest first), losers strictly
    negative ones (most negative first); unchanged instruments appear in neither.
    """

    movers = [mover for mover in (_mover(entry) for entry in entries) if mover is not None]
    gainers = sorted((m for m in movers if m.change_percent > 0), key=lambda m: m.change_percent, reverse=True)
    losers = sorted((m for m in movers if m.change_percent < 0), key=lambda m: m.change_percent)
    return TopMovers(gainers=gainers[:limit], losers=losers[:limit], timestamp=now or utc_now())
