"""Pure wall-clock helpers for the daily run time.

All functions take an aware ``now`` and return aware UTC datetimes. The run
instant is resolved for the target local date, so the UTC offset follows DST
changes. A local time that falls in a spring-forward gap resolves with
``fold=0`` semantics (it maps to the instant after the gap); an ambiguous
autumn time resolves to its first occurrence.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo


def _require_aware(now: datetime) -> None:
    if now.tzinfo is None or now.utcoffset() is None:
        raise ValueError("now must be timezone-aware")


def local_date(now: datetime, tz: ZoneInfo) -> date:
    """Calendar date of ``now`` in ``tz``."""

    _require_aware(now)
    return now.astimezone(tz).date()


def run_instant_for_date(day: date, hour: int, minute: int, tz: ZoneInfo) -> datetime:
    """UTC instant of ``hour:minute`` local time on ``day``."""

    local = datetime.combine(day, time(hour, minute), tzinfo=tz)
    # Round-trip through UTC normalises non-existent wall times.
    return local.astimezone(UTC)


def next_run_instant(now: datetime, hour: int, minute: int, tz: ZoneInfo) -> datetime:
    """Next UTC instant strictly after ``now`` at which it is ``hour:minute`` in ``tz``."""

    today = local_date(now, tz)
    candidate = run_instant_for_date(today, hour, minute, tz)
    if candidate <= now:
        candidate = run_instant_for_date(today + timedelta(days=1), hour, minute, tz)
    return candidate


def delay_until(target: datetime, now: datetime) -> float:
    """Seconds from ``now`` to ``target``, never negative."""

    return max(0.0, (target - now).total_seconds())


def should_catch_up(
    now: datetime,
    last_success_date: date | None,
    hour: int,
    minute: int,
    tz: ZoneInfo,
) -> bool:
    """True when today's run instant has passed and no run succeeded today (local date)."""

    today = local_date(now, tz)
    if last_success_date is not None and last_success_date >= today:
        return False
    return now >= run_instant_for_date(today, hour, minute, tz)
