"""Concurrency-limited batch runner."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass(slots=True)
class Outcome(Generic[T, R]):
    """Settled result for one input item."""

    item: T
    index: int
    value: R | None = None
    error: BaseException | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.skipped


def partition(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into consecutive chunks of at most ``size`` elements."""

    size = max(1, size)
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


async def run_with_concurrency(
    items: Sequence[T],
    concurrency: int,
    worker: Callable[[T], Awaitable[R]],
    *,
    cancel_event: asyncio.Event | None = None,
) -> list[Outcome[T, R]]:
    """Apply ``worker`` to every item with at most ``concurrency`` calls in flight.

    Outcomes come back in input order. A worker exception is captured on that
    item's outcome and never aborts the others. Once ``cancel_event`` is set no
    further items are dispatched; in-flight items finish and the rest are
    reported as skipped.
    """

    outcomes: list[Outcome[T, R]] = [Outcome(item=item, index=index) for index, item in enumerate(items)]
    if not items:
        return outcomes

    limit = max(1, min(concurrency, len(items)))
    next_index = 0

    async def _drain() -> None:
        nonlocal next_index
        while next_index < len(items):
            if cancel_event is not None and cancel_event.is_set():
                return
            index = next_index
            next_index += 1
            outcome = outcomes[index]
            try:
                outcome.value = await worker(outcome.item)
            except Exception as exc:
                outcome.error = exc

    await asyncio.gather(*(_drain() for _ in range(limit)))

    for outcome in outcomes[next_index:]:
        outcome.skipped = True
    return outcomes
