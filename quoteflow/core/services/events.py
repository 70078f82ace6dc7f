"""In-process publish/subscribe bus shared by the schedulers and the broadcast layer."""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from quoteflow.core.logging import get_logger
from quoteflow.core.models import PauseState, TopMovers
from quoteflow.core.services.timers import ClockFn, utc_now

logger = get_logger(__name__)


class EventKind(str, Enum):
    PROGRESS = "progress"
    DATA_UPDATE = "data_update"
    PAUSE_STATE = "pause_state"
    TOP_MOVERS = "top_movers"


@dataclass(slots=True, frozen=True)
class Event:
    kind: EventKind
    payload: Any
    published_at: datetime


Handler = Callable[[Event], Awaitable[None] | None]


class EventBus:
    """Delivers events to subscribers synchronously; coroutine handlers run as tasks.

    A handler that raises is logged and skipped. The bus also owns the current
    :class:`PauseState` and remembers the last published top movers so late
    subscribers can catch up.
    """

    def __init__(self, *, clock: ClockFn = utc_now) -> None:
        self._clock = clock
        self._handlers: defaultdict[EventKind | None, list[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Future[Any]] = set()
        self._pause_state = PauseState()
        self._last: dict[EventKind, Event] = {}

    def subscribe(self, kind: EventKind | None, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``kind`` (``None`` means every kind). Returns an unsubscribe callable."""

        self._handlers[kind].append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(kind, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def publish(self, kind: EventKind, payload: Any) -> Event:
        event = Event(kind=kind, payload=payload, published_at=self._clock())
        self._last[kind] = event
        for handler in [*self._handlers.get(kind, ()), *self._handlers.get(None, ())]:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    future = asyncio.ensure_future(result)
                    self._pending.add(future)
                    future.add_done_callback(self._on_handler_done)
            except Exception as exc:
                logger.exception(f"Event handler for {kind.value} failed: {exc}")
        return event

    def _on_handler_done(self, future: asyncio.Future[Any]) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"Async event handler failed: {exc}")

    async def drain(self) -> None:
        """Wait until every scheduled coroutine handler has finished."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def latest(self, kind: EventKind) -> Event | None:
        return self._last.get(kind)

    @property
    def latest_top_movers(self) -> TopMovers | None:
        event = self._last.get(EventKind.TOP_MOVERS)
        return event.payload if event is not None else None

    @property
    def pause_state(self) -> PauseState:
        return self._pause_state

    def set_paused(self, paused: bool, reason: str | None = None) -> bool:
        """Transition the pause state; publishes only when ``paused`` actually changes."""

        if self._pause_state.paused == paused:
            return False
        if paused:
            self._pause_state = PauseState(paused=True, reason=reason, paused_at=self._clock())
        else:
            self._pause_state = PauseState(paused=False, reason=None, paused_at=None)
        logger.info(f"Live updates {'paused' if paused else 'resumed'}" + (f" ({reason})" if reason else ""))
        self.publish(EventKind.PAUSE_STATE, self._pause_state)
        return True
