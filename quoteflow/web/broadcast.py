"""Push-channel broadcast layer: connections, rooms and event fan-out."""

from __future__ import annotations

import hmac
import re
from collections import defaultdict
from collections.abc import Awaitable, Callable
from itertools import count
from typing import Any, Protocol

from fastapi.encoders import jsonable_encoder

from quoteflow.core.exceptions import AuthenticationError, ConnectionLimitError
from quoteflow.core.logging import get_logger
from quoteflow.core.models import DataUpdate, PauseState, TopMovers
from quoteflow.core.monitoring import MetricsCollector
from quoteflow.core.services.events import Event, EventBus, EventKind

logger = get_logger(__name__)

ROOM_SYMBOL_PATTERN = re.compile(r"^[A-Z0-9.\-]+$")
ROOM_SYMBOL_MAX_LENGTH = 15
ROOM_PREFIX = "stock-"

EVENT_DATA_UPDATE = "dataUpdate"
EVENT_PAUSE_STATE = "pauseStateChanged"
EVENT_TOP_MOVERS = "topMovers"
EVENT_JOINED = "joinedRoom"
EVENT_LEFT = "leftRoom"
EVENT_ERROR = "error"

SendFn = Callable[[dict[str, Any]], Awaitable[None]]

_connection_ids = count(1)


def normalize_room_symbol(symbol: object) -> str | None:
    """Upper-cased symbol when it is a valid room name, otherwise ``None``."""

    if not isinstance(symbol, str):
        return None
    candidate = symbol.strip().upper()
    if not candidate or len(candidate) > ROOM_SYMBOL_MAX_LENGTH:
        return None
    if not ROOM_SYMBOL_PATTERN.match(candidate):
        return None
    return candidate


def room_name(symbol: str) -> str:
    return f"{ROOM_PREFIX}{symbol}"


class Authenticator(Protocol):
    def authenticate(self, token: str | None) -> str:
        """Return a principal for ``token`` or raise :class:`AuthenticationError`."""
        ...


class TokenAuthenticator:
    """Accepts connections presenting the configured shared token.

    With no token configured every connection is accepted as ``anonymous``.
    """

    def __init__(self, access_token: str | None = None) -> None:
        self._token = access_token

    def authenticate(self, token: str | None) -> str:
        if self._token is None:
            return "anonymous"
        if not token:
            raise AuthenticationError("Authentication required")
        if not hmac.compare_digest(token.encode("utf-8"), self._token.encode("utf-8")):
            raise AuthenticationError("Invalid access token")
        return "token"


class PushConnection:
    """One push client. ``send`` delivers a JSON-ready message over the transport."""

    def __init__(self, address: str, send: SendFn, *, principal: str | None = None) -> None:
        self.id = next(_connection_ids)
        self.address = address
        self.principal = principal
        self.rooms: set[str] = set()
        self._send = send

    async def send(self, event: str, data: Any = None) -> None:
        await self._send({"event": event, "data": jsonable_encoder(data, by_alias=True)})

    def __repr__(self) -> str:
        return f"PushConnection(id={self.id}, address={self.address!r})"


class BroadcastHub:
    """Fans bus events out to push connections.

    Data updates go to the instrument's room and are suppressed while live
    updates are paused; pause changes and top movers go to every connection.
    A connection whose send fails is dropped without affecting the others.
    """

    def __init__(
        self,
        bus: EventBus,
        *,
        authenticator: Authenticator | None = None,
        max_connections_per_address: int = 20,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._bus = bus
        self._authenticator = authenticator or TokenAuthenticator()
        self.max_connections_per_address = max_connections_per_address
        self._metrics = metrics
        self._connections: dict[int, PushConnection] = {}
        self._per_address: defaultdict[str, int] = defaultdict(int)
        self._rooms: defaultdict[str, set[int]] = defaultdict(set)
        self._unsubscribers: list[Callable[[], None]] = []

    # -- bus wiring -----------------------------------------------------

    def attach(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self._bus.subscribe(EventKind.DATA_UPDATE, self._on_data_update),
            self._bus.subscribe(EventKind.PAUSE_STATE, self._on_pause_state),
            self._bus.subscribe(EventKind.TOP_MOVERS, self._on_top_movers),
        ]

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    async def _on_data_update(self, event: Event) -> None:
        update: DataUpdate = event.payload
        if self._bus.pause_state.paused:
            return
        symbol = normalize_room_symbol(update.symbol)
        if symbol is None:
            return
        await self.broadcast_to_room(symbol, EVENT_DATA_UPDATE, update)

    async def _on_pause_state(self, event: Event) -> None:
        state: PauseState = event.payload
        await self.broadcast_all(EVENT_PAUSE_STATE, state)

    async def _on_top_movers(self, event: Event) -> None:
        movers: TopMovers = event.payload
        await self.broadcast_all(EVENT_TOP_MOVERS, movers)

    # -- connections ----------------------------------------------------

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def connections_from(self, address: str) -> int:
        return self._per_address.get(address, 0)

    def admit(self, connection: PushConnection, token: str | None) -> None:
        """Authenticate and register ``connection``; raises before anything is registered."""

        if self._per_address.get(connection.address, 0) >= self.max_connections_per_address:
            logger.bind(error_code="CONNECTION_LIMIT").warning(f"Rejecting connection from {connection.address}: limit reached")
            raise ConnectionLimitError(connection.address, self.max_connections_per_address)
        try:
            connection.principal = self._authenticator.authenticate(token)
        except AuthenticationError as exc:
            logger.bind(error_code=exc.error_code).warning(f"Rejecting connection from {connection.address}: {exc.message}")
            raise
        self._connections[connection.id] = connection
        self._per_address[connection.address] += 1
        self._update_gauge()

    async def welcome(self, connection: PushConnection) -> None:
        """Send the current pause state and the latest top movers to a new connection."""

        await self._safe_send(connection, EVENT_PAUSE_STATE, self._bus.pause_state)
        movers = self._bus.latest_top_movers
        if movers is not None:
            await self._safe_send(connection, EVENT_TOP_MOVERS, movers)

    def disconnect(self, connection: PushConnection) -> None:
        if self._connections.pop(connection.id, None) is None:
            return
        for room in list(connection.rooms):
            self._rooms[room].discard(connection.id)
            if not self._rooms[room]:
                del self._rooms[room]
        connection.rooms.clear()
        self._per_address[connection.address] -= 1
        if self._per_address[connection.address] <= 0:
            del self._per_address[connection.address]
        self._update_gauge()

    def _update_gauge(self) -> None:
        if self._metrics is not None:
            self._metrics.push_connections.set(len(self._connections))

    # -- rooms ----------------------------------------------------------

    def join(self, connection: PushConnection, symbol: object) -> str | None:
        normalized = normalize_room_symbol(symbol)
        if normalized is None:
            return None
        room = room_name(normalized)
        connection.rooms.add(room)
        self._rooms[room].add(connection.id)
        return room

    def leave(self, connection: PushConnection, symbol: object) -> str | None:
        normalized = normalize_room_symbol(symbol)
        if normalized is None:
            return None
        room = room_name(normalized)
        connection.rooms.discard(room)
        members = self._rooms.get(room)
        if members is not None:
            members.discard(connection.id)
            if not members:
                del self._rooms[room]
        return room

    def room_members(self, symbol: str) -> int:
        return len(self._rooms.get(room_name(symbol.upper()), ()))

    async def handle_message(self, connection: PushConnection, message: object) -> None:
        """Dispatch one client message: ``joinRoom``, ``leaveRoom`` or ``requestTopMovers``."""

        if not isinstance(message, dict):
            await self._safe_send(connection, EVENT_ERROR, {"message": "Messages must be JSON objects"})
            return
        action = message.get("action")
        if action in ("joinRoom", "leaveRoom"):
            handler = self.join if action == "joinRoom" else self.leave
            room = handler(connection, message.get("symbol"))
            if room is None:
                await self._safe_send(connection, EVENT_ERROR, {"message": "Invalid symbol", "action": action})
                return
            event = EVENT_JOINED if action == "joinRoom" else EVENT_LEFT
            await self._safe_send(connection, event, {"room": room})
        elif action == "requestTopMovers":
            movers = self._bus.latest_top_movers
            if movers is not None:
                await self._safe_send(connection, EVENT_TOP_MOVERS, movers)
        else:
            await self._safe_send(connection, EVENT_ERROR, {"message": f"Unknown action: {action}"})

    # -- delivery -------------------------------------------------------

    async def broadcast_to_room(self, symbol: str, event: str, data: Any) -> int:
        members = [self._connections[cid] for cid in self._rooms.get(room_name(symbol), ()) if cid in self._connections]
        return await self._deliver(members, event, data)

    async def broadcast_all(self, event: str, data: Any) -> int:
        return await self._deliver(list(self._connections.values()), event, data)

    async def _deliver(self, targets: list[PushConnection], event: str, data: Any) -> int:
        delivered = 0
        for connection in targets:
            if await self._safe_send(connection, event, data):
                delivered += 1
        return delivered

    async def _safe_send(self, connection: PushConnection, event: str, data: Any) -> bool:
        try:
            await connection.send(event, data)
        except Exception as exc:
            logger.warning(f"Dropping {connection!r} after failed send: {exc}")
            self.disconnect(connection)
            return False
        return True


def extract_token(
    query_params: dict[str, str] | Any,
    headers: dict[str, str] | Any,
    cookies: dict[str, str] | Any,
) -> str | None:
    """Token from the ``token`` query parameter, a bearer header or the ``accessToken`` cookie."""

    token = query_params.get("token")
    if token:
        return token
    authorization = headers.get("authorization") or ""
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return cookies.get("accessToken") or None
