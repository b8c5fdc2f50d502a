"""Relay Connection Manager.

The device dials out to a relay endpoint and receives commands from
controllers through it. At most one socket is live at a time; when it drops
(or a connect attempt fails) the manager waits a flat delay and reconnects,
until ``stop()`` is called.

State machine:
    idle → connecting → connected → disconnected → reconnect_scheduled
         → connecting → ... → stopped

Dial target:
    <relay_url>[?|&]token=<token>&role=phone
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any
from urllib.parse import quote, urlsplit

import websockets
from websockets.protocol import State

from ..protocol.codec import decode, encode
from ..protocol.dispatcher import CommandDispatcher
from ..protocol.envelopes import RelayControlEvent, ResultEnvelope
from ..protocol.errors import ConfigError, DecodeError
from ..session import OrderedOutbox, Session
from .base import ConnectionManager, LogCallback

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 5.0
RELAY_ROLE = "phone"


class RelayState(str, Enum):
    """Relay connection state machine."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECT_SCHEDULED = "reconnect_scheduled"
    STOPPED = "stopped"


StatusCallback = Callable[[RelayState], None]
EventCallback = Callable[[RelayControlEvent], None]


def build_relay_url(relay_url: str, auth_token: str) -> str:
    """Append the token and role query parameters to the relay URL.

    Raises:
        ConfigError: If the URL is not a ws:// or wss:// URL with a host
    """
    parts = urlsplit(relay_url)
    if parts.scheme not in ("ws", "wss") or not parts.netloc:
        raise ConfigError(f"invalid relay URL: {relay_url!r}")

    separator = "&" if "?" in relay_url else "?"
    return f"{relay_url}{separator}token={quote(auth_token, safe='')}&role={RELAY_ROLE}"


def redact_url(url: str) -> str:
    """Strip the query string so tokens never reach the logs."""
    return url.split("?", 1)[0]


class RelayConnectionManager(ConnectionManager):
    """Maintains one outbound connection to a relay.

    Usage:
        manager = RelayConnectionManager(
            "wss://relay.example.com/ws", "secret", CommandDispatcher(caps)
        )
        await manager.start()
        ...
        await manager.stop()

    ``connect`` defaults to ``websockets.connect``; any callable with the same
    signature returning an async context manager works (used by tests).
    """

    def __init__(
        self,
        relay_url: str,
        auth_token: str,
        dispatcher: CommandDispatcher,
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        on_log: LogCallback | None = None,
        on_status_changed: StatusCallback | None = None,
        on_event: EventCallback | None = None,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        """Initialize the relay manager.

        Args:
            relay_url: ws:// or wss:// URL of the relay endpoint
            auth_token: Token presented to the relay
            dispatcher: Dispatcher for inbound commands
            reconnect_delay: Seconds to wait before each reconnect (flat)
            on_log: Optional observer for connection events
            on_status_changed: Optional observer for state transitions
            on_event: Optional observer for relay control events
            connect: WebSocket connect function
        """
        super().__init__(dispatcher, on_log)
        self._relay_url = relay_url
        self._auth_token = auth_token
        self._reconnect_delay = reconnect_delay
        self._on_status_changed = on_status_changed
        self._on_event = on_event
        self._connect = connect or websockets.connect

        self._state = RelayState.IDLE
        self._should_reconnect = False
        self._supervisor: asyncio.Task[None] | None = None
        self._ws: Any = None
        self._session: Session | None = None
        self._lock = asyncio.Lock()

        self.connect_attempts = 0

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == RelayState.CONNECTED

    @property
    def should_reconnect(self) -> bool:
        return self._should_reconnect

    @property
    def connection_count(self) -> int:
        return 1 if self.is_connected else 0

    @property
    def session(self) -> Session | None:
        return self._session

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> bool:
        """Start the connect/reconnect supervisor.

        Returns:
            False if the relay URL is invalid (nothing is scheduled)
        """
        async with self._lock:
            if self._supervisor and not self._supervisor.done():
                return True

            try:
                url = build_relay_url(self._relay_url, self._auth_token)
            except ConfigError as e:
                self._log(f"Invalid relay URL: {e.message}", logging.ERROR)
                self._set_state(RelayState.DISCONNECTED)
                return False

            self._should_reconnect = True
            self._supervisor = asyncio.create_task(self._run(url))
            return True

    async def stop(self) -> None:
        """Stop reconnecting and close the socket if open."""
        async with self._lock:
            if self._state == RelayState.STOPPED:
                return

            self._should_reconnect = False
            supervisor, self._supervisor = self._supervisor, None

            if self._session is not None:
                self._session.cancel_all()

            if supervisor and not supervisor.done():
                supervisor.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await supervisor

            self._ws = None
            self._session = None
            self._set_state(RelayState.STOPPED)
            self._log("Relay manager stopped")

    async def wait(self) -> None:
        """Block until the manager is stopped."""
        supervisor = self._supervisor
        if supervisor:
            await asyncio.wait({supervisor})

    # =========================================================================
    # Connection loop
    # =========================================================================

    async def _run(self, url: str) -> None:
        while self._should_reconnect:
            await self._connect_once(url)
            if not self._should_reconnect:
                break

            self._set_state(RelayState.RECONNECT_SCHEDULED)
            self._log(f"Reconnecting in {self._reconnect_delay:g}s")
            await asyncio.sleep(self._reconnect_delay)

    async def _connect_once(self, url: str) -> None:
        self.connect_attempts += 1
        self._set_state(RelayState.CONNECTING)
        self._log(f"Connecting to relay {redact_url(url)}")

        try:
            async with self._connect(
                url, ping_interval=30, ping_timeout=10, close_timeout=1
            ) as ws:
                await self._serve(ws)
            self._log("Relay connection closed")
        except websockets.ConnectionClosed as e:
            self._log(f"Relay connection lost: {e}", logging.WARNING)
        except Exception as e:
            self._log(f"Relay connection failed: {e}", logging.WARNING)
        finally:
            if self._should_reconnect:
                self._set_state(RelayState.DISCONNECTED)

    async def _serve(self, ws: Any) -> None:
        """Read frames until the socket closes."""
        session = Session(remote_identity=RELAY_ROLE, transport=ws, authenticated=True)
        outbox = OrderedOutbox(self._send_result)

        self._ws = ws
        self._session = session
        outbox.start()
        self._set_state(RelayState.CONNECTED)
        self._log("Connected to relay")

        try:
            async for message in ws:
                self._on_frame(message, session, outbox)
        finally:
            session.cancel_all()
            outbox.close()
            self._ws = None
            self._session = None

    def _on_frame(self, message: str | bytes, session: Session, outbox: OrderedOutbox) -> None:
        try:
            decoded = decode(message)
        except DecodeError as e:
            logger.warning(f"Invalid JSON from relay: {e.detail}")
            outbox.put_result(ResultEnvelope.error(e.message))
            return

        if isinstance(decoded, RelayControlEvent):
            logger.info(f"Relay event: {decoded.event}")
            self._notify_event(decoded)
            return

        task = asyncio.create_task(self.dispatcher.handle(decoded))
        session.track(task)
        outbox.put_pending(task)

    async def _send_result(self, result: ResultEnvelope) -> None:
        ws = self._ws
        if ws is None or ws.state is not State.OPEN:
            self._log("Cannot send result - relay connection not open", logging.WARNING)
            return
        try:
            await ws.send(encode(result))
        except websockets.ConnectionClosed as e:
            self._log(f"Cannot send result - relay connection closed: {e}", logging.WARNING)

    # =========================================================================
    # Observers
    # =========================================================================

    def _set_state(self, state: RelayState) -> None:
        if state == self._state:
            return
        self._state = state
        if self._on_status_changed is None:
            return
        try:
            self._on_status_changed(state)
        except Exception as e:
            logger.warning(f"Status observer failed: {e}")

    def _notify_event(self, event: RelayControlEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception as e:
            logger.warning(f"Event observer failed: {e}")
