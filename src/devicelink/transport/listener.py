"""Listening Connection Manager.

The device runs a WebSocket server; any number of controllers dial in.
Each connection is authenticated independently and its commands are
dispatched concurrently.

Per-connection state machine:
    opened → authenticating → authenticated
                            → rejected (closed with 4001)

Authentication:
- Handshake: ``Authorization: Bearer <token>`` header, or ``?token=<token>``
  on the resource path. A wrong token is answered with
  ``{"status": "error", "message": "invalid auth token"}`` and close 4001.
- In-band: a handshake without any token leaves the connection in
  ``authenticating``; the client sends ``{"action": "auth", "token": ...}``.
  Other commands are answered ``not authenticated`` until then.
"""

from __future__ import annotations

import asyncio
import hmac
import logging

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from ..protocol.codec import decode_object, encode
from ..protocol.dispatcher import CommandDispatcher
from ..protocol.envelopes import ActionType, CommandEnvelope, ResultEnvelope
from ..protocol.errors import AuthError, DecodeError
from ..session import OrderedOutbox, Session, SessionRegistry
from .base import ConnectionManager, LogCallback

logger = logging.getLogger(__name__)

# Close code reserved by the protocol for "unauthorized"
UNAUTHORIZED_CLOSE_CODE = 4001
GOING_AWAY_CLOSE_CODE = 1001

DEFAULT_AUTH_TIMEOUT = 30.0


def extract_token(websocket: WebSocket) -> str | None:
    """Get the token offered in the handshake, if any.

    The ``Authorization`` header wins over the ``token`` query parameter.
    """
    header = websocket.headers.get("authorization", "").strip()
    if header:
        if header[:7].lower() == "bearer ":
            return header[7:].strip()
        return header
    return websocket.query_params.get("token")


def describe_peer(websocket: WebSocket) -> str:
    client = websocket.client
    if client is None:
        return "unknown"
    return f"{client.host}:{client.port}"


class ListeningConnectionManager(ConnectionManager):
    """Accepts many concurrent controller connections.

    Usage:
        manager = ListeningConnectionManager("secret", CommandDispatcher(caps))
        app = Starlette(routes=[WebSocketRoute("/", manager.endpoint)])
        ...
        await manager.stop()
    """

    def __init__(
        self,
        auth_token: str,
        dispatcher: CommandDispatcher,
        *,
        auth_timeout: float = DEFAULT_AUTH_TIMEOUT,
        on_log: LogCallback | None = None,
    ) -> None:
        """Initialize the listening manager.

        Args:
            auth_token: Shared secret every controller must present
            dispatcher: Dispatcher shared by all connections
            auth_timeout: Seconds an unauthenticated connection may stay open
            on_log: Optional observer for connection events
        """
        super().__init__(dispatcher, on_log)
        self._auth_token = auth_token
        self._auth_timeout = auth_timeout
        self._sessions = SessionRegistry()
        self._handlers: set[ConnectionHandler] = set()
        self._stopped = False

    @property
    def connection_count(self) -> int:
        return self._sessions.authenticated_count

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    @property
    def auth_timeout(self) -> float:
        return self._auth_timeout

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def check_token(self, token: str) -> bool:
        """Constant-time comparison against the configured secret."""
        return hmac.compare_digest(token.encode("utf-8"), self._auth_token.encode("utf-8"))

    async def endpoint(self, websocket: WebSocket) -> None:
        """WebSocket endpoint; one invocation per connection."""
        if self._stopped:
            await websocket.close(code=GOING_AWAY_CLOSE_CODE, reason="Server stopped")
            return

        handler = ConnectionHandler(self, websocket)
        self._handlers.add(handler)
        try:
            await handler.handle()
        finally:
            self._handlers.discard(handler)

    async def register(self, session: Session) -> None:
        await self._sessions.add(session)

    async def release(self, session: Session) -> None:
        session.cancel_all()
        await self._sessions.remove(session)

    async def stop(self) -> None:
        """Cancel all dispatch tasks and close every connection immediately."""
        if self._stopped:
            return
        self._stopped = True

        handlers = list(self._handlers)
        self._handlers.clear()
        for handler in handlers:
            await handler.abort()

        cancelled = sum(session.cancel_all() for session in await self._sessions.clear())
        self._log(
            f"Listening manager stopped ({len(handlers)} connections closed, "
            f"{cancelled} tasks cancelled)"
        )


class ConnectionHandler:
    """Handles one controller connection.

    Manages the connection lifecycle:
    - Extracts and checks the handshake token
    - Routes inbound frames (auth, commands, garbage)
    - Spawns one dispatch task per command
    - Emits results in arrival order via OrderedOutbox
    - Cancels outstanding tasks on disconnect
    """

    def __init__(self, manager: ListeningConnectionManager, websocket: WebSocket):
        self.manager = manager
        self.websocket = websocket
        self.session = Session(remote_identity=describe_peer(websocket), transport=websocket)
        self.outbox = OrderedOutbox(self._send_result)
        self._send_lock = asyncio.Lock()
        self._closed = False

    async def handle(self) -> None:
        """Main handler for the WebSocket connection."""
        token = extract_token(self.websocket)
        await self.websocket.accept()
        await self.manager.register(self.session)

        try:
            if token is not None and not await self._authenticate(token):
                return

            self.outbox.start()
            await self._receive_loop()

        except WebSocketDisconnect as e:
            self.manager._log(
                f"Client disconnected: {self.session.remote_identity} (code={e.code})"
            )
        except Exception as e:
            logger.exception(f"WebSocket error for {self.session.remote_identity}: {e}")
        finally:
            await self._cleanup()

    async def abort(self) -> None:
        """Tear the connection down without waiting for in-flight commands."""
        self.session.cancel_all()
        self.outbox.close()
        await self._close(GOING_AWAY_CLOSE_CODE, "Server shutting down")

    # =========================================================================
    # Authentication
    # =========================================================================

    async def _authenticate(self, token: str) -> bool:
        """Check the handshake token; reject and close on mismatch."""
        if not self.manager.check_token(token):
            await self._reject()
            return False

        self._mark_authenticated()
        await self._send_result(ResultEnvelope.ok("authenticated"))
        return True

    async def _authenticate_in_band(self, envelope: CommandEnvelope) -> None:
        token = envelope.get_param("token")
        if isinstance(token, str) and self.manager.check_token(token):
            if not self.session.authenticated:
                self._mark_authenticated()
            self.outbox.put_result(ResultEnvelope.ok("authenticated").with_id(envelope.id))
            return

        # Flush finished replies queued ahead of the failed attempt, then close.
        # Outstanding commands are cancelled so a stuck call cannot hold the close.
        self.session.cancel_all()
        await self.outbox.drain()
        await self._reject(envelope.id)

    def _mark_authenticated(self) -> None:
        self.session.authenticated = True
        self.manager._log(f"Client authenticated: {self.session.remote_identity}")

    async def _reject(self, envelope_id: str | None = None) -> None:
        self.manager._log(f"Auth failed from {self.session.remote_identity}", logging.WARNING)
        await self._send_result(ResultEnvelope.error(AuthError.INVALID_TOKEN, envelope_id))
        await self._close(UNAUTHORIZED_CLOSE_CODE, "Unauthorized")

    # =========================================================================
    # Message Handling
    # =========================================================================

    async def _receive_loop(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.manager.auth_timeout

        while not self._closed:
            if self.session.authenticated:
                text = await self._receive_frame()
            else:
                try:
                    text = await asyncio.wait_for(
                        self._receive_frame(), timeout=max(0.0, deadline - loop.time())
                    )
                except TimeoutError:
                    self.manager._log(
                        f"Auth timeout for {self.session.remote_identity}", logging.WARNING
                    )
                    await self._close(UNAUTHORIZED_CLOSE_CODE, "Authentication timeout")
                    return

            await self._on_frame(text)

    async def _receive_frame(self) -> str:
        message = await self.websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))

        text = message.get("text")
        if text is None:
            text = (message.get("bytes") or b"").decode("utf-8", errors="replace")
        return text

    async def _on_frame(self, text: str) -> None:
        """Route one inbound frame. Never raises for bad input."""
        try:
            data = decode_object(text)
        except DecodeError as e:
            logger.warning(f"Invalid JSON from {self.session.remote_identity}: {e.detail}")
            self.outbox.put_result(ResultEnvelope.error(e.message))
            return

        envelope = CommandEnvelope.from_object(data)

        if envelope.action == ActionType.AUTH.value:
            await self._authenticate_in_band(envelope)
            return

        if not self.session.authenticated:
            self.outbox.put_result(
                ResultEnvelope.error(AuthError.NOT_AUTHENTICATED, envelope.id)
            )
            return

        task = asyncio.create_task(self.manager.dispatcher.handle(envelope))
        self.session.track(task)
        self.outbox.put_pending(task)

    # =========================================================================
    # Output
    # =========================================================================

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def _send_result(self, result: ResultEnvelope) -> None:
        async with self._send_lock:
            if not self.is_open:
                logger.warning(f"Cannot send to {self.session.remote_identity} - not connected")
                return
            await self.websocket.send_text(encode(result))

    async def _close(self, code: int, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        if self.websocket.application_state != WebSocketState.CONNECTED:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except RuntimeError as e:
            logger.debug(f"Close on {self.session.remote_identity} ignored: {e}")

    async def _cleanup(self) -> None:
        """Cleanup resources on disconnect."""
        self.outbox.close()
        await self.manager.release(self.session)
        if not self._closed and self.websocket.client_state == WebSocketState.CONNECTED:
            await self._close(1000, "")
