"""Per-connection session state.

A Session exists for exactly as long as its connection: created on open,
discarded on close. Connection managers own their sessions; nothing else
holds a reference.

Also provides:
- SessionRegistry: the lock-guarded set of live sessions (listening mode)
- OrderedOutbox: per-connection response writer that emits results in the
  order commands arrived, while the commands themselves run concurrently
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .protocol.envelopes import ResultEnvelope

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """State of one live connection.

    Invariant: no command is dispatched while ``authenticated`` is False,
    except the authentication message itself.
    """

    remote_identity: str
    transport: Any = None
    authenticated: bool = False
    session_id: str = field(default_factory=lambda: f"conn_{uuid.uuid4().hex[:12]}")
    _tasks: set[asyncio.Task[Any]] = field(default_factory=set, repr=False)

    def track(self, task: asyncio.Task[Any]) -> asyncio.Task[Any]:
        """Register an outstanding dispatch task; it is forgotten once done."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def cancel_all(self) -> int:
        """Cancel every outstanding task without waiting for it.

        Returns:
            Number of tasks that were cancelled
        """
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        self._tasks.clear()
        return len(tasks)


class SessionRegistry:
    """Registry of live sessions, safe under concurrent access.

    Accept paths, dispatch tasks, and stop requests all mutate the registry
    from different tasks, so every mutation happens under one asyncio.Lock.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def add(self, session: Session) -> None:
        async with self._lock:
            self._sessions[session.session_id] = session

    async def remove(self, session: Session) -> Session | None:
        async with self._lock:
            return self._sessions.pop(session.session_id, None)

    async def clear(self) -> list[Session]:
        """Remove and return every session."""
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            return sessions

    def list_active(self) -> list[Session]:
        return list(self._sessions.values())

    @property
    def authenticated_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.authenticated)

    def __len__(self) -> int:
        return len(self._sessions)


SendFn = Callable[[ResultEnvelope], Awaitable[None]]


class OrderedOutbox:
    """Emits results for one connection in command-arrival order.

    Each inbound command is queued as a future (a dispatch task, or an
    already-completed future for immediate replies). A single writer task
    awaits them in FIFO order and sends each result, so a slow command delays
    only the responses queued behind it, never the dispatch of later commands.

    Usage:
        outbox = OrderedOutbox(send_fn)
        outbox.start()
        outbox.put_pending(asyncio.create_task(dispatcher.handle(envelope)))
        outbox.put_result(ResultEnvelope.error("invalid JSON"))
        ...
        outbox.close()
    """

    def __init__(self, send_fn: SendFn) -> None:
        self._send = send_fn
        self._queue: asyncio.Queue[asyncio.Future[ResultEnvelope]] = asyncio.Queue()
        self._writer: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop())

    def put_pending(self, future: asyncio.Future[ResultEnvelope]) -> None:
        """Queue a result that is still being computed."""
        self._queue.put_nowait(future)

    def put_result(self, result: ResultEnvelope) -> None:
        """Queue an immediate result behind any pending ones."""
        future: asyncio.Future[ResultEnvelope] = asyncio.get_running_loop().create_future()
        future.set_result(result)
        self._queue.put_nowait(future)

    async def drain(self) -> None:
        """Wait until everything queued so far has been sent."""
        await self._queue.join()

    def close(self) -> None:
        """Stop the writer without waiting; unsent results are dropped."""
        if self._writer and not self._writer.done():
            self._writer.cancel()
        self._writer = None

    async def aclose(self) -> None:
        """Stop the writer and wait for it to exit."""
        writer = self._writer
        self.close()
        if writer:
            with contextlib.suppress(asyncio.CancelledError):
                await writer

    async def _write_loop(self) -> None:
        while True:
            future = await self._queue.get()
            try:
                # asyncio.wait does not propagate the future's cancellation
                await asyncio.wait({future})
                if future.cancelled():
                    continue
                await self._send(future.result())
            except Exception as e:
                logger.exception(f"Failed to send result: {e}")
            finally:
                self._queue.task_done()
