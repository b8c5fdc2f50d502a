"""Unit tests for sessions, the session registry and the ordered outbox."""

from __future__ import annotations

import asyncio

import pytest

from devicelink.protocol.envelopes import ResultEnvelope
from devicelink.session import OrderedOutbox, Session, SessionRegistry

# =============================================================================
# Session Tests
# =============================================================================


class TestSession:
    """Tests for per-connection task bookkeeping."""

    def test_defaults(self) -> None:
        session = Session(remote_identity="127.0.0.1:5000")

        assert not session.authenticated
        assert session.session_id.startswith("conn_")
        assert session.pending_count == 0

    @pytest.mark.asyncio
    async def test_track_forgets_finished_tasks(self) -> None:
        """Completed tasks drop out of the outstanding set."""
        session = Session(remote_identity="peer")
        task = session.track(asyncio.create_task(asyncio.sleep(0)))

        assert session.pending_count == 1
        await task
        await asyncio.sleep(0)

        assert session.pending_count == 0

    @pytest.mark.asyncio
    async def test_cancel_all(self) -> None:
        """cancel_all cancels outstanding tasks without awaiting them."""
        session = Session(remote_identity="peer")
        blocker = asyncio.Event()
        tasks = [session.track(asyncio.create_task(blocker.wait())) for _ in range(3)]

        cancelled = session.cancel_all()

        assert cancelled == 3
        assert session.pending_count == 0
        await asyncio.gather(*tasks, return_exceptions=True)
        assert all(t.cancelled() for t in tasks)


class TestSessionRegistry:
    """Tests for the lock-guarded registry."""

    @pytest.mark.asyncio
    async def test_add_remove(self) -> None:
        registry = SessionRegistry()
        session = Session(remote_identity="peer")

        await registry.add(session)
        assert len(registry) == 1
        assert registry.list_active() == [session]

        removed = await registry.remove(session)
        assert removed is session
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_remove_unknown(self) -> None:
        registry = SessionRegistry()

        assert await registry.remove(Session(remote_identity="peer")) is None

    @pytest.mark.asyncio
    async def test_authenticated_count(self) -> None:
        """Only authenticated sessions are counted as connections."""
        registry = SessionRegistry()
        await registry.add(Session(remote_identity="a", authenticated=True))
        await registry.add(Session(remote_identity="b"))

        assert registry.authenticated_count == 1
        assert len(registry.list_active()) == 2

    @pytest.mark.asyncio
    async def test_clear(self) -> None:
        registry = SessionRegistry()
        await registry.add(Session(remote_identity="a"))
        await registry.add(Session(remote_identity="b"))

        cleared = await registry.clear()

        assert len(cleared) == 2
        assert len(registry) == 0


# =============================================================================
# OrderedOutbox Tests
# =============================================================================


class TestOrderedOutbox:
    """Results go out in arrival order while work runs concurrently."""

    @pytest.mark.asyncio
    async def test_slow_first_result_holds_later_ones(self) -> None:
        """A later immediate result waits behind an earlier slow one."""
        sent: list[str | None] = []

        async def send(result: ResultEnvelope) -> None:
            sent.append(result.message)

        outbox = OrderedOutbox(send)
        outbox.start()

        gate = asyncio.Event()

        async def slow() -> ResultEnvelope:
            await gate.wait()
            return ResultEnvelope.ok("first")

        outbox.put_pending(asyncio.create_task(slow()))
        outbox.put_result(ResultEnvelope.ok("second"))
        await asyncio.sleep(0.01)

        assert sent == []

        gate.set()
        await outbox.drain()

        assert sent == ["first", "second"]
        await outbox.aclose()

    @pytest.mark.asyncio
    async def test_cancelled_future_skipped(self) -> None:
        """A cancelled dispatch produces no result and does not block the queue."""
        sent: list[str | None] = []

        async def send(result: ResultEnvelope) -> None:
            sent.append(result.message)

        outbox = OrderedOutbox(send)
        outbox.start()

        task = asyncio.create_task(asyncio.Event().wait())
        outbox.put_pending(task)
        outbox.put_result(ResultEnvelope.ok("after"))
        task.cancel()

        await outbox.drain()

        assert sent == ["after"]
        await outbox.aclose()

    @pytest.mark.asyncio
    async def test_send_failure_does_not_stop_writer(self) -> None:
        """A failing send is logged and the writer keeps going."""
        sent: list[str | None] = []

        async def send(result: ResultEnvelope) -> None:
            if result.message == "boom":
                raise ConnectionError("socket gone")
            sent.append(result.message)

        outbox = OrderedOutbox(send)
        outbox.start()
        outbox.put_result(ResultEnvelope.ok("boom"))
        outbox.put_result(ResultEnvelope.ok("fine"))

        await outbox.drain()

        assert sent == ["fine"]
        await outbox.aclose()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        async def send(result: ResultEnvelope) -> None:
            pass

        outbox = OrderedOutbox(send)
        outbox.start()
        outbox.close()
        outbox.close()
        await outbox.aclose()
