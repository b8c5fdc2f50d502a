"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio

import pytest

from devicelink.capabilities.base import Capabilities, GlobalAction
from devicelink.protocol.dispatcher import CommandDispatcher


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


class FakeInjector:
    """Records every call and answers with a fixed outcome."""

    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.calls: list[tuple] = []

    async def tap(self, x: float, y: float) -> bool:
        self.calls.append(("tap", x, y))
        return self.result

    async def swipe(self, x1: float, y1: float, x2: float, y2: float, duration_ms: int) -> bool:
        self.calls.append(("swipe", x1, y1, x2, y2, duration_ms))
        return self.result

    async def type_text(self, text: str) -> bool:
        self.calls.append(("type", text))
        return self.result

    async def global_action(self, kind: GlobalAction) -> bool:
        self.calls.append(("global", kind))
        return self.result

    async def scroll(self, direction: str) -> bool:
        self.calls.append(("scroll", direction))
        return self.result and direction in ("up", "down")


class GatedInjector(FakeInjector):
    """Tap blocks until the gate is opened; other calls return at once."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    async def tap(self, x: float, y: float) -> bool:
        self.calls.append(("tap", x, y))
        self.entered.set()
        await self.gate.wait()
        return True


class FakeCapture:
    """Frame capture returning a canned image."""

    def __init__(self, ready: bool = True, image: str | None = "aW1hZ2U=") -> None:
        self.ready = ready
        self.image = image
        self.qualities: list[int] = []

    @property
    def is_ready(self) -> bool:
        return self.ready

    async def screenshot(self, quality: int) -> str | None:
        self.qualities.append(quality)
        return self.image


@pytest.fixture
def injector() -> FakeInjector:
    return FakeInjector()


@pytest.fixture
def capture() -> FakeCapture:
    return FakeCapture()


@pytest.fixture
def dispatcher(injector: FakeInjector, capture: FakeCapture) -> CommandDispatcher:
    """Dispatcher with both providers present and working."""
    return CommandDispatcher(Capabilities(injector=injector, capture=capture))
