"""Capability contracts consumed by the command dispatcher.

The core never performs a gesture or captures a frame itself. It calls two
narrow contracts, injected at construction:

- InputInjector: gestures, global navigation, text entry
- FrameCapture: on-demand screenshot as base64 JPEG

All calls are coroutines because a platform may only report completion of a
gesture asynchronously.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class GlobalAction(str, Enum):
    """Global navigation actions."""

    BACK = "back"
    HOME = "home"
    RECENTS = "recents"


class ScrollDirection(str, Enum):
    """Scroll directions understood by the bundled providers.

    The dispatcher passes the raw direction string through; providers
    report ``False`` for anything they do not recognise.
    """

    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


@runtime_checkable
class InputInjector(Protocol):
    """Protocol for input injection providers.

    Each call returns True when the platform confirmed the input and False
    when it reported failure. Raising is allowed; the dispatcher converts it
    into an error envelope.
    """

    async def tap(self, x: float, y: float) -> bool: ...

    async def swipe(self, x1: float, y1: float, x2: float, y2: float, duration_ms: int) -> bool: ...

    async def type_text(self, text: str) -> bool: ...

    async def global_action(self, kind: GlobalAction) -> bool: ...

    async def scroll(self, direction: str) -> bool: ...


@runtime_checkable
class FrameCapture(Protocol):
    """Protocol for screen capture providers."""

    @property
    def is_ready(self) -> bool:
        """True once the provider can produce frames."""
        ...

    async def screenshot(self, quality: int) -> str | None:
        """Capture a frame as base64-encoded JPEG, or None on failure."""
        ...


@dataclass
class Capabilities:
    """The capability providers available to the dispatcher.

    ``None`` means the provider is absent (not running), which is distinct
    from a present provider whose call reports failure.
    """

    injector: InputInjector | None = None
    capture: FrameCapture | None = None

    @property
    def injector_available(self) -> bool:
        return self.injector is not None

    @property
    def capture_ready(self) -> bool:
        return self.capture is not None and self.capture.is_ready
