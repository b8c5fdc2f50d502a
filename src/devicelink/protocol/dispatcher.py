"""Command Dispatcher - transport-agnostic action handling.

Maps an action name and its parameters to a capability call and produces a
Result Envelope. Both the listening and relay connection managers use this
same dispatcher, so command semantics are identical on either transport.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any

from ..capabilities.base import Capabilities, GlobalAction
from .envelopes import ActionType, CommandEnvelope, ResultEnvelope
from .errors import (
    CapabilityFailure,
    CapabilityUnavailable,
    DeviceLinkError,
    UnexpectedFault,
    ValidationError,
)

logger = logging.getLogger(__name__)

INJECTOR_UNAVAILABLE = "Accessibility service not running"
CAPTURE_NOT_READY = "screen capture not initialized"
MISSING_ACTION = "missing 'action' or 'command' field"

DEFAULT_SWIPE_DURATION_MS = 300
MIN_SWIPE_DURATION_MS = 50
DEFAULT_SCREENSHOT_QUALITY = 50


def require_float(params: Mapping[str, Any], key: str) -> float:
    """Get a required numeric parameter as float.

    Numeric strings are accepted. Anything else (absent, null, bool,
    non-numeric) raises ValidationError naming the parameter.
    """
    value = params.get(key)
    if value is None or isinstance(value, bool):
        raise ValidationError(key)
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(key) from e
    if not math.isfinite(number):
        raise ValidationError(key)
    return number


def optional_int(params: Mapping[str, Any], key: str, default: int) -> int:
    """Get an optional integer parameter, falling back to ``default``."""
    if params.get(key) is None:
        return default
    return int(require_float(params, key))


def require_str(params: Mapping[str, Any], key: str) -> str:
    """Get a required string parameter."""
    value = params.get(key)
    if not isinstance(value, str):
        raise ValidationError(key)
    return value


class CommandDispatcher:
    """Dispatches commands to the injected capability providers.

    The dispatcher holds no mutable state of its own and is safe to call
    concurrently from any number of connections.

    Usage:
        dispatcher = CommandDispatcher(Capabilities(injector=..., capture=...))
        result = await dispatcher.handle(envelope)

    Error contract:
        Every call returns a ResultEnvelope. Missing parameters, absent or
        unready providers, reported failures, and exceptions raised inside a
        provider are all converted to ``status: "error"`` envelopes.
        Only task cancellation propagates.
    """

    def __init__(self, capabilities: Capabilities | None = None) -> None:
        """Initialize dispatcher with capability providers.

        Args:
            capabilities: Providers to call (all absent when omitted)
        """
        self._capabilities = capabilities or Capabilities()

    @property
    def capabilities(self) -> Capabilities:
        return self._capabilities

    async def handle(self, envelope: CommandEnvelope) -> ResultEnvelope:
        """Dispatch a decoded envelope and correlate the result to its ``id``."""
        if envelope.action is None:
            logger.warning(f"No action/command key in envelope (params={list(envelope.params)})")
            return ResultEnvelope.error(MISSING_ACTION, envelope.id)

        result = await self.dispatch(envelope.action, envelope.params)
        return result.with_id(envelope.id)

    async def dispatch(self, action: str, params: Mapping[str, Any]) -> ResultEnvelope:
        """Run one action and return its Result Envelope.

        Args:
            action: Action name from the catalog
            params: Action parameters

        Returns:
            Result envelope; never raises except on cancellation
        """
        try:
            return await self._dispatch(action, params)
        except DeviceLinkError as e:
            logger.info(f"{action} -> error: {e.message}")
            return ResultEnvelope.error(e.message)
        except Exception as e:
            logger.exception(f"Error in {action}: {e}")
            return ResultEnvelope.error(UnexpectedFault(e).message)

    async def _dispatch(self, action: str, params: Mapping[str, Any]) -> ResultEnvelope:
        # Passive actions work without the input injector
        if action == ActionType.PING.value:
            return ResultEnvelope.ok("pong")
        if action == ActionType.SCREENSHOT.value:
            return await self._screenshot(params)

        injector = self._capabilities.injector
        if injector is None:
            raise CapabilityUnavailable(INJECTOR_UNAVAILABLE)

        match action:
            case ActionType.TAP.value:
                x = require_float(params, "x")
                y = require_float(params, "y")
                ok = await injector.tap(x, y)
                logger.info(f"tap({x}, {y}) -> {ok}")

            case ActionType.SWIPE.value:
                x1 = require_float(params, "x1")
                y1 = require_float(params, "y1")
                x2 = require_float(params, "x2")
                y2 = require_float(params, "y2")
                duration = max(
                    MIN_SWIPE_DURATION_MS,
                    optional_int(params, "duration", DEFAULT_SWIPE_DURATION_MS),
                )
                ok = await injector.swipe(x1, y1, x2, y2, duration)
                logger.info(f"swipe({x1},{y1} -> {x2},{y2}, {duration}ms) -> {ok}")

            case ActionType.TYPE.value:
                text = require_str(params, "text")
                ok = await injector.type_text(text)
                logger.info(f'type("{text[:20]}") -> {ok}')

            case ActionType.BACK.value | ActionType.HOME.value | ActionType.RECENTS.value:
                ok = await injector.global_action(GlobalAction(action))
                logger.info(f"{action} -> {ok}")

            case ActionType.SCROLL.value:
                # Direction validation is left to the provider
                direction = require_str(params, "direction")
                ok = await injector.scroll(direction)
                logger.info(f"scroll({direction}) -> {ok}")

            case _:
                return ResultEnvelope.error(f"unknown action: {action}")

        if not ok:
            raise CapabilityFailure(action)
        return ResultEnvelope.ok()

    async def _screenshot(self, params: Mapping[str, Any]) -> ResultEnvelope:
        capture = self._capabilities.capture
        if capture is None or not capture.is_ready:
            raise CapabilityUnavailable(CAPTURE_NOT_READY)

        quality = optional_int(params, "quality", DEFAULT_SCREENSHOT_QUALITY)
        quality = min(100, max(0, quality))

        image = await capture.screenshot(quality)
        if not image:
            logger.warning("screenshot capture returned no image")
            raise CapabilityFailure(ActionType.SCREENSHOT.value)

        logger.info(f"screenshot ({len(image)} chars)")
        return ResultEnvelope.ok(image=image)
