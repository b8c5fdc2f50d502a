"""Wire envelope models.

Inbound frames are Command Envelopes (or, on the relay transport, Relay
Control Events). Outbound frames are Result Envelopes.

Example exchange:
    → {"action": "tap", "x": 500, "y": 1000, "id": "abc"}
    ← {"status": "ok", "id": "abc"}
    → {"action": "screenshot", "quality": 60}
    ← {"status": "ok", "image": "<base64>"}
    → {"event": "peer-joined"}        (relay only, never answered)
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ActionType(str, Enum):
    """All actions in the command catalog."""

    # Gestures
    TAP = "tap"
    SWIPE = "swipe"
    SCROLL = "scroll"

    # Text entry
    TYPE = "type"

    # Global navigation
    BACK = "back"
    HOME = "home"
    RECENTS = "recents"

    # Passive
    SCREENSHOT = "screenshot"
    PING = "ping"

    # Listening-mode in-band authentication
    AUTH = "auth"


# Envelope keys that are never treated as action parameters.
RESERVED_KEYS = frozenset({"action", "command", "id"})


class CommandEnvelope(BaseModel):
    """A command from controller to device.

    Parameters travel as top-level fields of the JSON object, next to
    ``action`` (or its synonym ``command``) and the optional ``id``.
    """

    action: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None

    def get_param(self, key: str, default: Any = None) -> Any:
        """Get a parameter with optional default."""
        return self.params.get(key, default)

    @classmethod
    def from_object(cls, data: dict[str, Any]) -> CommandEnvelope:
        """Build an envelope from a decoded JSON object."""
        action = data.get("action")
        if action is None:
            action = data.get("command")
        if not isinstance(action, str):
            action = None

        params = {k: v for k, v in data.items() if k not in RESERVED_KEYS}
        return cls(action=action, params=params, id=coerce_id(data.get("id")))


class ResultEnvelope(BaseModel):
    """A result from device to controller.

    Action-specific payload fields (e.g. ``image``) are carried as extra
    fields and serialized after the fixed ones.
    """

    model_config = ConfigDict(extra="allow")

    status: Literal["ok", "error"]
    message: str | None = None
    id: str | None = None

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> dict[str, Any]:
        """Wire representation, omitting absent fields."""
        return self.model_dump(exclude_none=True)

    def with_id(self, envelope_id: str | None) -> ResultEnvelope:
        """Return a copy correlated to the inbound ``id`` (no-op when None)."""
        if envelope_id is None:
            return self
        return self.model_copy(update={"id": envelope_id})

    @classmethod
    def ok(cls, message: str | None = None, **payload: Any) -> ResultEnvelope:
        """Create a success result."""
        return cls(status="ok", message=message, **payload)

    @classmethod
    def error(cls, message: str, envelope_id: str | None = None) -> ResultEnvelope:
        """Create an error result."""
        return cls(status="error", message=message, id=envelope_id)


class RelayControlEvent(BaseModel):
    """A non-command frame from the relay (``{"event": ...}``)."""

    model_config = ConfigDict(extra="allow")

    event: str

    @classmethod
    def from_object(cls, data: dict[str, Any]) -> RelayControlEvent:
        return cls.model_validate({**data, "event": str(data.get("event"))})


def coerce_id(value: Any) -> str | None:
    """Normalize an inbound ``id`` for echoing.

    Strings pass through untouched; numbers are coerced to their string form.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, int | float):
        return str(value)
    return None
