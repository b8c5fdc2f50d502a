"""Message codec: raw text frames <-> envelopes.

Pure and stateless. Both transports use the same codec so the wire format
cannot drift between listening and relay modes.
"""

from __future__ import annotations

import json
from typing import Any

from .envelopes import CommandEnvelope, RelayControlEvent, ResultEnvelope
from .errors import DecodeError

# UTF-8 is implied by WebSocket text frames; non-ASCII text is sent as-is.
ENSURE_ASCII = False


def decode_object(raw: str | bytes) -> dict[str, Any]:
    """Parse a frame into a JSON object.

    Raises:
        DecodeError: If the frame is not valid JSON or not a JSON object
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(str(e)) from e

    if not isinstance(data, dict):
        raise DecodeError(f"expected JSON object, got {type(data).__name__}")
    return data


def decode(raw: str | bytes) -> CommandEnvelope | RelayControlEvent:
    """Decode a frame into a Command Envelope or Relay Control Event.

    A frame carrying an ``event`` field is a control event; anything else is
    treated as a command (possibly with a missing action, which the dispatcher
    answers with an error envelope).

    Raises:
        DecodeError: If the frame is not a well-formed JSON object
    """
    data = decode_object(raw)
    if "event" in data:
        return RelayControlEvent.from_object(data)
    return CommandEnvelope.from_object(data)


def encode(result: ResultEnvelope) -> str:
    """Serialize a Result Envelope to a text frame."""
    return json.dumps(result.to_dict(), ensure_ascii=ENSURE_ASCII)
