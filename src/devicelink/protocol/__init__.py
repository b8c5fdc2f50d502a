"""Transport-agnostic command protocol.

Defines the envelope format and action semantics shared by the listening
and relay transports.

Key concepts:
- Command Envelope: controller → device request, optionally carrying an ``id``
- Result Envelope: device → controller response, ``id`` echoed verbatim
- Relay Control Event: relay notification, observed but never answered
- Dispatcher: the single place where actions are mapped to capabilities
"""

from .codec import decode, decode_object, encode
from .dispatcher import CommandDispatcher
from .envelopes import ActionType, CommandEnvelope, RelayControlEvent, ResultEnvelope
from .errors import (
    AuthError,
    CapabilityFailure,
    CapabilityUnavailable,
    ConfigError,
    DecodeError,
    DeviceLinkError,
    UnexpectedFault,
    ValidationError,
)

__all__ = [
    # Envelopes
    "ActionType",
    "CommandEnvelope",
    "RelayControlEvent",
    "ResultEnvelope",
    # Codec
    "decode",
    "decode_object",
    "encode",
    # Dispatch
    "CommandDispatcher",
    # Errors
    "AuthError",
    "CapabilityFailure",
    "CapabilityUnavailable",
    "ConfigError",
    "DecodeError",
    "DeviceLinkError",
    "UnexpectedFault",
    "ValidationError",
]
