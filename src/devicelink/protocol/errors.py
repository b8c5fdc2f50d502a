"""Error taxonomy for the command protocol.

Every failure mode in the protocol layer maps to one of these exceptions.
None of them is fatal: each one degrades to an error Result Envelope whose
``message`` is the exception's ``message`` attribute, or to a connection close
(``AuthError`` in listening mode).
"""

from __future__ import annotations


class DeviceLinkError(Exception):
    """Base class for all devicelink errors.

    The ``message`` attribute is the exact text placed on the wire.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class DecodeError(DeviceLinkError):
    """Inbound frame is not a well-formed JSON object."""

    def __init__(self, detail: str | None = None) -> None:
        super().__init__("invalid JSON")
        self.detail = detail


class AuthError(DeviceLinkError):
    """Bad or missing token, or a command on an unauthenticated session."""

    INVALID_TOKEN = "invalid auth token"
    NOT_AUTHENTICATED = "not authenticated"


class ValidationError(DeviceLinkError):
    """A required parameter is missing or malformed."""

    def __init__(self, param: str) -> None:
        super().__init__(f"missing {param}")
        self.param = param


class CapabilityUnavailable(DeviceLinkError):
    """A required capability provider is absent or not ready.

    Distinct from ``CapabilityFailure``: the call was never attempted.
    """


class CapabilityFailure(DeviceLinkError):
    """The capability call ran but reported failure."""

    def __init__(self, action: str) -> None:
        super().__init__(f"{action} failed")
        self.action = action


class UnexpectedFault(DeviceLinkError):
    """Any other exception raised while dispatching a command."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"exception: {cause}")
        self.cause = cause


class ConfigError(DeviceLinkError):
    """Invalid runtime configuration."""
