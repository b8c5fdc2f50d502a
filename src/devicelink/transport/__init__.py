"""Connection managers.

Both managers feed the same CommandDispatcher:
- Listening - Starlette WebSocket endpoint, many concurrent controllers
- Relay - websockets client, one outbound connection with flat-delay reconnect
"""

from .base import ConnectionManager, LogCallback
from .listener import (
    UNAUTHORIZED_CLOSE_CODE,
    ConnectionHandler,
    ListeningConnectionManager,
    extract_token,
)
from .relay import RelayConnectionManager, RelayState, build_relay_url

__all__ = [
    # Base abstractions
    "ConnectionManager",
    "LogCallback",
    # Listening mode
    "ConnectionHandler",
    "ListeningConnectionManager",
    "UNAUTHORIZED_CLOSE_CODE",
    "extract_token",
    # Relay mode
    "RelayConnectionManager",
    "RelayState",
    "build_relay_url",
]
