"""Base abstractions for connection managers.

A connection manager owns a transport topology (listening or relay), the
sessions that live on it, and the dispatch tasks those sessions spawn. All
managers share one CommandDispatcher, so command semantics do not depend on
the transport.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from ..protocol.dispatcher import CommandDispatcher

logger = logging.getLogger(__name__)

# Observer for human-readable connection events (host UI, status line, ...)
LogCallback = Callable[[str], None]


class ConnectionManager(ABC):
    """Abstract base for the listening and relay connection managers."""

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        on_log: LogCallback | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._on_log = on_log

    @property
    def dispatcher(self) -> CommandDispatcher:
        return self._dispatcher

    @property
    @abstractmethod
    def connection_count(self) -> int:
        """Number of live authenticated connections."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Cancel outstanding work, close sockets, clear state.

        Must be idempotent.
        """
        ...

    def _log(self, message: str, level: int = logging.INFO) -> None:
        """Log a connection event and forward it to the observer."""
        logging.getLogger(type(self).__module__).log(level, message)
        if self._on_log is None:
            return
        try:
            self._on_log(message)
        except Exception as e:
            logger.warning(f"Log observer failed: {e}")
