"""In-memory transport for offline runs and tests."""

from __future__ import annotations

import asyncio
import logging
from itertools import count
from typing import Any, Optional

from courier.models import AuthState, DisconnectReason
from courier.network.transport.base import BaseTransport

LOGGER = logging.getLogger(__name__)


class DummyTransport(BaseTransport):
    """Queue-backed transport; events are pushed with :meth:`emit`."""

    def __init__(self, settings=None, *, auto_open: bool = True) -> None:
        self._settings = settings
        self._auto_open = auto_open
        self._events: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._ids = count(1)
        self.auth: Optional[AuthState] = None
        self.sent: list[dict[str, Any]] = []
        self.presence: list[tuple[str, str]] = []
        self.connected = False
        self.closed = False

    async def connect(self, auth: AuthState) -> None:
        LOGGER.debug("Dummy transport connect()")
        self.auth = auth
        self.connected = True
        if self._auto_open:
            self.emit({"event": "connection.update", "connection": "open"})

    async def send_message(
        self,
        recipient: str,
        content: dict[str, Any],
        options: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        LOGGER.debug("Dummy transport send_message(): %s %s", recipient, content)
        self.sent.append({"recipient": recipient, "content": content, "options": options})
        return {"key": {"id": f"dummy-{next(self._ids)}", "remoteJid": recipient}}

    async def send_presence(self, recipient: str, state: str) -> None:
        LOGGER.debug("Dummy transport send_presence(): %s %s", recipient, state)
        self.presence.append((recipient, state))

    async def receive(self) -> dict[str, Any]:
        return await self._events.get()

    async def close(self) -> None:
        LOGGER.debug("Dummy transport close()")
        self.connected = False
        self.closed = True

    def emit(self, event: dict[str, Any]) -> None:
        """Queue a raw event for the session to ingest."""

        self._events.put_nowait(event)

    def open(self) -> None:
        self.emit({"event": "connection.update", "connection": "open"})

    def drop(self, status_code: int = DisconnectReason.CONNECTION_LOST) -> None:
        """Simulate a recoverable disconnect."""

        self.emit({"event": "connection.update", "connection": "close", "statusCode": int(status_code)})

    def logout(self) -> None:
        """Simulate the backend revoking the session."""

        self.drop(DisconnectReason.LOGGED_OUT)
