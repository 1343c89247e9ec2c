"""WebSocket transport speaking JSON frames to a messaging bridge."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from itertools import count
from typing import Any, Optional

from websockets.asyncio.client import ClientConnection, connect

from courier.config import ChannelSettings
from courier.models import AuthState
from courier.network.transport.base import BaseTransport

LOGGER = logging.getLogger(__name__)
ACK_TIMEOUT_SECONDS = 30.0


class WebSocketTransport(BaseTransport):
    """Bridge transport: requests carry a ``ref`` the bridge echoes in its ``ack``.

    A reader task owns the socket. Acks resolve their pending request as soon
    as they arrive; every other frame is queued for :meth:`receive`. Replies
    sent from inside an inbound handler therefore do not wait on the consumer
    of :meth:`receive`.
    """

    def __init__(self, settings: ChannelSettings) -> None:
        self._settings = settings
        self._ws: Optional[ClientConnection] = None
        self._refs = count(1)
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._events: asyncio.Queue[Optional[dict[str, Any]]] = asyncio.Queue()
        self._reader: Optional[asyncio.Task[None]] = None
        self._failure: Optional[BaseException] = None

    async def connect(self, auth: AuthState) -> None:
        LOGGER.info("Connecting to messaging bridge at %s", self._settings.bridge_ws_url)
        self._ws = await connect(self._settings.bridge_ws_url)
        await self._write({"op": "auth", "auth": auth.model_dump(mode="json")})
        self._reader = asyncio.create_task(self._read_frames(self._ws), name="bridge-reader")

    async def send_message(
        self,
        recipient: str,
        content: dict[str, Any],
        options: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        return await self._request({"op": "send", "jid": recipient, "content": content, "options": options})

    async def send_presence(self, recipient: str, state: str) -> None:
        await self._request({"op": "presence", "jid": recipient, "state": state})

    async def receive(self) -> dict[str, Any]:
        if self._reader is None:
            raise RuntimeError("WebSocket transport not connected")
        frame = await self._events.get()
        if frame is None:
            # Keep the end marker so later calls fail the same way.
            self._events.put_nowait(None)
            raise ConnectionError("Bridge connection closed") from self._failure
        return frame

    async def close(self) -> None:
        reader, self._reader = self._reader, None
        if reader is not None and not reader.done():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._fail_pending(ConnectionError("WebSocket transport closed"))
        if self._ws:
            LOGGER.info("Closing WebSocket transport")
            await self._ws.close()
            self._ws = None

    async def _read_frames(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                frame = self._decode(raw)
                if frame is None:
                    continue
                if frame.get("op") == "ack":
                    self._resolve(frame)
                    continue
                self._events.put_nowait(frame)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Bridge reader stopped: %s", exc)
            self._failure = exc
        self._fail_pending(ConnectionError("Bridge connection closed"))
        self._events.put_nowait(None)

    @staticmethod
    def _decode(raw: str | bytes) -> Optional[dict[str, Any]]:
        LOGGER.debug("WebSocket receive: %s", raw)
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            frame = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.warning("Dropping malformed bridge frame: %s", exc)
            return None
        if not isinstance(frame, dict):
            LOGGER.warning("Ignoring non-object bridge frame")
            return None
        return frame

    async def _request(self, frame: dict[str, Any]) -> dict[str, Any]:
        ref = str(next(self._refs))
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[ref] = future
        try:
            await self._write({**frame, "ref": ref})
            return await asyncio.wait_for(future, timeout=ACK_TIMEOUT_SECONDS)
        finally:
            self._pending.pop(ref, None)

    def _resolve(self, frame: dict[str, Any]) -> None:
        future = self._pending.get(str(frame.get("ref")))
        if future is None or future.done():
            LOGGER.debug("Dropping unmatched bridge ack ref=%s", frame.get("ref"))
            return
        error = frame.get("error")
        if error:
            future.set_exception(RuntimeError(f"Bridge rejected request: {error}"))
        else:
            future.set_result(frame.get("result") or {})

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    async def _write(self, frame: dict[str, Any]) -> None:
        if not self._ws:
            raise RuntimeError("WebSocket transport not connected")
        payload = json.dumps(frame)
        LOGGER.debug("WebSocket send: %s", payload)
        await self._ws.send(payload)
