"""Connection session that owns the backend transport and its lifecycle."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable, Optional

from pydantic import ValidationError

from courier.config import ChannelSettings
from courier.errors import (
    ChannelError,
    NotInitialized,
    RetriesExhausted,
    SendFailed,
    TerminalDisconnect,
)
from courier.models import AuthState, CloseCause, ConnectionUpdate, parse_event
from courier.network.reconnect import ReconnectPolicy
from courier.network.router import ErrorHook, MessageRouter, report_error
from courier.network.session_state import SessionState, SessionTracker
from courier.network.transport.base import BaseTransport

LOGGER = logging.getLogger(__name__)


class ConnectionSession:
    """Drives the session state machine around a single transport handle.

    Raw transport events enter through one ingestion point (``_ingest``):
    connection updates move the state machine, message batches are handed to
    the router. Closures are fed to the reconnect policy; a retry is a
    cancellable task owned by the session.
    """

    def __init__(
        self,
        settings: ChannelSettings,
        transport_factory: Callable[[ChannelSettings], BaseTransport],
        *,
        policy: ReconnectPolicy,
        router: MessageRouter,
        on_error: Optional[ErrorHook] = None,
    ) -> None:
        self._settings = settings
        self._transport_factory = transport_factory
        self._policy = policy
        self._router = router
        self._on_error = on_error
        self._tracker = SessionTracker()
        self._transport: Optional[BaseTransport] = None
        self._auth: Optional[AuthState] = None
        self._receive_task: Optional[asyncio.Task[None]] = None
        self._reconnect_task: Optional[asyncio.Task[None]] = None
        self._settled = asyncio.Event()
        self._epoch = 0
        self.connect_attempts = 0
        self.last_error: Optional[ChannelError] = None

    @property
    def state(self) -> SessionState:
        return self._tracker.state

    @property
    def retry_count(self) -> int:
        return self._tracker.retry_count

    @property
    def is_active(self) -> bool:
        return self._tracker.is_active

    @property
    def is_connected(self) -> bool:
        return self._tracker.state is SessionState.CONNECTED and self._transport is not None

    async def open(self, auth: AuthState) -> None:
        """Start connecting; a no-op while already connecting or connected."""

        if self._tracker.is_active:
            LOGGER.debug("Session already %s; ignoring open()", self._tracker.state.value)
            return
        if self._tracker.state is SessionState.CLOSING:
            raise NotInitialized("Channel session is shutting down; wait for shutdown() to finish")
        self._auth = auth
        self.last_error = None
        self._tracker.retry_count = 0
        self._transition(SessionState.CONNECTING)
        try:
            await self._open_transport()
        except Exception:
            transport, self._transport = self._transport, None
            await self._discard(transport)
            if self._tracker.state is SessionState.CONNECTING:
                self._transition(SessionState.CLOSED)
            raise

    async def shutdown(self) -> None:
        """Detach from the transport, cancel any pending retry and close the handle."""

        if self._tracker.state in {SessionState.IDLE, SessionState.CLOSING, SessionState.CLOSED}:
            return
        self._epoch += 1
        self._transition(SessionState.CLOSING)
        await self._cancel(self._reconnect_task)
        await self._cancel(self._receive_task)
        self._reconnect_task = None
        self._receive_task = None
        transport, self._transport = self._transport, None
        await self._discard(transport)
        self._transition(SessionState.CLOSED)
        LOGGER.info("Session closed")

    async def wait_settled(self, timeout: float | None = None) -> SessionState:
        """Wait until the session leaves ``CONNECTING`` (or ``timeout`` passes)."""

        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._settled.wait(), timeout=timeout)
        return self._tracker.state

    async def send_message(
        self,
        recipient: str,
        content: dict[str, Any],
        options: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        transport = self._require_transport()
        try:
            ack = await transport.send_message(recipient, content, options)
        except ChannelError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise SendFailed(f"Send to {recipient} failed: {exc}") from exc
        return ack or {}

    async def send_presence(self, recipient: str, state: str) -> None:
        transport = self._require_transport()
        try:
            await transport.send_presence(recipient, state)
        except ChannelError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise SendFailed(f"Presence update to {recipient} failed: {exc}") from exc

    def _require_transport(self) -> BaseTransport:
        transport = self._transport
        if transport is None or self._tracker.state is not SessionState.CONNECTED:
            raise NotInitialized(f"Channel session not connected (state={self._tracker.state.value})")
        return transport

    def _transition(self, next_state: SessionState) -> None:
        previous = self._tracker.state
        self._tracker.transition(next_state)
        if next_state is SessionState.CONNECTING:
            self._settled.clear()
        else:
            self._settled.set()
        if previous is not next_state:
            LOGGER.info("Session %s → %s", previous.value, next_state.value)

    async def _open_transport(self) -> None:
        epoch = self._epoch
        transport = self._transport_factory(self._settings)
        self._transport = transport
        self.connect_attempts += 1
        if self._auth is None:
            raise RuntimeError("Channel session opened without auth state")
        await transport.connect(self._auth)
        if epoch != self._epoch:
            return
        self._receive_task = asyncio.create_task(
            self._receive_loop(transport, epoch),
            name="channel-recv",
        )

    async def _receive_loop(self, transport: BaseTransport, epoch: int) -> None:
        while epoch == self._epoch:
            try:
                raw = await transport.receive()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Receive loop error: %s", exc)
                await self._handle_close(transport, CloseCause.TRANSIENT, str(exc))
                return
            if not await self._ingest(transport, raw):
                return

    async def _ingest(self, transport: BaseTransport, raw: dict[str, Any]) -> bool:
        """Apply one raw transport event; returns False once the transport is gone."""

        try:
            event = parse_event(raw)
        except ValidationError as exc:
            LOGGER.warning("Dropping invalid transport event: %s", exc)
            return True
        if event is None:
            LOGGER.debug("Ignoring transport event %r", raw.get("event"))
            return True
        if isinstance(event, ConnectionUpdate):
            if event.connection == "open":
                self._on_open()
            elif event.connection == "close":
                detail = event.reason or f"status {event.status_code}"
                await self._handle_close(transport, event.close_cause(), detail)
                return False
            return True
        await self._router.dispatch(event)
        return True

    def _on_open(self) -> None:
        if self._tracker.state is not SessionState.CONNECTING:
            return
        attempts = self._tracker.retry_count
        self._transition(SessionState.CONNECTED)
        LOGGER.info("Transport open after %s retry attempt(s)", attempts)

    async def _handle_close(self, transport: Optional[BaseTransport], cause: CloseCause, detail: str) -> None:
        if transport is not self._transport or not self._tracker.is_active:
            return
        epoch = self._epoch
        self._transport = None
        await self._discard(transport)
        if epoch != self._epoch:
            return

        decision = self._policy.evaluate(cause, self._tracker.retry_count)
        if not decision.retry:
            if cause is CloseCause.TERMINAL:
                error: ChannelError = TerminalDisconnect(f"Session logged out ({detail})")
            else:
                error = RetriesExhausted(
                    f"Gave up reconnecting after {self._tracker.retry_count} attempt(s) ({detail})"
                )
            self.last_error = error
            self._transition(SessionState.CLOSED)
            LOGGER.warning("%s", error)
            await report_error(self._on_error, error)
            return

        self._tracker.retry_count += 1
        if self._tracker.state is SessionState.CONNECTED:
            self._transition(SessionState.CONNECTING)
        LOGGER.warning(
            "Transport closed (%s); reconnect attempt %s/%s in %.2fs",
            detail,
            self._tracker.retry_count,
            self._policy.max_retries,
            decision.delay,
        )
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(decision.delay, epoch),
            name="channel-reconnect",
        )

    async def _reconnect_after(self, delay: float, epoch: int) -> None:
        await asyncio.sleep(delay)
        if epoch != self._epoch:
            return
        try:
            await self._open_transport()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Reconnect attempt %s failed: %s", self._tracker.retry_count, exc)
            await self._handle_close(self._transport, CloseCause.TRANSIENT, str(exc))

    @staticmethod
    async def _cancel(task: Optional[asyncio.Task[Any]]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @staticmethod
    async def _discard(transport: Optional[BaseTransport]) -> None:
        if transport is None:
            return
        try:
            await transport.close()
        except Exception:  # noqa: BLE001
            LOGGER.debug("Suppress transport close error", exc_info=True)
