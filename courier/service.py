"""Channel service: the public face of one messaging session."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Type, get_args

from courier.config import ChannelSettings, get_settings
from courier.errors import ChannelError, ConnectFailed, NotInitialized, TerminalDisconnect
from courier.models import (
    MediaKind,
    MediaResult,
    MessageOptions,
    PresenceState,
    SendResult,
    normalize_ack,
    normalize_media_ack,
    parse_auth_data,
)
from courier.network.connection import ConnectionSession
from courier.network.ratelimit import RateLimiter
from courier.network.reconnect import ReconnectPolicy
from courier.network.router import ErrorHook, MessageHandler, MessageRouter, Unsubscribe, suffix_predicate
from courier.network.session_state import SessionState
from courier.network.transport.base import BaseTransport
from courier.network.transport.dummy import DummyTransport
from courier.network.transport.websocket import WebSocketTransport

LOGGER = logging.getLogger(__name__)

TransportFactory = Callable[[ChannelSettings], BaseTransport]
PRESENCE_STATES: frozenset[str] = frozenset(get_args(PresenceState))


def resolve_transport_class(settings: ChannelSettings) -> Type[BaseTransport]:
    return WebSocketTransport if settings.transport == "websocket" else DummyTransport


class ChannelService:
    """Wires session, router and rate limiter behind a small send/subscribe API.

    Example::

        service = ChannelService(ChannelSettings(auth_data=blob))
        service.on_message(handle)
        await service.initialize()
        await service.send_message("123@s.whatsapp.net", "hello")
        await service.shutdown()
    """

    def __init__(
        self,
        settings: Optional[ChannelSettings] = None,
        transport_factory: Optional[TransportFactory] = None,
        *,
        on_error: Optional[ErrorHook] = None,
    ) -> None:
        self.settings = settings or get_settings()
        if transport_factory is None:
            transport_cls = resolve_transport_class(self.settings)
            transport_factory = lambda s: transport_cls(s)  # noqa: E731
        self._limiter = RateLimiter.from_settings(self.settings.rate_limit)
        self._router = MessageRouter(
            is_group=suffix_predicate(self.settings.group_suffix),
            on_error=on_error,
            handler_timeout=self.settings.handler_timeout_seconds,
        )
        self._session = ConnectionSession(
            self.settings,
            transport_factory,
            policy=ReconnectPolicy.from_settings(self.settings.reconnect),
            router=self._router,
            on_error=on_error,
        )

    async def __aenter__(self) -> "ChannelService":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    @property
    def is_running(self) -> bool:
        return self._session.is_connected

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def session(self) -> ConnectionSession:
        return self._session

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._limiter

    async def initialize(self) -> None:
        """Open the session; idempotent while connecting or connected."""

        if self._session.is_active:
            return
        auth = parse_auth_data(self.settings.auth_data)
        try:
            await self._session.open(auth)
        except ChannelError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ConnectFailed(f"Unable to open channel transport: {exc}") from exc

        timeout = self.settings.open_timeout_seconds
        if not timeout:
            return
        state = await self._session.wait_settled(timeout)
        if state is SessionState.CONNECTING:
            LOGGER.warning("Transport not open after %.1fs; still connecting in background", timeout)
        elif state is SessionState.CLOSED:
            error = self._session.last_error
            if isinstance(error, TerminalDisconnect):
                raise error
            LOGGER.warning("Session closed during initialize: %s", error)

    async def shutdown(self) -> None:
        await self._session.shutdown()

    def on_message(self, handler: MessageHandler) -> Unsubscribe:
        return self._router.register(handler)

    def off_message(self, handler: MessageHandler) -> None:
        self._router.unregister(handler)

    def is_group_recipient(self, recipient: str) -> bool:
        return self._router.is_group(recipient)

    async def send_message(
        self,
        recipient: str,
        text: str,
        *,
        quoted_message_id: Optional[str] = None,
    ) -> SendResult:
        self._ensure_running()
        await self._limiter.acquire(recipient)
        options = MessageOptions(quoted_message_id=quoted_message_id).to_transport(recipient)
        ack = await self._session.send_message(recipient, {"text": text}, options)
        return normalize_ack(ack)

    async def send_media(
        self,
        recipient: str,
        media_ref: str,
        caption: Optional[str] = None,
        *,
        kind: MediaKind = "image",
        filename: Optional[str] = None,
    ) -> MediaResult:
        if kind == "image":
            content = {"image": {"url": media_ref}}
        elif kind == "document":
            content = {"document": {"url": media_ref}, "fileName": filename or "document"}
        else:
            raise ValueError(f"Unsupported media kind: {kind!r}")
        if caption is not None:
            content["caption"] = caption
        self._ensure_running()
        await self._limiter.acquire(recipient)
        ack = await self._session.send_message(recipient, content)
        return normalize_media_ack(ack)

    async def send_image(self, recipient: str, url: str, caption: Optional[str] = None) -> MediaResult:
        return await self.send_media(recipient, url, caption, kind="image")

    async def send_document(self, recipient: str, url: str, filename: Optional[str] = None) -> MediaResult:
        return await self.send_media(recipient, url, kind="document", filename=filename)

    async def send_presence(self, recipient: str, state: PresenceState) -> None:
        if state not in PRESENCE_STATES:
            raise ValueError(f"Unsupported presence state: {state!r}")
        self._ensure_running()
        await self._limiter.acquire(recipient)
        await self._session.send_presence(recipient, state)

    def _ensure_running(self) -> None:
        if not self.is_running:
            raise NotInitialized("Channel service not initialized")
