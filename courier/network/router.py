"""Inbound fan-out of normalized messages to registered handlers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Dict, Optional

from pydantic import ValidationError

from courier.errors import ChannelError, HandlerError
from courier.models import InboundMessage, MessagesUpsert, RawMessage

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[InboundMessage], Awaitable[None] | None]
ErrorHook = Callable[[ChannelError], Awaitable[None] | None]
Unsubscribe = Callable[[], None]


def suffix_predicate(suffix: str) -> Callable[[str], bool]:
    return lambda conversation_id: conversation_id.endswith(suffix)


class MessageRouter:
    """Registers handlers and delivers each inbound message to all of them.

    Dispatch iterates over a snapshot of the registry, so handlers may
    register or unregister (themselves or others) while a message is being
    delivered without affecting that delivery.
    """

    def __init__(
        self,
        *,
        is_group: Callable[[str], bool] = suffix_predicate("@g.us"),
        on_error: Optional[ErrorHook] = None,
        handler_timeout: float = 0.0,
    ) -> None:
        self._is_group = is_group
        self._on_error = on_error
        self._handler_timeout = float(handler_timeout or 0)
        self._handlers: Dict[MessageHandler, None] = {}

    def register(self, handler: MessageHandler) -> Unsubscribe:
        self._handlers[handler] = None
        return lambda: self.unregister(handler)

    def unregister(self, handler: MessageHandler) -> None:
        self._handlers.pop(handler, None)

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return len(self._handlers)

    def is_group(self, conversation_id: str) -> bool:
        return self._is_group(conversation_id)

    async def dispatch(self, raw_event: Dict[str, Any] | MessagesUpsert) -> int:
        """Deliver every eligible message in ``raw_event``; returns deliveries made."""

        try:
            event = (
                raw_event
                if isinstance(raw_event, MessagesUpsert)
                else MessagesUpsert.model_validate(raw_event)
            )
        except ValidationError as exc:
            LOGGER.warning("Dropping malformed messages event: %s", exc)
            return 0
        if event.type != "notify":
            LOGGER.debug("Ignoring messages event of type %s", event.type)
            return 0
        delivered = 0
        for raw in event.messages:
            message = self._normalize(raw)
            if message is None:
                continue
            delivered += await self.deliver(message)
        return delivered

    async def deliver(self, message: InboundMessage) -> int:
        delivered = 0
        for handler in tuple(self._handlers):
            if await self._invoke(handler, message):
                delivered += 1
        return delivered

    def _normalize(self, raw: RawMessage) -> Optional[InboundMessage]:
        if not raw.message or raw.key.from_me:
            return None
        return InboundMessage.from_raw(raw, is_group=self._is_group(raw.key.remote_jid))

    async def _invoke(self, handler: MessageHandler, message: InboundMessage) -> bool:
        try:
            result = handler(message)
            if inspect.isawaitable(result):
                if self._handler_timeout > 0:
                    await asyncio.wait_for(result, timeout=self._handler_timeout)
                else:
                    await result
            return True
        except asyncio.CancelledError as exc:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            error = HandlerError(handler, message, "Inbound handler was cancelled")
            error.__cause__ = exc
            LOGGER.warning("%s (message id=%s)", error, message.message_id)
        except asyncio.TimeoutError as exc:
            error = HandlerError(handler, message, f"Inbound handler timed out after {self._handler_timeout}s")
            error.__cause__ = exc
            LOGGER.warning("%s (message id=%s)", error, message.message_id)
        except Exception as exc:  # noqa: BLE001
            error = HandlerError(handler, message)
            error.__cause__ = exc
            LOGGER.exception("Inbound handler failed for message id=%s", message.message_id)
        await report_error(self._on_error, error)
        return False


async def report_error(hook: Optional[ErrorHook], error: ChannelError) -> None:
    """Hand ``error`` to the observation hook; hook failures are suppressed."""

    if hook is None:
        return
    try:
        result = hook(error)
        if inspect.isawaitable(result):
            await result
    except Exception:  # noqa: BLE001
        LOGGER.debug("Suppress error hook failure", exc_info=True)
