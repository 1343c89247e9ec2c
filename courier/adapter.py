"""Conversation-level channel adapter over :class:`ChannelService`."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Sequence

from courier.models import InboundMessage
from courier.service import ChannelService

LOGGER = logging.getLogger(__name__)

ConversationType = Literal["direct", "group"]
ChannelEventType = Literal["message"]


@dataclass
class ContentBlock:
    type: Literal["text", "image", "document"]
    text: Optional[str] = None
    url: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None


@dataclass
class MessageContent:
    blocks: list[ContentBlock] = field(default_factory=list)
    reply_to_message_id: Optional[str] = None

    @classmethod
    def text(cls, text: str, *, reply_to_message_id: Optional[str] = None) -> "MessageContent":
        return cls([ContentBlock(type="text", text=text)], reply_to_message_id=reply_to_message_id)

    def first(self, block_type: str) -> Optional[ContentBlock]:
        return next((block for block in self.blocks if block.type == block_type), None)


@dataclass(frozen=True)
class ChannelSendResult:
    message_id: str
    timestamp: str


@dataclass(frozen=True)
class ChannelMessage:
    message_id: str
    platform: str
    conversation_id: str
    conversation_type: ConversationType
    sender_id: str
    sender_name: Optional[str]
    text: str
    timestamp: str
    raw_event: Dict[str, Any]


@dataclass(frozen=True)
class ChannelEvent:
    type: ChannelEventType
    platform: str
    conversation_id: str
    timestamp: str
    data: ChannelMessage


ChannelEventHandler = Callable[[ChannelEvent], Awaitable[None] | None]


def _iso(ts: Optional[int]) -> str:
    moment = datetime.fromtimestamp(ts, tz=timezone.utc) if ts else datetime.now(tz=timezone.utc)
    return moment.isoformat()


class ChannelAdapter:
    """Presents the service as a generic chat channel (send blocks, emit events)."""

    platform = "whatsapp"
    display_name = "WhatsApp"
    capabilities: tuple[str, ...] = (
        "text",
        "images",
        "documents",
        "typing_indicator",
        "group_chat",
        "replies",
    )

    def __init__(self, service: ChannelService) -> None:
        self.service = service
        self._handlers: Dict[ChannelEventHandler, Optional[frozenset[str]]] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None

    async def initialize(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.service.on_message(self._handle_inbound)
        await self.service.initialize()

    async def shutdown(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._handlers.clear()
        await self.service.shutdown()

    def get_connection_info(self) -> dict[str, str]:
        return {"status": "connected" if self.service.is_running else "disconnected"}

    async def send(self, conversation_id: str, content: MessageContent) -> ChannelSendResult:
        image = content.first("image")
        if image is not None and image.url:
            result = await self.service.send_image(conversation_id, image.url, image.caption)
            return ChannelSendResult(result.id, _iso(None))

        document = content.first("document")
        if document is not None and document.url:
            result = await self.service.send_document(conversation_id, document.url, document.filename)
            return ChannelSendResult(result.id, _iso(None))

        text_block = content.first("text")
        sent = await self.service.send_message(
            conversation_id,
            (text_block.text if text_block else None) or "",
            quoted_message_id=content.reply_to_message_id,
        )
        return ChannelSendResult(sent.id, _iso(sent.timestamp))

    async def send_typing_indicator(self, conversation_id: str, is_typing: bool) -> None:
        await self.service.send_presence(conversation_id, "composing" if is_typing else "paused")

    def on(
        self,
        handler: ChannelEventHandler,
        event_types: Optional[Sequence[ChannelEventType]] = None,
    ) -> Callable[[], None]:
        self._handlers[handler] = frozenset(event_types) if event_types else None
        return lambda: self._handlers.pop(handler, None)

    async def _handle_inbound(self, message: InboundMessage) -> None:
        timestamp = _iso(message.timestamp)
        event = ChannelEvent(
            type="message",
            platform=self.platform,
            conversation_id=message.conversation_id,
            timestamp=timestamp,
            data=ChannelMessage(
                message_id=message.message_id,
                platform=self.platform,
                conversation_id=message.conversation_id,
                conversation_type="group" if message.is_group else "direct",
                sender_id=message.sender,
                sender_name=message.push_name,
                text=message.text,
                timestamp=timestamp,
                raw_event=message.raw_payload,
            ),
        )
        await self._emit(event)

    async def _emit(self, event: ChannelEvent) -> None:
        for handler, wanted in list(self._handlers.items()):
            if wanted is not None and event.type not in wanted:
                continue
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                LOGGER.exception("Channel event handler failed for %s", event.conversation_id)
