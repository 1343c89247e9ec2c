"""Channel bootstrap entrypoint: build the service from settings and run it."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from courier.config import ChannelSettings, get_settings
from courier.errors import ChannelError
from courier.models import InboundMessage
from courier.service import ChannelService

LOGGER = logging.getLogger(__name__)
_service: ChannelService | None = None


def _log_error(error: ChannelError) -> None:
    LOGGER.error("Channel error: %s", error)


async def _log_message(message: InboundMessage) -> None:
    LOGGER.info(
        "Inbound message id=%s conversation=%s group=%s",
        message.message_id,
        message.conversation_id,
        message.is_group,
    )


def build_service(settings: Optional[ChannelSettings] = None) -> ChannelService:
    """Construct the service with the configured transport and logging hooks."""

    settings = settings or get_settings()
    service = ChannelService(settings, on_error=_log_error)
    service.on_message(_log_message)
    LOGGER.debug("Channel service built with %s transport", settings.transport)
    return service


async def serve_forever(settings: Optional[ChannelSettings] = None) -> None:
    """Start the channel session and keep the process alive until cancelled."""

    global _service
    _service = build_service(settings)
    await _service.initialize()
    try:
        await asyncio.Future()  # block until cancelled
    except asyncio.CancelledError:
        LOGGER.info("Channel shutdown requested")
        raise
    finally:
        await _service.shutdown()
        _service = None
