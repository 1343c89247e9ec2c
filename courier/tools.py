"""Tool wrappers exposing the channel service as ``{success, data|error}`` calls.

Each tool validates its arguments, calls exactly one service operation and
reports the outcome. Throttling and reconnection stay in the service.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from courier.errors import ChannelError
from courier.models import MediaKind, PresenceState
from courier.service import ChannelService

LOGGER = logging.getLogger(__name__)


class ToolResult(BaseModel):
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class SendMessageArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    recipient: str = Field(min_length=1)
    text: str
    quoted_message_id: Optional[str] = Field(default=None, alias="quotedMessageId")


class SendMediaArgs(BaseModel):
    recipient: str = Field(min_length=1)
    url: str = Field(min_length=1)
    kind: MediaKind = "image"
    caption: Optional[str] = None
    filename: Optional[str] = None


class SendPresenceArgs(BaseModel):
    recipient: str = Field(min_length=1)
    state: PresenceState = "composing"


async def _run(name: str, call: Callable[[], Awaitable[Optional[Dict[str, Any]]]]) -> ToolResult:
    try:
        data = await call()
    except (ChannelError, ValueError) as exc:
        LOGGER.info("Tool %s failed: %s", name, exc)
        return ToolResult(success=False, error=str(exc))
    return ToolResult(success=True, data=data)


async def send_message_tool(service: ChannelService, args: Dict[str, Any]) -> ToolResult:
    try:
        params = SendMessageArgs.model_validate(args)
    except ValidationError as exc:
        return ToolResult(success=False, error=f"Invalid arguments: {exc.error_count()} error(s)")

    async def _call() -> Dict[str, Any]:
        result = await service.send_message(
            params.recipient, params.text, quoted_message_id=params.quoted_message_id
        )
        return asdict(result)

    return await _run("send_message", _call)


async def send_media_tool(service: ChannelService, args: Dict[str, Any]) -> ToolResult:
    try:
        params = SendMediaArgs.model_validate(args)
    except ValidationError as exc:
        return ToolResult(success=False, error=f"Invalid arguments: {exc.error_count()} error(s)")

    async def _call() -> Dict[str, Any]:
        result = await service.send_media(
            params.recipient,
            params.url,
            params.caption,
            kind=params.kind,
            filename=params.filename,
        )
        return asdict(result)

    return await _run("send_media", _call)


async def send_presence_tool(service: ChannelService, args: Dict[str, Any]) -> ToolResult:
    try:
        params = SendPresenceArgs.model_validate(args)
    except ValidationError as exc:
        return ToolResult(success=False, error=f"Invalid arguments: {exc.error_count()} error(s)")

    async def _call() -> Dict[str, Any]:
        await service.send_presence(params.recipient, params.state)
        return {"recipient": params.recipient, "state": params.state}

    return await _run("send_presence", _call)


async def connection_status_tool(service: ChannelService, args: Dict[str, Any] | None = None) -> ToolResult:
    session = service.session
    return ToolResult(
        success=True,
        data={
            "running": service.is_running,
            "state": service.state.value,
            "retryCount": session.retry_count,
            "lastError": str(session.last_error) if session.last_error else None,
        },
    )


TOOLS: Dict[str, Callable[..., Awaitable[ToolResult]]] = {
    "send_message": send_message_tool,
    "send_media": send_media_tool,
    "send_presence": send_presence_tool,
    "connection_status": connection_status_tool,
}
