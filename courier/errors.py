"""Error taxonomy for the channel session manager."""

from __future__ import annotations

from typing import Any, Optional


class ChannelError(RuntimeError):
    """Base class for every error raised or reported by the channel core."""


class InvalidSessionData(ChannelError):
    """Raised when the serialized auth data cannot be parsed."""


class NotInitialized(ChannelError):
    """Raised when a send is attempted while the session is not connected."""


class ConnectFailed(ChannelError):
    """Raised when a caller-driven initialize cannot open the transport."""


class SendFailed(ChannelError):
    """The transport failed or rejected an outbound request."""


class TransientDisconnect(ChannelError):
    """The transport closed for a recoverable reason."""


class TerminalDisconnect(ChannelError):
    """The backend revoked the session (explicit logout)."""


class RetriesExhausted(ChannelError):
    """The reconnect policy refused further attempts."""


class HandlerError(ChannelError):
    """An inbound handler raised or timed out while processing a message."""

    def __init__(self, handler: Any, message: Optional[Any] = None, detail: str | None = None) -> None:
        name = getattr(handler, "__qualname__", None) or repr(handler)
        super().__init__(detail or f"Inbound handler {name} failed")
        self.handler = handler
        self.message = message


__all__ = [
    "ChannelError",
    "InvalidSessionData",
    "NotInitialized",
    "ConnectFailed",
    "SendFailed",
    "TransientDisconnect",
    "TerminalDisconnect",
    "RetriesExhausted",
    "HandlerError",
]
