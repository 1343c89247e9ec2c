"""Session manager for a long-lived messaging channel connection."""

from courier.config import ChannelSettings, get_settings
from courier.errors import (
    ChannelError,
    ConnectFailed,
    HandlerError,
    InvalidSessionData,
    NotInitialized,
    RetriesExhausted,
    SendFailed,
    TerminalDisconnect,
    TransientDisconnect,
)
from courier.models import InboundMessage, MediaResult, SendResult
from courier.network.session_state import SessionState
from courier.service import ChannelService

__all__ = [
    "ChannelService",
    "ChannelSettings",
    "get_settings",
    "SessionState",
    "InboundMessage",
    "SendResult",
    "MediaResult",
    "ChannelError",
    "ConnectFailed",
    "SendFailed",
    "HandlerError",
    "InvalidSessionData",
    "NotInitialized",
    "RetriesExhausted",
    "TerminalDisconnect",
    "TransientDisconnect",
]
