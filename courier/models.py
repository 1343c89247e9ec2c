"""Wire models for transport events, auth state and send results."""

from __future__ import annotations

import enum
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from courier.errors import InvalidSessionData

PresenceState = Literal["composing", "paused", "recording", "available", "unavailable"]
MediaKind = Literal["image", "document"]


class DisconnectReason(enum.IntEnum):
    """Status codes the backend attaches to a closed connection."""

    CONNECTION_LOST = 408
    LOGGED_OUT = 401
    MULTIDEVICE_MISMATCH = 411
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    BAD_SESSION = 500
    RESTART_REQUIRED = 515


class CloseCause(enum.Enum):
    TRANSIENT = "transient"
    TERMINAL = "terminal"


class AuthState(BaseModel):
    """Backend credential structure restored from the serialized auth blob."""

    model_config = ConfigDict(extra="allow")

    creds: Dict[str, Any]
    keys: Dict[str, Any] = Field(default_factory=dict)


def parse_auth_data(raw: Optional[str]) -> AuthState:
    """Deserialize ``raw`` into an :class:`AuthState` or raise ``InvalidSessionData``."""

    if not raw or not raw.strip():
        raise InvalidSessionData("Invalid session data: auth data is empty.")
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidSessionData(
            "Invalid session data: must be a valid JSON string representing the auth state."
        ) from exc
    if not isinstance(decoded, dict):
        raise InvalidSessionData("Invalid session data: auth state must be a JSON object.")
    try:
        return AuthState.model_validate(decoded)
    except ValidationError as exc:
        raise InvalidSessionData(f"Invalid session data: {exc.error_count()} invalid field(s).") from exc


class ConnectionUpdate(BaseModel):
    """``connection.update`` event reported by the transport."""

    model_config = ConfigDict(populate_by_name=True)

    event: Literal["connection.update"]
    connection: Optional[Literal["connecting", "open", "close"]] = None
    status_code: Optional[int] = Field(default=None, alias="statusCode")
    reason: Optional[str] = None

    def close_cause(self) -> CloseCause:
        if self.status_code == DisconnectReason.LOGGED_OUT:
            return CloseCause.TERMINAL
        return CloseCause.TRANSIENT


class RawMessageKey(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    remote_jid: str = Field(default="", alias="remoteJid")
    from_me: bool = Field(default=False, alias="fromMe")
    id: str = ""
    participant: Optional[str] = None


class RawMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    key: RawMessageKey
    message: Optional[Dict[str, Any]] = None
    message_timestamp: Optional[Union[int, str]] = Field(default=None, alias="messageTimestamp")
    push_name: Optional[str] = Field(default=None, alias="pushName")


class MessagesUpsert(BaseModel):
    """``messages.upsert`` event carrying one or more inbound messages."""

    event: Literal["messages.upsert"]
    type: str = "notify"
    messages: List[RawMessage] = Field(default_factory=list)


TransportEvent = Union[ConnectionUpdate, MessagesUpsert]


def parse_event(raw: Dict[str, Any]) -> Optional[TransportEvent]:
    """Validate a raw transport event; unknown event names yield ``None``."""

    name = raw.get("event")
    if name == "connection.update":
        return ConnectionUpdate.model_validate(raw)
    if name == "messages.upsert":
        return MessagesUpsert.model_validate(raw)
    return None


def _coerce_timestamp(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _extract_text(content: Dict[str, Any]) -> str:
    if isinstance(content.get("conversation"), str):
        return content["conversation"]
    for key in ("extendedTextMessage", "imageMessage", "videoMessage", "documentMessage"):
        inner = content.get(key)
        if isinstance(inner, dict):
            text = inner.get("text") or inner.get("caption")
            if isinstance(text, str):
                return text
    return ""


@dataclass(frozen=True)
class InboundMessage:
    """Normalized inbound message delivered to registered handlers."""

    raw_payload: Dict[str, Any]
    conversation_id: str
    is_group: bool
    is_from_self: bool
    message_id: str = ""
    sender: str = ""
    push_name: Optional[str] = None
    text: str = ""
    timestamp: Optional[int] = None

    @classmethod
    def from_raw(cls, raw: RawMessage, *, is_group: bool) -> "InboundMessage":
        key = raw.key
        sender = key.participant if is_group and key.participant else key.remote_jid
        return cls(
            raw_payload=raw.model_dump(by_alias=True, exclude_none=True),
            conversation_id=key.remote_jid,
            is_group=is_group,
            is_from_self=key.from_me,
            message_id=key.id,
            sender=sender,
            push_name=raw.push_name,
            text=_extract_text(raw.message or {}),
            timestamp=_coerce_timestamp(raw.message_timestamp),
        )


@dataclass(frozen=True)
class SendResult:
    id: str
    timestamp: int


@dataclass(frozen=True)
class MediaResult:
    id: str


def _ack_id(ack: Optional[Dict[str, Any]]) -> str:
    key = (ack or {}).get("key")
    if isinstance(key, dict) and key.get("id") is not None:
        return str(key["id"])
    return ""


def normalize_ack(ack: Optional[Dict[str, Any]]) -> SendResult:
    """Map a raw transport acknowledgement onto ``{id, timestamp}``."""

    timestamp = _coerce_timestamp((ack or {}).get("messageTimestamp"))
    if timestamp is None:
        timestamp = int(time.time())
    return SendResult(id=_ack_id(ack), timestamp=timestamp)


def normalize_media_ack(ack: Optional[Dict[str, Any]]) -> MediaResult:
    return MediaResult(id=_ack_id(ack))


@dataclass
class MessageOptions:
    """Optional send modifiers."""

    quoted_message_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_transport(self, recipient: str) -> Optional[Dict[str, Any]]:
        options: Dict[str, Any] = dict(self.extra)
        if self.quoted_message_id:
            options["quoted"] = {"key": {"remoteJid": recipient, "id": self.quoted_message_id}}
        return options or None
