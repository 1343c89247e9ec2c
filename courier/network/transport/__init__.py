"""Transport implementations for the messaging backend."""

from .base import BaseTransport
from .dummy import DummyTransport
from .websocket import WebSocketTransport

__all__ = ["BaseTransport", "DummyTransport", "WebSocketTransport"]
