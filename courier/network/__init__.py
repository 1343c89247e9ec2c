"""Network stack (transport/session/routing/throttling) for the channel."""

from courier.network.connection import ConnectionSession
from courier.network.ratelimit import RateLimiter, RateWindow
from courier.network.reconnect import ReconnectDecision, ReconnectPolicy
from courier.network.router import MessageRouter
from courier.network.session_state import SessionState, SessionTracker
from courier.network.transport.base import BaseTransport
from courier.network.transport.dummy import DummyTransport
from courier.network.transport.websocket import WebSocketTransport

__all__ = [
    "ConnectionSession",
    "RateLimiter",
    "RateWindow",
    "ReconnectDecision",
    "ReconnectPolicy",
    "MessageRouter",
    "SessionState",
    "SessionTracker",
    "BaseTransport",
    "DummyTransport",
    "WebSocketTransport",
]
