"""
Real-time streaming for the Webull client.

Public API:
    StreamingSession: Authenticated WebSocket session with resubscription
    Subscription: Desired symbol/event-type set
    StreamEvent / EventType / ConnectionState: Event models
    Transport / Connection / WebSocketTransport: Connection abstraction
"""

from .events import ConnectionState, EventType, StreamEvent, parse_frame
from .session import StreamingSession
from .subscription import Subscription
from .transport import Connection, Transport, TransportClosed, WebSocketTransport

__all__ = [
    # Session
    "StreamingSession",
    "Subscription",
    # Events
    "ConnectionState",
    "EventType",
    "StreamEvent",
    "parse_frame",
    # Transport
    "Connection",
    "Transport",
    "TransportClosed",
    "WebSocketTransport",
]
