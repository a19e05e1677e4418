"""Pydantic models for streaming events.

Inbound frames are JSON objects with a ``type`` discriminator, an optional
``timestamp`` and ``symbol``, and type-specific fields. Anything other than
those three keys ends up in ``StreamEvent.data``.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from ..exceptions import ResponseParseError


class EventType(str, Enum):
    """Streaming event types."""

    QUOTE = "QUOTE"
    ORDER = "ORDER"
    ACCOUNT = "ACCOUNT"
    TRADE = "TRADE"
    CONNECTION = "CONNECTION"
    SUBSCRIPTION = "SUBSCRIPTION"
    ERROR = "ERROR"
    HEARTBEAT = "HEARTBEAT"
    UNKNOWN = "UNKNOWN"


# Event types a caller can subscribe to
SUBSCRIBABLE_TYPES = frozenset(
    {EventType.QUOTE, EventType.ORDER, EventType.ACCOUNT, EventType.TRADE}
)


class ConnectionState(str, Enum):
    """Streaming session connection states."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    AUTHENTICATING = "AUTHENTICATING"
    OPEN = "OPEN"
    RECONNECTING = "RECONNECTING"
    CLOSED = "CLOSED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StreamEvent(BaseModel):
    """A typed event delivered by a streaming session.

    Attributes:
        type: Event type
        timestamp: Server timestamp (receipt time if the frame has none)
        symbol: Ticker symbol the event refers to, if any
        data: Remaining event fields
    """

    type: EventType = Field(..., description="Event type")
    timestamp: datetime = Field(default_factory=_utcnow, description="Event timestamp")
    symbol: Optional[str] = Field(default=None, description="Ticker symbol")
    data: Dict[str, Any] = Field(default_factory=dict, description="Event payload")

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, v: Any) -> Any:
        """Map unrecognized type strings to UNKNOWN."""
        if isinstance(v, str):
            try:
                return EventType(v.upper())
            except ValueError:
                return EventType.UNKNOWN
        return v

    @field_validator("timestamp", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: Any) -> Any:
        """Accept epoch milliseconds as well as ISO strings."""
        if v is None:
            return _utcnow()
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            try:
                return datetime.fromtimestamp(v / 1000, tz=timezone.utc)
            except (OverflowError, OSError) as e:
                raise ValueError(f"timestamp out of range: {v}") from e
        return v

    @classmethod
    def connection(cls, state: ConnectionState, message: Optional[str] = None) -> "StreamEvent":
        """Event reporting a connection state change."""
        data: Dict[str, Any] = {"status": state.value}
        if message:
            data["message"] = message
        return cls(type=EventType.CONNECTION, data=data)

    @classmethod
    def error(cls, code: str, message: str, **extra: Any) -> "StreamEvent":
        """Event reporting a stream-level error."""
        return cls(type=EventType.ERROR, data={"code": code, "message": message, **extra})

    @property
    def is_heartbeat(self) -> bool:
        return self.type is EventType.HEARTBEAT


def parse_frame(frame: str) -> StreamEvent:
    """
    Decode one inbound text frame.

    Args:
        frame: Raw JSON text

    Returns:
        Parsed event

    Raises:
        ResponseParseError: If the frame is not a JSON object with a type
    """
    try:
        payload = json.loads(frame)
    except ValueError as e:
        raise ResponseParseError(f"Invalid JSON frame: {e}") from e

    if not isinstance(payload, dict) or "type" not in payload:
        raise ResponseParseError("Frame is not an event object")

    fields = dict(payload)
    event_type = fields.pop("type")
    timestamp = fields.pop("timestamp", None)
    symbol = fields.pop("symbol", None)

    # Frames either nest their payload under "data" or carry it inline
    nested = fields.pop("data", None)
    if isinstance(nested, dict):
        fields.update(nested)
    elif nested is not None:
        fields["data"] = nested

    try:
        return StreamEvent(type=event_type, timestamp=timestamp, symbol=symbol, data=fields)
    except ValueError as e:
        raise ResponseParseError(f"Invalid event frame: {e}") from e
