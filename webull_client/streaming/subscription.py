"""
Desired streaming subscriptions.

The Subscription is the authoritative record of what the caller asked to
receive. It changes only through explicit subscribe/unsubscribe calls and is
resent in full after every reconnection.

Wire format (one request per event type):

    {"action": "SUBSCRIBE",
     "requests": [{"type": "QUOTE", "symbols": ["AAPL", "MSFT"]}]}
"""

import threading
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from ..exceptions import InvalidRequest
from .events import SUBSCRIBABLE_TYPES, EventType

SUBSCRIBE = "SUBSCRIBE"
UNSUBSCRIBE = "UNSUBSCRIBE"


def normalize_symbols(symbols: Iterable[str]) -> List[str]:
    """Upper-case and de-duplicate symbols, keeping their order."""
    if isinstance(symbols, str):
        symbols = [symbols]
    result: List[str] = []
    for symbol in symbols:
        symbol = symbol.strip().upper()
        if not symbol:
            raise InvalidRequest("Symbol cannot be empty")
        if symbol not in result:
            result.append(symbol)
    if not result:
        raise InvalidRequest("At least one symbol is required")
    return result


def normalize_types(event_types: Iterable) -> Set[EventType]:
    """Convert event type names to EventType, rejecting non-subscribable ones."""
    if isinstance(event_types, (str, EventType)):
        event_types = [event_types]
    result: Set[EventType] = set()
    for value in event_types:
        try:
            event_type = EventType(value.upper() if isinstance(value, str) else value)
        except ValueError as e:
            raise InvalidRequest(f"Unknown event type: {value}") from e
        if event_type not in SUBSCRIBABLE_TYPES:
            raise InvalidRequest(f"Cannot subscribe to {event_type.value} events")
        result.add(event_type)
    if not result:
        raise InvalidRequest("At least one event type is required")
    return result


class Subscription:
    """
    Mapping of symbol to the set of event types subscribed for it.

    Thread-safe: callers may read snapshots while the streaming owner thread
    applies changes.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, Set[EventType]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __bool__(self) -> bool:
        return len(self) > 0

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            return symbol.upper() in self._entries

    def add(self, symbols: Iterable[str], event_types: Iterable) -> Dict[str, Set[EventType]]:
        """
        Add event types for symbols.

        Returns:
            The additions that were not already present
        """
        symbols = normalize_symbols(symbols)
        types = normalize_types(event_types)
        added: Dict[str, Set[EventType]] = {}

        with self._lock:
            for symbol in symbols:
                current = self._entries.setdefault(symbol, set())
                new = types - current
                if new:
                    current.update(new)
                    added[symbol] = new
        return added

    def remove(
        self, symbols: Iterable[str], event_types: Optional[Iterable] = None
    ) -> Dict[str, Set[EventType]]:
        """
        Remove event types (all of them if None) for symbols.

        Returns:
            The removals that were actually present
        """
        symbols = normalize_symbols(symbols)
        types = normalize_types(event_types) if event_types is not None else None
        removed: Dict[str, Set[EventType]] = {}

        with self._lock:
            for symbol in symbols:
                current = self._entries.get(symbol)
                if not current:
                    continue
                gone = set(current) if types is None else current & types
                if not gone:
                    continue
                current.difference_update(gone)
                removed[symbol] = gone
                if not current:
                    del self._entries[symbol]
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def snapshot(self) -> Dict[str, FrozenSet[EventType]]:
        """Copy of the current subscription."""
        with self._lock:
            return {symbol: frozenset(types) for symbol, types in self._entries.items()}

    def subscribe_message(self) -> Optional[dict]:
        """Single SUBSCRIBE frame carrying the complete set (None if empty)."""
        snapshot = self.snapshot()
        if not snapshot:
            return None
        return build_message(SUBSCRIBE, snapshot)


def build_message(action: str, entries: Dict[str, Iterable[EventType]]) -> dict:
    """
    Build a SUBSCRIBE/UNSUBSCRIBE frame.

    Symbols are grouped per event type; types and symbols are sorted so the
    frame is deterministic.
    """
    by_type: Dict[EventType, List[str]] = {}
    for symbol, types in entries.items():
        for event_type in types:
            by_type.setdefault(event_type, []).append(symbol)

    requests = [
        {"type": event_type.value, "symbols": sorted(symbols)}
        for event_type, symbols in sorted(by_type.items(), key=lambda item: item[0].value)
    ]
    return {"action": action, "requests": requests}
