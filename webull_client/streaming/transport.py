"""
WebSocket transport used by StreamingSession.

The session only depends on the small Transport/Connection interface
defined here, so tests can substitute an in-memory fake. The default
implementation wraps the ``websockets`` synchronous client.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus
from websockets.sync.client import ClientConnection, connect

from ..exceptions import HandshakeRejected, NetworkError, Timeout

logger = logging.getLogger(__name__)


class TransportClosed(NetworkError):
    """The connection was closed (by the peer or by a transport failure)."""

    pass


class Connection(ABC):
    """An open, bidirectional text-frame connection."""

    @abstractmethod
    def send(self, frame: str) -> None:
        """Send one text frame. Raises TransportClosed if the connection is gone."""

    @abstractmethod
    def recv(self, timeout: float) -> Optional[str]:
        """Receive one frame, or None if nothing arrived within ``timeout``."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection. Safe to call more than once."""


class Transport(ABC):
    """Factory for connections."""

    @abstractmethod
    def connect(self, url: str, headers: Dict[str, str], timeout: float) -> Connection:
        """
        Open a connection.

        Raises:
            HandshakeRejected: If the server refused the upgrade with 401/403
            Timeout: If the connection was not established within ``timeout``
            NetworkError: For any other connection failure
        """


class WebSocketConnection(Connection):
    def __init__(self, ws: ClientConnection):
        self._ws = ws

    def send(self, frame: str) -> None:
        try:
            self._ws.send(frame)
        except ConnectionClosed as e:
            raise TransportClosed(f"Connection closed: {e}") from e
        except OSError as e:
            raise TransportClosed(f"Send failed: {e}") from e

    def recv(self, timeout: float) -> Optional[str]:
        try:
            message = self._ws.recv(timeout=timeout)
        except TimeoutError:
            return None
        except ConnectionClosed as e:
            raise TransportClosed(f"Connection closed: {e}") from e
        except OSError as e:
            raise TransportClosed(f"Receive failed: {e}") from e

        if isinstance(message, bytes):
            return message.decode("utf-8", errors="replace")
        return message

    def close(self) -> None:
        try:
            self._ws.close()
        except OSError as e:
            logger.debug(f"Error while closing websocket: {e}")


class WebSocketTransport(Transport):
    """
    Transport backed by ``websockets.sync.client``.

    Protocol-level pings are disabled; liveness is tracked by the session's
    own HEARTBEAT frames.
    """

    def connect(self, url: str, headers: Dict[str, str], timeout: float) -> Connection:
        logger.debug(f"Opening websocket {url}")
        try:
            ws = connect(
                url,
                additional_headers=headers,
                open_timeout=timeout,
                close_timeout=timeout,
                ping_interval=None,
            )
        except InvalidStatus as e:
            status = e.response.status_code
            if status in (401, 403):
                raise HandshakeRejected(f"Websocket upgrade rejected ({status})") from e
            raise NetworkError(f"Websocket upgrade failed ({status})") from e
        except InvalidHandshake as e:
            raise NetworkError(f"Websocket handshake failed: {e}") from e
        except TimeoutError as e:
            raise Timeout(f"Websocket connect timed out after {timeout}s") from e
        except OSError as e:
            raise NetworkError(f"Websocket connect failed: {e}") from e

        return WebSocketConnection(ws)
