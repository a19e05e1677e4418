"""
Real-time streaming session.

A StreamingSession owns one logical WebSocket connection for the lifetime
of the session. All connection state is owned by a single background
thread; callers talk to it through a command queue (subscription changes)
and read typed events from an event queue.

Connection sequence:

    CONNECTING -> transport connect with the authorization header
    AUTHENTICATING -> AUTH frame, wait for {"type": "AUTH", "status": "OK"}
    OPEN -> full SUBSCRIBE for the current subscription set

Lost connections (transport error, peer close, missed heartbeats) are
re-established with capped exponential backoff until ``disconnect()`` is
called or a terminal failure occurs.
"""

import json
import logging
import queue
import random
import threading
import time
import uuid
from typing import TYPE_CHECKING, Callable, Dict, FrozenSet, Iterable, Iterator, Optional

from ..auth.session import AuthorizationHeader
from ..config import WebullConfig
from ..exceptions import (
    AuthenticationError,
    HandshakeRejected,
    NetworkError,
    ResponseParseError,
    StreamingError,
    Timeout,
    WebullError,
)
from .events import ConnectionState, EventType, StreamEvent, parse_frame
from .subscription import SUBSCRIBE, UNSUBSCRIBE, Subscription, build_message
from .transport import Connection, Transport, WebSocketTransport

if TYPE_CHECKING:
    from ..auth.session_manager import AuthSessionManager

logger = logging.getLogger(__name__)

# End-of-stream marker placed on the event queue
_END = object()


class StreamingSession:
    """
    Streaming connection with automatic resubscription.

    Example:
        stream = StreamingSession(auth_manager, config)
        stream.subscribe(["AAPL"], [EventType.QUOTE])
        stream.connect()
        for event in stream:
            print(event.symbol, event.data)
    """

    def __init__(
        self,
        auth: "AuthSessionManager",
        config: WebullConfig,
        transport: Optional[Transport] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize streaming session.

        Args:
            auth: Session manager providing handshake credentials
            config: Client configuration (streaming settings and timeout)
            transport: Connection factory (websockets client if not provided)
            clock: Monotonic clock used for heartbeat tracking
            rng: Random source for reconnect jitter
        """
        self.auth = auth
        self.config = config
        self.settings = config.streaming
        self.transport = transport or WebSocketTransport()
        self._clock = clock
        self._rng = rng or random.Random()

        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._subscription = Subscription()
        self._sub_lock = threading.Lock()
        self._commands: "queue.Queue[tuple]" = queue.Queue()
        self._events: "queue.Queue" = queue.Queue()

        self._closing = threading.Event()
        self._ready = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._connection: Optional[Connection] = None
        self._conn_lock = threading.Lock()
        self._last_header: Optional[AuthorizationHeader] = None
        self._connect_error: Optional[BaseException] = None
        self._failure: Optional[BaseException] = None

    # ==================== Public API ====================

    @property
    def state(self) -> ConnectionState:
        with self._state_lock:
            return self._state

    @property
    def subscription(self) -> Dict[str, FrozenSet[EventType]]:
        """Snapshot of the desired subscription set."""
        return self._subscription.snapshot()

    @property
    def url(self) -> str:
        return self.config.websocket_url

    def connect(self) -> None:
        """
        Open the stream and wait until it is authenticated.

        Raises:
            StreamingError: If the session was closed
            HandshakeRejected: If the server rejected the credentials
            Unauthorized / MfaRequired: If there is no usable session
            NetworkError / Timeout: If the connection could not be established
        """
        with self._state_lock:
            if self._state is ConnectionState.CLOSED:
                raise StreamingError("Streaming session is closed")
            if self._thread is not None and self._thread.is_alive():
                return
            self._ready.clear()
            self._connect_error = None
            self._thread = threading.Thread(
                target=self._owner, name="webull-stream", daemon=True
            )
            self._thread.start()

        self._ready.wait()
        if self._connect_error is not None:
            self._thread.join()
            raise self._connect_error

    def subscribe(self, symbols: Iterable[str], event_types: Iterable) -> None:
        """
        Add symbols/event types to the subscription.

        Sent immediately when the stream is open, otherwise on the next
        successful connection.

        Raises:
            InvalidRequest: For empty symbols or non-subscribable types
            StreamingError: If the session was closed
        """
        self._ensure_not_closed()
        with self._sub_lock:
            added = self._subscription.add(symbols, event_types)
            if added:
                self._commands.put((SUBSCRIBE, added))
        if added:
            logger.debug(f"Subscription added: {_describe(added)}")

    def unsubscribe(self, symbols: Iterable[str], event_types: Optional[Iterable] = None) -> None:
        """
        Remove event types (all of them if None) for symbols.

        Raises:
            InvalidRequest: For empty symbols or non-subscribable types
            StreamingError: If the session was closed
        """
        self._ensure_not_closed()
        with self._sub_lock:
            removed = self._subscription.remove(symbols, event_types)
            if removed:
                self._commands.put((UNSUBSCRIBE, removed))
        if removed:
            logger.debug(f"Subscription removed: {_describe(removed)}")

    def next_event(self, timeout: Optional[float] = None) -> Optional[StreamEvent]:
        """
        Next event in arrival order.

        Args:
            timeout: Seconds to wait (None blocks)

        Returns:
            The event, or None on timeout or once the stream has ended

        Raises:
            WebullError: The terminal failure, once all queued events are read
        """
        try:
            item = self._events.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _END:
            self._events.put(_END)
            if self._failure is not None:
                raise self._failure
            return None
        return item

    def events(self) -> Iterator[StreamEvent]:
        """Iterate events until the session is closed or fails terminally."""
        while True:
            item = self._events.get()
            if item is _END:
                self._events.put(_END)
                if self._failure is not None:
                    raise self._failure
                return
            yield item

    def __iter__(self) -> Iterator[StreamEvent]:
        return self.events()

    def disconnect(self) -> None:
        """
        Close the stream permanently.

        Safe from any state and any thread. Pending reconnect waits are
        interrupted and the subscription set is cleared.
        """
        self._closing.set()
        with self._sub_lock:
            self._subscription.clear()
            _drain(self._commands)
        self._close_connection()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.config.timeout)
            if thread.is_alive():
                logger.warning("Streaming thread did not stop in time")

        if self._set_state(ConnectionState.CLOSED):
            logger.info("Streaming session closed")
            self._events.put(_END)

    def __enter__(self) -> "StreamingSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    # ==================== Owner thread ====================

    def _owner(self) -> None:
        try:
            self._run()
        except Exception as e:
            logger.exception("Streaming thread crashed")
            error = StreamingError(f"Streaming thread crashed: {e}")
            error.__cause__ = e
            if self._ready.is_set():
                self._terminate(error)
            else:
                self._fail_initial(error)

    def _run(self) -> None:
        initial = True
        attempts = 0
        rejected = False

        while not self._closing.is_set():
            try:
                connection = self._open()
            except HandshakeRejected as e:
                if initial:
                    return self._fail_initial(e)
                if rejected:
                    return self._terminate(e)
                rejected = True
                logger.warning(f"Stream handshake rejected ({e}), refreshing token")
                try:
                    self.auth.force_refresh(self._last_header)
                except AuthenticationError as auth_error:
                    return self._terminate(auth_error)
            except AuthenticationError as e:
                if initial:
                    return self._fail_initial(e)
                return self._terminate(e)
            except WebullError as e:
                if self._closing.is_set():
                    break
                if initial:
                    return self._fail_initial(e)
                logger.warning(f"Stream reconnect attempt {attempts} failed: {e}")
            else:
                if initial:
                    initial = False
                    self._ready.set()
                attempts = 0
                rejected = False

                reason = self._pump(connection)
                self._close_connection()
                if self._closing.is_set():
                    break
                logger.warning(f"Stream connection lost: {reason}")

            attempts += 1
            limit = self.settings.max_reconnect_attempts
            if limit is not None and attempts > limit:
                return self._terminate(
                    StreamingError(f"Gave up reconnecting after {limit} attempts")
                )

            self._set_state(ConnectionState.RECONNECTING)
            delay = self._reconnect_delay(attempts)
            logger.info(f"Reconnecting in {delay:.2f}s (attempt {attempts})")
            if self._closing.wait(delay):
                break

        self._close_connection()
        if initial:
            self._ready.set()

    def _open(self) -> Connection:
        """
        Run the full connect sequence.

        Returns:
            Open, authenticated connection with the subscription resent
        """
        self._set_state(ConnectionState.CONNECTING)
        header = self.auth.current_authorization()
        self._last_header = header

        logger.info(f"Connecting to {self.url}")
        connection = self.transport.connect(self.url, header.as_dict(), self.config.timeout)
        with self._conn_lock:
            self._connection = connection

        try:
            self._set_state(ConnectionState.AUTHENTICATING)
            self._send(connection, {
                "type": "AUTH",
                "authorization": header.value,
                "deviceId": self.config.device_id,
            })
            self._await_auth(connection)

            # Deltas queued while disconnected are covered by the full resend
            with self._sub_lock:
                _drain(self._commands)
                message = self._subscription.subscribe_message()
            if message is not None:
                self._send(connection, message)
                logger.info(f"Subscribed to {len(message['requests'])} event type(s)")
        except BaseException:
            self._close_connection()
            raise

        self._set_state(ConnectionState.OPEN)
        return connection

    def _await_auth(self, connection: Connection) -> None:
        deadline = self._clock() + self.config.timeout

        while True:
            if self._closing.is_set():
                raise StreamingError("Disconnected during handshake")
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise Timeout(f"No handshake reply within {self.config.timeout}s")

            frame = connection.recv(min(remaining, self.settings.poll_interval))
            if frame is None:
                continue
            try:
                reply = json.loads(frame)
            except ValueError:
                logger.debug("Ignoring undecodable frame during handshake")
                continue
            if not isinstance(reply, dict) or str(reply.get("type", "")).upper() != "AUTH":
                continue

            status = str(reply.get("status", "")).upper()
            if status == "OK":
                logger.info("Stream authenticated")
                return
            raise HandshakeRejected(reply.get("message") or f"Handshake status {status}")

    def _pump(self, connection: Connection) -> str:
        """
        Service an open connection until it dies or the session closes.

        Returns:
            Why the connection ended
        """
        interval = self.settings.heartbeat_interval
        grace = self.settings.effective_heartbeat_grace
        last_inbound = last_heartbeat = self._clock()

        try:
            while not self._closing.is_set():
                self._send_pending(connection)

                now = self._clock()
                if now - last_inbound >= grace:
                    return f"no frames for {grace}s"
                if now - last_heartbeat >= interval:
                    self._send(connection, {"type": "HEARTBEAT", "id": uuid.uuid4().hex})
                    last_heartbeat = now

                frame = connection.recv(self.settings.poll_interval)
                if frame is None:
                    continue
                last_inbound = self._clock()
                self._dispatch(frame)
        except NetworkError as e:
            return str(e)
        return "closed"

    def _send_pending(self, connection: Connection) -> None:
        while True:
            try:
                action, entries = self._commands.get_nowait()
            except queue.Empty:
                return
            self._send(connection, build_message(action, entries))
            logger.debug(f"Sent {action}: {_describe(entries)}")

    def _dispatch(self, frame: str) -> None:
        try:
            event = parse_frame(frame)
        except ResponseParseError as e:
            logger.warning(f"Undecodable stream frame: {e}")
            self._events.put(StreamEvent.error("PARSE_ERROR", str(e), frame=frame[:200]))
            return

        if event.is_heartbeat:
            return
        self._events.put(event)

    # ==================== Helpers ====================

    def _send(self, connection: Connection, message: dict) -> None:
        connection.send(json.dumps(message, separators=(",", ":")))

    def _set_state(self, state: ConnectionState) -> bool:
        """Transition and emit a CONNECTION event. CLOSED is terminal."""
        with self._state_lock:
            if self._state is state or self._state is ConnectionState.CLOSED:
                return False
            logger.debug(f"Stream state {self._state.value} -> {state.value}")
            self._state = state
            self._events.put(StreamEvent.connection(state))
        return True

    def _ensure_not_closed(self) -> None:
        if self._closing.is_set() or self.state is ConnectionState.CLOSED:
            raise StreamingError("Streaming session is closed")

    def _close_connection(self) -> None:
        with self._conn_lock:
            connection, self._connection = self._connection, None
        if connection is not None:
            connection.close()

    def _reconnect_delay(self, attempt: int) -> float:
        cfg = self.settings
        # 2 ** n overflows a float past n = 1023
        delay = cfg.reconnect_base_delay * 2 ** min(attempt - 1, 32)
        delay *= self._rng.uniform(1 - cfg.reconnect_jitter, 1 + cfg.reconnect_jitter)
        return min(cfg.reconnect_max_delay, delay)

    def _fail_initial(self, error: BaseException) -> None:
        logger.error(f"Stream connect failed: {error}")
        self._close_connection()
        self._set_state(ConnectionState.DISCONNECTED)
        self._connect_error = error
        self._ready.set()

    def _terminate(self, error: BaseException) -> None:
        logger.error(f"Streaming stopped: {error}")
        self._failure = error
        self._close_connection()
        if self._set_state(ConnectionState.CLOSED):
            self._events.put(_END)


def _drain(q: queue.Queue) -> None:
    while True:
        try:
            q.get_nowait()
        except queue.Empty:
            return


def _describe(entries: Dict[str, Iterable[EventType]]) -> str:
    return ", ".join(
        f"{symbol}[{','.join(sorted(t.value for t in types))}]"
        for symbol, types in sorted(entries.items())
    )
