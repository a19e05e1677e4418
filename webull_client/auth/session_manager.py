"""
Authenticated session lifecycle.

This module owns the session state machine:

    UNAUTHENTICATED --login--> MFA_PENDING --complete_mfa--> AUTHENTICATED
    UNAUTHENTICATED --login (no challenge)--> AUTHENTICATED
    AUTHENTICATED --refresh--> AUTHENTICATED
    AUTHENTICATED --logout | irrecoverable failure--> UNAUTHENTICATED

Other components never see the raw session; they ask the manager for a
currently valid authorization header. Token refresh is single-flight:
concurrent callers that need a refresh wait for the one in progress instead
of issuing their own.
"""

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from .. import endpoints
from ..api.rate_limiter import RateLimiter
from ..config import WebullConfig
from ..exceptions import (
    ApiError,
    AuthenticationError,
    MfaRequired,
    NetworkError,
    RateLimitExceeded,
    ResponseParseError,
    Timeout,
    TokenStoreError,
    Unauthorized,
    WebullError,
)
from .session import AccountMode, AuthorizationHeader, Credentials, Session
from .signing import canonical_body, encode_password, signed_headers
from .token_store import MemoryTokenStore, TokenStore

logger = logging.getLogger(__name__)

MFA_CODES = ("mfa_required", "MFA_REQUIRED", "verification_required")


class AuthState(str, Enum):
    """Session state machine states."""

    UNAUTHENTICATED = "unauthenticated"
    MFA_PENDING = "mfa_pending"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class _PendingMfa:
    credentials: Credentials
    started_at: float


class AuthSessionManager:
    """
    Manages the authenticated session.

    Responsibilities:
    - Log in with credentials, including the MFA challenge flow
    - Refresh the access token before it expires (single-flight)
    - Hand out authorization headers, never the raw tokens
    - Persist the session to the TokenStore on every change

    Example:
        manager = AuthSessionManager(config)
        session = manager.login(Credentials("me@example.com", "secret"))
        if session.mfa_pending:
            manager.complete_mfa(input("code: "))
        header = manager.current_authorization()
    """

    def __init__(
        self,
        config: WebullConfig,
        http: Optional[requests.Session] = None,
        token_store: Optional[TokenStore] = None,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize session manager.

        Args:
            config: Client configuration
            http: HTTP session used for auth calls (creates one if not provided)
            token_store: Session persistence (config.token_store or memory)
            rate_limiter: Shared limiter; auth calls count against the budget
            clock: Monotonic clock used for the MFA timeout
            sleep: Sleep function used between refresh retries
        """
        self.config = config
        self.http = http or requests.Session()
        self.token_store = token_store or config.token_store or MemoryTokenStore()
        self.rate_limiter = rate_limiter
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.RLock()
        self._state = AuthState.UNAUTHENTICATED
        self._session: Optional[Session] = None
        self._pending: Optional[_PendingMfa] = None
        self._refresh_future: Optional[Future] = None

    # ==================== State ====================

    @property
    def account_mode(self) -> AccountMode:
        return AccountMode.PAPER if self.config.paper_trading else AccountMode.LIVE

    @property
    def state(self) -> AuthState:
        with self._lock:
            self._expire_pending_mfa()
            return self._state

    @property
    def is_authenticated(self) -> bool:
        return self.state is AuthState.AUTHENTICATED

    def status(self) -> Dict[str, Any]:
        """
        Session status for diagnostics (no token material).

        Returns:
            Dictionary with state, account mode and expiry information
        """
        with self._lock:
            self._expire_pending_mfa()
            status: Dict[str, Any] = {
                "state": self._state.value,
                "authenticated": self._state is AuthState.AUTHENTICATED,
                "mfa_pending": self._state is AuthState.MFA_PENDING,
                "account_mode": self.account_mode.value,
            }
            if self._session is not None:
                status.update(
                    {
                        "expired": self._session.is_expired,
                        "expires_at": self._session.expires_at.isoformat(),
                        "expires_in_seconds": self._session.seconds_remaining(),
                        "refreshable": bool(self._session.refresh_token),
                    }
                )
            return status

    # ==================== Login / MFA / logout ====================

    def login(self, credentials: Credentials) -> Session:
        """
        Exchange credentials for a session.

        If the brokerage answers with an MFA challenge the manager enters
        MFA_PENDING and returns a session with ``mfa_pending=True`` and no
        tokens; ``complete_mfa()`` must then be called within
        ``config.mfa_timeout`` seconds.

        Args:
            credentials: Login credentials

        Returns:
            Established session, or a pending placeholder session

        Raises:
            Unauthorized: If the credentials are rejected
            ApiError: For other brokerage errors
            NetworkError: If the brokerage cannot be reached
        """
        logger.info("Logging in")
        body = {
            "username": credentials.username,
            "password": encode_password(credentials.password),
            "deviceId": credentials.device_id or self.config.device_id,
            "deviceName": "webull-client",
            "deviceType": "Web",
            "accountType": self.account_mode.value.upper(),
        }

        payload = self._post(endpoints.LOGIN, body)

        if _is_mfa_challenge(payload):
            with self._lock:
                self._session = None
                self._pending = _PendingMfa(credentials, self._clock())
                self._state = AuthState.MFA_PENDING
            logger.info("Login requires MFA verification")
            return Session.pending_mfa(self.account_mode)

        session = self._session_from_payload(payload)
        self._establish(session)
        logger.info("Login successful")
        return session

    def complete_mfa(self, code: str) -> Session:
        """
        Finalize a pending login with a verification code.

        A wrong code leaves the challenge pending until it times out.

        Args:
            code: Verification code sent to the user

        Returns:
            Established session

        Raises:
            AuthenticationError: If no challenge is pending or it timed out
            ApiError: If the brokerage rejects the code
        """
        with self._lock:
            self._expire_pending_mfa()
            pending = self._pending
        if pending is None:
            raise AuthenticationError(
                "No MFA challenge pending (it may have expired); call login() again"
            )

        logger.info("Submitting MFA verification code")
        payload = self._post(
            endpoints.VERIFY_MFA,
            {
                "username": pending.credentials.username,
                "verificationCode": code,
                "deviceId": pending.credentials.device_id or self.config.device_id,
            },
        )

        session = self._session_from_payload(payload)
        self._establish(session)
        logger.info("MFA verification successful")
        return session

    def logout(self) -> None:
        """
        End the session.

        The server-side logout is best effort; the local session and the
        TokenStore are cleared regardless of its outcome.
        """
        with self._lock:
            session = self._session
            self._pending = None

        if session is not None and not session.mfa_pending:
            try:
                self._post(
                    endpoints.LOGOUT,
                    {"accessToken": session.access_token, "deviceId": self.config.device_id},
                    authorization=AuthorizationHeader.bearer(session.access_token),
                )
            except WebullError as e:
                logger.warning(f"Server-side logout failed, clearing local session: {e}")

        with self._lock:
            self._session = None
            self._state = AuthState.UNAUTHENTICATED
            self.token_store.clear()
        logger.info("Logged out")

    def restore(self) -> bool:
        """
        Seed the manager from the TokenStore.

        The stored session is validated independently: pending sessions,
        sessions for the other account mode and expired sessions that
        cannot be refreshed are discarded. An expired session with a
        refresh token is adopted and refreshed on first use.

        Returns:
            True if a usable session was restored
        """
        stored = self.token_store.load()
        if stored is None:
            logger.debug("No stored session to restore")
            return False

        reason = None
        if stored.mfa_pending or not stored.access_token:
            reason = "incomplete login"
        elif stored.account_mode is not self.account_mode:
            reason = f"account mode {stored.account_mode.value} does not match configuration"
        elif stored.is_expired and not stored.refresh_token:
            reason = "expired and not refreshable"

        if reason:
            logger.info(f"Discarding stored session: {reason}")
            self.token_store.clear()
            return False

        with self._lock:
            self._session = stored
            self._pending = None
            self._state = AuthState.AUTHENTICATED
        logger.info("Session restored from token store")
        return True

    # ==================== Authorization ====================

    def current_authorization(self) -> AuthorizationHeader:
        """
        Get a ready-to-use authorization header.

        If the access token expires within ``config.refresh_margin`` seconds
        it is refreshed first. Concurrent callers share a single refresh.

        Returns:
            Authorization header for the current access token

        Raises:
            MfaRequired: If login is waiting for a verification code
            Unauthorized: If there is no session or the refresh failed
                          (the session is cleared; login again)
        """
        with self._lock:
            session = self._require_session()
            if not session.expires_within(self.config.refresh_margin):
                return AuthorizationHeader.bearer(session.access_token)
            logger.info(
                f"Access token expires within {self.config.refresh_margin}s, refreshing"
            )
            future, leader = self._join_refresh()

        return self._await_refresh(future, leader, session)

    def force_refresh(self, stale: Optional[AuthorizationHeader] = None) -> AuthorizationHeader:
        """
        Refresh the access token regardless of its expiry.

        Used when the server rejected a header (HTTP 401 or a stream
        handshake rejection). If ``stale`` no longer matches the current
        token, another caller already refreshed and no request is made.

        Args:
            stale: The header that was rejected

        Returns:
            Authorization header for the refreshed access token

        Raises:
            MfaRequired: If login is waiting for a verification code
            Unauthorized: If there is no session or the refresh failed
        """
        with self._lock:
            session = self._require_session()
            current = AuthorizationHeader.bearer(session.access_token)
            if stale is not None and stale != current:
                logger.debug("Token already refreshed by another caller")
                return current
            future, leader = self._join_refresh()

        return self._await_refresh(future, leader, session)

    # ==================== Internals ====================

    def _require_session(self) -> Session:
        """Current session; caller must hold the lock."""
        self._expire_pending_mfa()
        if self._state is AuthState.MFA_PENDING:
            raise MfaRequired("Login is waiting for MFA verification; call complete_mfa()")
        if self._session is None:
            raise Unauthorized("Not logged in")
        return self._session

    def _expire_pending_mfa(self) -> None:
        """Discard a timed-out MFA challenge; caller must hold the lock."""
        if self._pending is None:
            return
        if self._clock() - self._pending.started_at > self.config.mfa_timeout:
            logger.warning("MFA challenge expired; login must be restarted")
            self._pending = None
            if self._state is AuthState.MFA_PENDING:
                self._state = AuthState.UNAUTHENTICATED

    def _join_refresh(self) -> Tuple[Future, bool]:
        """Join the in-flight refresh or start one; caller must hold the lock."""
        if self._refresh_future is not None:
            return self._refresh_future, False
        self._refresh_future = Future()
        return self._refresh_future, True

    def _await_refresh(
        self, future: Future, leader: bool, session: Session
    ) -> AuthorizationHeader:
        if leader:
            try:
                refreshed = self._refresh(session)
            except WebullError as e:
                logger.error(f"Token refresh failed, session cleared: {e}")
                self._invalidate(session)
                error = Unauthorized(f"Token refresh failed: {e}")
                error.__cause__ = e
                future.set_exception(error)
            else:
                future.set_result(refreshed)
            finally:
                if not future.done():
                    future.set_exception(Unauthorized("Token refresh was interrupted"))
                with self._lock:
                    self._refresh_future = None

        refreshed_session: Session = future.result()
        return AuthorizationHeader.bearer(refreshed_session.access_token)

    def _refresh(self, session: Session) -> Session:
        """
        Perform the refresh request, retrying transient failures.

        Raises:
            Unauthorized: If the session has no refresh token
            WebullError: If the refresh fails
        """
        if not session.refresh_token:
            raise Unauthorized("Session has no refresh token")

        body = {"refreshToken": session.refresh_token, "deviceId": self.config.device_id}
        max_retries = self.config.max_retries

        for attempt in range(max_retries + 1):
            logger.info(f"Refreshing access token (attempt {attempt + 1}/{max_retries + 1})")
            try:
                payload = self._post(endpoints.REFRESH_TOKEN, body)
                break
            except (NetworkError, RateLimitExceeded) as e:
                if attempt >= max_retries:
                    raise
                if isinstance(e, NetworkError):
                    delay = self.config.retry_delay * (2 ** attempt)
                    logger.warning(f"Retrying refresh in {delay}s after: {e}")
                    self._sleep(delay)

        refreshed = self._session_from_payload(payload, previous=session)

        with self._lock:
            if self._session is not session:
                # Logged out (or logged in again) while the refresh was in flight
                if self._session is None or self._state is not AuthState.AUTHENTICATED:
                    raise Unauthorized("Session ended during token refresh")
                logger.info("Session replaced during refresh; using the newer session")
                return self._session
            self._session = refreshed
            self._state = AuthState.AUTHENTICATED
            try:
                self.token_store.save(refreshed)
            except TokenStoreError as e:
                logger.error(f"Refreshed session could not be persisted: {e}")

        logger.info("Access token refreshed")
        return refreshed

    def _invalidate(self, session: Session) -> None:
        """Clear the session after an irrecoverable failure."""
        with self._lock:
            if self._session is not session:
                return
            self._session = None
            self._state = AuthState.UNAUTHENTICATED
            try:
                self.token_store.clear()
            except TokenStoreError as e:
                logger.error(f"Could not clear token store: {e}")

    def _establish(self, session: Session) -> None:
        with self._lock:
            self._session = session
            self._pending = None
            self._state = AuthState.AUTHENTICATED
            self.token_store.save(session)

    def _session_from_payload(
        self, payload: Any, previous: Optional[Session] = None
    ) -> Session:
        """
        Build a session from a token response.

        Raises:
            ResponseParseError: If the payload lacks the token fields
        """
        data = payload.get("data", payload) if isinstance(payload, dict) else payload
        if not isinstance(data, dict):
            raise ResponseParseError("Token response is not a JSON object")

        access_token = data.get("access_token") or data.get("accessToken")
        expires_in = data.get("expires_in", data.get("expiresIn"))
        refresh_token = data.get("refresh_token") or data.get("refreshToken")

        if not access_token or expires_in is None:
            raise ResponseParseError("Token response is missing access_token or expires_in")

        try:
            expires_in = float(expires_in)
        except (TypeError, ValueError) as e:
            raise ResponseParseError(f"Invalid expires_in: {expires_in!r}") from e

        if refresh_token is None and previous is not None:
            # refresh token may or may not be rotated
            refresh_token = previous.refresh_token

        return Session.issued(access_token, refresh_token, expires_in, self.account_mode)

    def _post(
        self,
        path: str,
        body: Dict[str, Any],
        authorization: Optional[AuthorizationHeader] = None,
    ) -> Any:
        """
        Send a signed auth request and decode the response.

        Returns:
            Decoded JSON payload (an MFA challenge payload is returned as-is)

        Raises:
            Unauthorized: On HTTP 401
            RateLimitExceeded: On HTTP 429 (the limiter enters backoff)
            ApiError: On other error statuses or error payloads
            NetworkError / Timeout: On transport failures
        """
        if self.rate_limiter is not None:
            self.rate_limiter.acquire()

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        headers.update(
            signed_headers(self.config.api_key, self.config.api_secret, self.config.device_id, body)
        )
        if authorization is not None:
            headers.update(authorization.as_dict())

        url = f"{self.config.base_url.rstrip('/')}{path}"
        logger.debug(f"POST {url}")

        try:
            response = self.http.post(
                url, headers=headers, data=canonical_body(body), timeout=self.config.timeout
            )
        except requests.exceptions.Timeout as e:
            raise Timeout(f"Auth request to {path} timed out") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Network error during auth request to {path}: {e}") from e

        payload = _decode(response)

        if response.status_code == 429:
            retry_after = _retry_after(response)
            if self.rate_limiter is not None:
                self.rate_limiter.record_rate_limited(retry_after)
            raise RateLimitExceeded(f"Rate limit exceeded on {path}")

        if _is_mfa_challenge(payload) and response.status_code < 500:
            return payload

        if response.status_code == 401:
            raise Unauthorized(f"Authentication rejected by {path}")

        if not 200 <= response.status_code < 300:
            code, message = _error_fields(payload, response)
            raise ApiError(code, message, status_code=response.status_code)

        if isinstance(payload, dict) and payload.get("success") is False:
            code, message = _error_fields(payload, response)
            raise ApiError(code, message, status_code=response.status_code)

        if self.rate_limiter is not None:
            self.rate_limiter.record_success()
        return payload


def _decode(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _is_mfa_challenge(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    return bool(payload.get("mfaRequired")) or payload.get("code") in MFA_CODES


def _retry_after(response: requests.Response) -> Optional[float]:
    value = (response.headers or {}).get("Retry-After")
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _error_fields(payload: Any, response: requests.Response) -> Tuple[str, str]:
    if isinstance(payload, dict):
        code = payload.get("code") or str(response.status_code)
        message = payload.get("msg") or payload.get("message") or response.text
        return str(code), str(message)
    return str(response.status_code), response.text
