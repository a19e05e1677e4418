"""
Webull client facade.

WebullClient wires the core components together: one RateLimiter shared by
the auth manager and the executor, one AuthSessionManager, one
ResponseCache, and StreamingSessions created on demand. Endpoint wrappers
build RequestSpecs and call ``execute`` / ``cacheable_execute``.
"""

import dataclasses
import logging
from typing import Any, List, Mapping, Optional

import requests

from .api.cache import ResponseCache
from .api.executor import ParsedResponse, RequestExecutor, RequestSpec
from .api.rate_limiter import RateLimiter
from .auth.session import AuthorizationHeader, Credentials
from .auth.session_manager import AuthSessionManager
from .auth.token_store import MemoryCredentialStore, MemoryTokenStore
from .config import WebullConfig
from .exceptions import AuthenticationError, TokenStoreError
from .streaming.events import ConnectionState
from .streaming.session import StreamingSession
from .streaming.transport import Transport

logger = logging.getLogger(__name__)


class WebullClient:
    """
    Client for the Webull brokerage API.

    Example:
        with WebullClient(WebullConfig.from_env()) as client:
            session = client.login("me@example.com", "secret")
            if session.mfa_pending:
                client.complete_mfa(input("Verification code: "))
            accounts = client.get("/api/account/list", ttl=30).data
    """

    def __init__(
        self,
        config: Optional[WebullConfig] = None,
        http: Optional[requests.Session] = None,
        transport: Optional[Transport] = None,
    ):
        """
        Initialize the client.

        Args:
            config: Client configuration (loaded from the environment if None)
            http: HTTP session shared by auth and API calls
            transport: WebSocket transport for streaming sessions
        """
        self.config = config or WebullConfig.from_env()
        self.http = http or requests.Session()
        self.transport = transport

        self.rate_limiter = RateLimiter(self.config.rate_limit)
        self.cache = ResponseCache(self.config.cache_ttl, self.config.cache_max_entries)
        self.auth = AuthSessionManager(self.config, http=self.http, rate_limiter=self.rate_limiter)
        self.executor = RequestExecutor(
            self.config, self.auth, self.rate_limiter, http=self.http, cache=self.cache
        )
        self._streams: List[StreamingSession] = []

        logger.debug(
            f"WebullClient initialized ({self.config.account_mode} mode, {self.config.base_url})"
        )

    # ==================== Authentication ====================

    def login(self, username: Any, password: Optional[str] = None):
        """
        Log in.

        Args:
            username: Username, or a Credentials instance
            password: Password (when ``username`` is a string)

        Returns:
            Session; ``mfa_pending`` is True when complete_mfa() is required
        """
        if isinstance(username, Credentials):
            credentials = username
        else:
            credentials = Credentials(username, password or "", self.config.device_id)

        session = self.auth.login(credentials)

        if self.config.credential_store is not None:
            try:
                self.config.credential_store.save(credentials)
            except TokenStoreError as e:
                logger.warning(f"Could not save credentials: {e}")
        return session

    def complete_mfa(self, code: str):
        """Finish a login waiting for a verification code."""
        return self.auth.complete_mfa(code)

    def relogin(self):
        """
        Log in again with the stored credentials.

        Raises:
            AuthenticationError: If no credentials are stored
        """
        store = self.config.credential_store
        credentials = store.load() if store is not None else None
        if credentials is None:
            raise AuthenticationError("No stored credentials; call login()")
        logger.info("Logging in again with stored credentials")
        return self.auth.login(credentials)

    def logout(self) -> None:
        """Log out and drop cached responses."""
        self.auth.logout()
        self.cache.clear()

    def refresh_token(self) -> AuthorizationHeader:
        """Refresh the access token now."""
        return self.auth.force_refresh()

    def restore_session(self) -> bool:
        """Reuse a session saved in the token store, if still usable."""
        return self.auth.restore()

    @property
    def is_authenticated(self) -> bool:
        return self.auth.is_authenticated

    def status(self) -> dict:
        """Session and rate-limit diagnostics (no token material)."""
        budget = self.rate_limiter.budget()
        status = self.auth.status()
        status["rate_limit"] = {
            "request_count": budget.request_count,
            "limit": budget.limit,
            "window": self.rate_limiter.window,
        }
        status["cached_responses"] = len(self.cache)
        return status

    # ==================== Requests ====================

    def execute(self, spec: RequestSpec) -> ParsedResponse:
        return self.executor.execute(spec)

    def cacheable_execute(
        self,
        spec: RequestSpec,
        ttl: Optional[float] = None,
        fingerprint: Optional[str] = None,
    ) -> ParsedResponse:
        return self.executor.cacheable_execute(fingerprint, ttl, spec)

    def get(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        ttl: Optional[float] = None,
        requires_auth: bool = True,
    ) -> ParsedResponse:
        """
        GET a path.

        Args:
            path: API path
            params: Query parameters
            ttl: Cache the response for this many seconds (not cached if None)
            requires_auth: Attach the authorization header
        """
        spec = RequestSpec("GET", path, params=params, requires_auth=requires_auth)
        if ttl is None:
            return self.executor.execute(spec)
        return self.executor.cacheable_execute(None, ttl, spec)

    def post(
        self,
        path: str,
        body: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        idempotent: bool = False,
    ) -> ParsedResponse:
        """
        POST a JSON body.

        Mutating by default: a failure after the request may have reached
        the server raises AmbiguousOutcome instead of being retried.
        """
        spec = RequestSpec("POST", path, params=params, body=body, is_idempotent=idempotent)
        return self.executor.execute(spec)

    # ==================== Streaming ====================

    def streaming(self) -> StreamingSession:
        """Create a streaming session bound to this client's login."""
        self._streams = [s for s in self._streams if s.state is not ConnectionState.CLOSED]
        stream = StreamingSession(self.auth, self.config, transport=self.transport)
        self._streams.append(stream)
        return stream

    # ==================== Lifecycle ====================

    def paper_trading(self) -> "WebullClient":
        """
        Client for the paper-trading account.

        The copy has its own session and in-memory stores; it must log in
        separately.
        """
        config = dataclasses.replace(
            self.config,
            paper_trading=True,
            token_store=MemoryTokenStore(),
            credential_store=MemoryCredentialStore(),
        )
        return WebullClient(config, transport=self.transport)

    def close(self) -> None:
        """Disconnect streaming sessions and release the HTTP session."""
        for stream in self._streams:
            stream.disconnect()
        self._streams.clear()
        self.http.close()

    def __enter__(self) -> "WebullClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
