"""
Configuration for the Webull client.

Configuration is a set of immutable dataclasses validated at construction
time. It can be provided programmatically or loaded from environment
variables with ``WebullConfig.from_env()``.
"""

import os
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from .auth.token_store import CredentialStore, TokenStore

DEFAULT_BASE_URL = "https://api.webull.com"


@dataclass(frozen=True)
class RateLimitConfig:
    """
    Rate limiter parameters.

    The brokerage does not publish its limits, so the defaults are
    deliberately conservative.

    Attributes:
        limit: Maximum requests permitted in any rolling window
        window: Window length in seconds
        backoff_base: First backoff delay after a rate-limit rejection (seconds)
        backoff_cap: Maximum backoff delay (seconds)
        jitter: Relative jitter applied to backoff delays (0.2 = +/-20%)
    """

    limit: int = 60
    window: float = 60.0
    backoff_base: float = 1.0
    backoff_cap: float = 60.0
    jitter: float = 0.2

    def __post_init__(self) -> None:
        if self.limit <= 0:
            raise ConfigurationError("rate limit must be positive")
        if self.window <= 0:
            raise ConfigurationError("rate limit window must be positive")
        if self.backoff_base <= 0:
            raise ConfigurationError("backoff_base must be positive")
        if self.backoff_cap < self.backoff_base:
            raise ConfigurationError("backoff_cap cannot be smaller than backoff_base")
        if not 0 <= self.jitter < 1:
            raise ConfigurationError("jitter must be in [0, 1)")


@dataclass(frozen=True)
class StreamingConfig:
    """
    Streaming session parameters.

    Attributes:
        heartbeat_interval: Seconds between keep-alive frames while open
        heartbeat_grace: Seconds without any inbound frame before the
                         connection is considered dead (default: 2x interval)
        reconnect_base_delay: First reconnect backoff delay (seconds)
        reconnect_max_delay: Maximum reconnect backoff delay (seconds)
        reconnect_jitter: Relative jitter applied to reconnect delays
        max_reconnect_attempts: Give up after this many failed attempts
                                (None retries until disconnect)
        poll_interval: How often the owner thread wakes up to service
                       commands and heartbeats (seconds)
    """

    heartbeat_interval: float = 20.0
    heartbeat_grace: Optional[float] = None
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    reconnect_jitter: float = 0.2
    max_reconnect_attempts: Optional[int] = None
    poll_interval: float = 0.25

    def __post_init__(self) -> None:
        if self.heartbeat_interval <= 0:
            raise ConfigurationError("heartbeat_interval must be positive")
        if self.heartbeat_grace is not None and self.heartbeat_grace <= 0:
            raise ConfigurationError("heartbeat_grace must be positive")
        if self.reconnect_base_delay <= 0:
            raise ConfigurationError("reconnect_base_delay must be positive")
        if self.reconnect_max_delay < self.reconnect_base_delay:
            raise ConfigurationError(
                "reconnect_max_delay cannot be smaller than reconnect_base_delay"
            )
        if not 0 <= self.reconnect_jitter < 1:
            raise ConfigurationError("reconnect_jitter must be in [0, 1)")
        if self.max_reconnect_attempts is not None and self.max_reconnect_attempts < 0:
            raise ConfigurationError("max_reconnect_attempts cannot be negative")
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive")

    @property
    def effective_heartbeat_grace(self) -> float:
        """Grace period actually applied to heartbeat detection."""
        if self.heartbeat_grace is not None:
            return self.heartbeat_grace
        return 2 * self.heartbeat_interval


@dataclass(frozen=True)
class WebullConfig:
    """
    Configuration for the Webull client.

    Attributes:
        api_key: Application API key (sent as the ``api-key`` header)
        api_secret: Application secret used to sign requests
        device_id: Device identifier (random if not provided)
        base_url: REST API base URL
        stream_url: WebSocket URL (derived from base_url if not provided)
        timeout: Timeout for every network operation (seconds)
        paper_trading: Use the paper-trading account mode
        refresh_margin: Refresh the access token when it expires within
                        this many seconds
        mfa_timeout: Seconds a pending MFA challenge is kept before login
                     must restart
        max_retries: Retries for transient network failures
        retry_delay: Base delay between retries (exponential backoff)
        max_rate_limit_retries: Retries after HTTP 429 before surfacing
                                RateLimitExceeded
        cache_ttl: Default TTL for cacheable calls (seconds)
        cache_max_entries: Maximum number of cached responses
        token_store: Pluggable session persistence (memory if not provided)
        credential_store: Pluggable credential persistence used for re-login
        rate_limit: Rate limiter parameters
        streaming: Streaming session parameters
    """

    api_key: Optional[str] = None
    api_secret: Optional[str] = field(default=None, repr=False)
    device_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    base_url: str = DEFAULT_BASE_URL
    stream_url: Optional[str] = None
    timeout: float = 30.0
    paper_trading: bool = False
    refresh_margin: float = 60.0
    mfa_timeout: float = 300.0
    max_retries: int = 3
    retry_delay: float = 1.0
    max_rate_limit_retries: int = 5
    cache_ttl: float = 60.0
    cache_max_entries: int = 1000
    token_store: Optional["TokenStore"] = field(default=None, compare=False, repr=False)
    credential_store: Optional["CredentialStore"] = field(
        default=None, compare=False, repr=False
    )
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.base_url or not self.base_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"base_url must be an http(s) URL, got {self.base_url!r}"
            )

        if self.stream_url is not None and not self.stream_url.startswith(
            ("ws://", "wss://")
        ):
            raise ConfigurationError(
                f"stream_url must be a ws(s) URL, got {self.stream_url!r}"
            )

        if not self.device_id:
            raise ConfigurationError("device_id cannot be empty")

        if self.timeout <= 0:
            raise ConfigurationError("timeout must be positive")

        if self.refresh_margin < 0:
            raise ConfigurationError("refresh_margin cannot be negative")

        if self.mfa_timeout <= 0:
            raise ConfigurationError("mfa_timeout must be positive")

        if self.max_retries < 0:
            raise ConfigurationError("max_retries cannot be negative")

        if self.retry_delay < 0:
            raise ConfigurationError("retry_delay cannot be negative")

        if self.max_rate_limit_retries < 0:
            raise ConfigurationError("max_rate_limit_retries cannot be negative")

        if self.cache_ttl < 0:
            raise ConfigurationError("cache_ttl cannot be negative")

        if self.cache_max_entries <= 0:
            raise ConfigurationError("cache_max_entries must be positive")

    @property
    def websocket_url(self) -> str:
        """
        URL of the streaming endpoint.

        Returns:
            ``stream_url`` if configured, otherwise ``base_url`` with the
            scheme switched to ws(s) and ``/ws`` appended
        """
        if self.stream_url:
            return self.stream_url
        base = self.base_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        else:
            base = "ws://" + base[len("http://"):]
        return f"{base}/ws"

    @property
    def account_mode(self) -> str:
        """Account mode string (``paper`` or ``live``)."""
        return "paper" if self.paper_trading else "live"

    @classmethod
    def from_env(cls, **overrides: Any) -> "WebullConfig":
        """
        Load configuration from environment variables.

        Optional environment variables:
            WEBULL_API_KEY: Application API key
            WEBULL_API_SECRET: Application secret
            WEBULL_DEVICE_ID: Device identifier
            WEBULL_BASE_URL: REST base URL (default: https://api.webull.com)
            WEBULL_STREAM_URL: WebSocket URL
            WEBULL_TIMEOUT: Network timeout in seconds (default: 30)
            WEBULL_PAPER_TRADING: "1"/"true"/"yes" to use paper trading
            WEBULL_TOKEN_FILE: Persist the session to this JSON file

        Args:
            **overrides: Keyword arguments that take precedence over the
                         environment

        Returns:
            WebullConfig instance

        Raises:
            ConfigurationError: If a variable has an invalid value
        """
        values: dict = {}

        for attr, var in (
            ("api_key", "WEBULL_API_KEY"),
            ("api_secret", "WEBULL_API_SECRET"),
            ("device_id", "WEBULL_DEVICE_ID"),
            ("base_url", "WEBULL_BASE_URL"),
            ("stream_url", "WEBULL_STREAM_URL"),
        ):
            value = os.environ.get(var)
            if value:
                values[attr] = value

        timeout = os.environ.get("WEBULL_TIMEOUT")
        if timeout:
            try:
                values["timeout"] = float(timeout)
            except ValueError as e:
                raise ConfigurationError(
                    f"WEBULL_TIMEOUT must be a number, got {timeout!r}"
                ) from e

        paper = os.environ.get("WEBULL_PAPER_TRADING")
        if paper:
            values["paper_trading"] = paper.strip().lower() in ("1", "true", "yes", "on")

        token_file = os.environ.get("WEBULL_TOKEN_FILE")
        if token_file and "token_store" not in overrides:
            from .auth.token_store import FileTokenStore

            values["token_store"] = FileTokenStore(token_file)

        values.update(overrides)
        return cls(**values)
