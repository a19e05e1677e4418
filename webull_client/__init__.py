"""
Webull brokerage client core.

Public API:
    WebullClient: Facade wiring authentication, throttling, requests,
                  caching and streaming together
    WebullConfig: Client configuration
"""

from .api import ParsedResponse, RateLimiter, RequestExecutor, RequestSpec, ResponseCache
from .auth import (
    AccountMode,
    AuthSessionManager,
    AuthState,
    Credentials,
    FileTokenStore,
    MemoryTokenStore,
    Session,
    TokenStore,
)
from .client import WebullClient
from .config import RateLimitConfig, StreamingConfig, WebullConfig
from .exceptions import (
    AmbiguousOutcome,
    ApiError,
    AuthenticationError,
    ConfigurationError,
    HandshakeRejected,
    InvalidRequest,
    MfaRequired,
    NetworkError,
    RateLimitExceeded,
    ResponseParseError,
    StreamingError,
    Timeout,
    TokenStoreError,
    Unauthorized,
    WebullError,
)
from .streaming import ConnectionState, EventType, StreamEvent, StreamingSession

__version__ = "0.1.0"

__all__ = [
    "WebullClient",
    # Configuration
    "WebullConfig",
    "RateLimitConfig",
    "StreamingConfig",
    # Authentication
    "AccountMode",
    "AuthSessionManager",
    "AuthState",
    "Credentials",
    "Session",
    "TokenStore",
    "MemoryTokenStore",
    "FileTokenStore",
    # Requests
    "RateLimiter",
    "RequestExecutor",
    "RequestSpec",
    "ParsedResponse",
    "ResponseCache",
    # Streaming
    "StreamingSession",
    "StreamEvent",
    "EventType",
    "ConnectionState",
    # Exceptions
    "WebullError",
    "ConfigurationError",
    "InvalidRequest",
    "TokenStoreError",
    "NetworkError",
    "Timeout",
    "RateLimitExceeded",
    "ApiError",
    "ResponseParseError",
    "AmbiguousOutcome",
    "AuthenticationError",
    "Unauthorized",
    "MfaRequired",
    "StreamingError",
    "HandshakeRejected",
]
