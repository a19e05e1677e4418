"""
Exception classes for the Webull client.

This module defines the exception hierarchy for all client errors. Every
exception carries a ``transient`` flag: transient errors are retried
internally up to their configured bounds before being surfaced, all others
are surfaced to the caller immediately.
"""

from typing import Optional


class WebullError(Exception):
    """Base exception for all Webull client errors."""

    transient = False


class ConfigurationError(WebullError):
    """Client configuration error (missing or invalid configuration)."""

    pass


class InvalidRequest(WebullError):
    """A request was malformed or used in a way the client does not allow."""

    pass


class TokenStoreError(WebullError):
    """Token or credential store operation failed."""

    pass


class NetworkError(WebullError):
    """Network-level failure (connection refused, reset, DNS...)."""

    transient = True


class Timeout(NetworkError):
    """A network operation did not complete within its timeout."""

    pass


class RateLimitExceeded(WebullError):
    """The brokerage rejected the call because of its rate limit."""

    transient = True


class ApiError(WebullError):
    """
    Error reported by the brokerage (HTTP 4xx/5xx or an error payload).

    Attributes:
        code: Brokerage error code (HTTP status code when no payload code)
        message: Human-readable error message
        status_code: HTTP status code of the response, if any
    """

    def __init__(self, code: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"API error: {code} - {message}")
        self.code = code
        self.message = message
        self.status_code = status_code


class ResponseParseError(WebullError):
    """A response body could not be decoded."""

    pass


class AmbiguousOutcome(WebullError):
    """
    A mutating request failed after it may have reached the server.

    It cannot be determined whether the request was applied. The call is
    never retried automatically; the caller must reconcile (for example by
    querying open orders) before resubmitting.
    """

    pass


class AuthenticationError(WebullError):
    """Authentication flow error (login rejected, MFA expired...)."""

    pass


class Unauthorized(AuthenticationError):
    """No valid session; the user needs to log in again."""

    pass


class MfaRequired(AuthenticationError):
    """Login is waiting for a multi-factor verification code."""

    pass


class StreamingError(WebullError):
    """Streaming session error."""

    pass


class HandshakeRejected(StreamingError, AuthenticationError):
    """The streaming server rejected the connection-level authentication."""

    pass
