"""
REST request pipeline for the Webull client.

Public API:
    RateLimiter: Shared rolling-window throttle with backoff
    ResponseCache: TTL cache for idempotent responses
    RequestExecutor: Sends, retries and classifies requests
    RequestSpec / ParsedResponse: Request and response records
"""

# Import order matters: auth.session_manager imports rate_limiter
from .rate_limiter import Permit, RateBudget, RateLimiter
from .cache import CacheEntry, ResponseCache, request_fingerprint
from .executor import ParsedResponse, RequestExecutor, RequestSpec

__all__ = [
    # Throttling
    "Permit",
    "RateBudget",
    "RateLimiter",
    # Caching
    "CacheEntry",
    "ResponseCache",
    "request_fingerprint",
    # Execution
    "ParsedResponse",
    "RequestExecutor",
    "RequestSpec",
]
