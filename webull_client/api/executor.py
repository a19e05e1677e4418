"""
Request execution for the Webull REST API.

Every call made by an endpoint wrapper flows through ``RequestExecutor``:

- a rate-limit permit is obtained from the shared RateLimiter
- if the call requires authentication, a header is obtained from the
  AuthSessionManager (Unauthorized propagates without any network call)
- the request is signed and sent
- the result is classified into a ParsedResponse or a typed error

Retry policy:
- network failures: idempotent calls are retried with exponential backoff;
  mutating calls are retried only when the connection could not be
  established, otherwise AmbiguousOutcome is raised
- HTTP 401: one forced token refresh and a single retry
- HTTP 429: delegated to the RateLimiter backoff, then retried
- HTTP 5xx: idempotent calls are retried like network failures; mutating
  calls raise AmbiguousOutcome on 502/504 and ApiError otherwise
- other 4xx and API error payloads: surfaced immediately as ApiError
"""

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional

import requests
import urllib3

from ..auth.session import AuthorizationHeader
from ..auth.signing import canonical_body, signed_headers
from ..config import WebullConfig
from ..exceptions import (
    AmbiguousOutcome,
    ApiError,
    InvalidRequest,
    NetworkError,
    RateLimitExceeded,
    ResponseParseError,
    Timeout,
    Unauthorized,
)
from .cache import ResponseCache, request_fingerprint
from .rate_limiter import RateLimiter

if TYPE_CHECKING:
    from ..auth.session_manager import AuthSessionManager

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

# A gateway error on a mutating call says nothing about whether it was applied
AMBIGUOUS_STATUSES = frozenset({502, 504})


@dataclass(frozen=True)
class RequestSpec:
    """
    Description of one API call.

    Attributes:
        method: HTTP method
        path: Path relative to the base URL
        params: Query parameters
        body: JSON body
        requires_auth: Attach the session authorization header
        is_idempotent: Safe to retry after an ambiguous failure
                       (defaults to True for GET/HEAD/OPTIONS)
        timeout: Per-call timeout overriding the configured one
        headers: Extra request headers
    """

    method: str
    path: str
    params: Optional[Mapping[str, Any]] = None
    body: Any = None
    requires_auth: bool = True
    is_idempotent: Optional[bool] = None
    timeout: Optional[float] = None
    headers: Optional[Mapping[str, str]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        if not self.path:
            raise InvalidRequest("path cannot be empty")
        if self.is_idempotent is None:
            object.__setattr__(self, "is_idempotent", self.method in IDEMPOTENT_METHODS)

    def fingerprint(self) -> str:
        """Cache key for this request."""
        return request_fingerprint(self.method, self.path, self.params, self.body)


@dataclass
class ParsedResponse:
    """
    Successful API response.

    Attributes:
        status_code: HTTP status code
        data: Payload (the ``data`` member of a success envelope, otherwise
              the decoded JSON body; None for an empty body)
        raw: Decoded JSON body as received
        headers: Response headers
    """

    status_code: int
    data: Any
    raw: Any = None
    headers: Dict[str, str] = field(default_factory=dict)


class RequestExecutor:
    """
    Executes API requests with throttling, authentication and retries.

    Example:
        executor = RequestExecutor(config, auth_manager, rate_limiter)
        response = executor.execute(RequestSpec("GET", "/api/account/list"))
        accounts = response.data
    """

    def __init__(
        self,
        config: WebullConfig,
        auth: Optional["AuthSessionManager"],
        rate_limiter: RateLimiter,
        http: Optional[requests.Session] = None,
        cache: Optional[ResponseCache] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize request executor.

        Args:
            config: Client configuration
            auth: Session manager (None only for clients making public calls)
            rate_limiter: Shared rate limiter
            http: HTTP session (creates one if not provided)
            cache: Response cache for cacheable calls
            sleep: Sleep function used between retries
        """
        self.config = config
        self.auth = auth
        self.rate_limiter = rate_limiter
        self.http = http or requests.Session()
        self.cache = cache if cache is not None else ResponseCache(
            config.cache_ttl, config.cache_max_entries
        )
        self._sleep = sleep

        self.http.headers.update({
            "Accept": "application/json",
            "User-Agent": "webull-client/1.0",
        })

    def _get_full_url(self, path: str) -> str:
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _calculate_backoff_delay(self, retry_count: int) -> float:
        return self.config.retry_delay * (2 ** retry_count)

    def execute(self, spec: RequestSpec) -> ParsedResponse:
        """
        Execute a request.

        Args:
            spec: Request description

        Returns:
            Parsed response

        Raises:
            Unauthorized: If not logged in, or still rejected after a refresh
            MfaRequired: If login is waiting for MFA verification
            ApiError: For 4xx responses and API error payloads
            RateLimitExceeded: If still rate limited after the retry bound
            Timeout / NetworkError: If network failures exhaust the retries
            AmbiguousOutcome: If a mutating call failed after it may have
                              reached the server
            ResponseParseError: If the response body cannot be decoded
        """
        url = self._get_full_url(spec.path)
        timeout = spec.timeout or self.config.timeout
        payload = canonical_body(spec.body) if spec.body is not None else None

        network_retries = 0
        rate_limit_retries = 0
        auth_retried = False

        while True:
            self.rate_limiter.acquire()

            headers: Dict[str, str] = {}
            if spec.body is not None:
                headers["Content-Type"] = "application/json"
            headers.update(
                signed_headers(
                    self.config.api_key, self.config.api_secret, self.config.device_id, spec.body
                )
            )
            if spec.headers:
                headers.update(spec.headers)

            authorization: Optional[AuthorizationHeader] = None
            if spec.requires_auth:
                if self.auth is None:
                    raise Unauthorized("Request requires authentication but no session manager")
                authorization = self.auth.current_authorization()
                headers.update(authorization.as_dict())

            logger.debug(f"{spec.method} {url}")
            if spec.params:
                logger.debug(f"  Params: {dict(spec.params)}")

            try:
                response = self.http.request(
                    spec.method,
                    url,
                    params=spec.params,
                    data=payload,
                    headers=headers,
                    timeout=timeout,
                )
            except requests.exceptions.RequestException as e:
                if not spec.is_idempotent and not _nothing_sent(e):
                    logger.error(f"{spec.method} {spec.path} failed after sending: {e}")
                    raise AmbiguousOutcome(
                        f"{spec.method} {spec.path} may or may not have been applied: {e}"
                    ) from e

                if network_retries < self.config.max_retries:
                    delay = self._calculate_backoff_delay(network_retries)
                    network_retries += 1
                    logger.warning(
                        f"Network error: {e}. Retrying in {delay}s "
                        f"(attempt {network_retries}/{self.config.max_retries})"
                    )
                    self._sleep(delay)
                    continue

                logger.error(f"Network error after {self.config.max_retries} retries: {e}")
                if isinstance(e, requests.exceptions.Timeout):
                    raise Timeout(f"Request to {spec.path} timed out") from e
                raise NetworkError(f"Network error: {e}") from e

            status = response.status_code

            if status == 401 and spec.requires_auth:
                if auth_retried:
                    logger.error(f"Authentication failed (401) after token refresh: {spec.path}")
                    raise Unauthorized("Authentication failed after token refresh; login again")
                logger.warning("Authentication failed (401), refreshing token and retrying")
                auth_retried = True
                self.auth.force_refresh(authorization)
                continue

            if status == 429:
                delay = self.rate_limiter.record_rate_limited(_retry_after(response))
                if rate_limit_retries >= self.config.max_rate_limit_retries:
                    raise RateLimitExceeded(
                        f"Rate limit exceeded after {rate_limit_retries} retries: {spec.path}"
                    )
                rate_limit_retries += 1
                logger.warning(f"Rate limited (429); next attempt in about {delay:.2f}s")
                continue

            if status >= 500:
                if not spec.is_idempotent:
                    if status in AMBIGUOUS_STATUSES:
                        raise AmbiguousOutcome(
                            f"{spec.method} {spec.path} returned {status}; outcome unknown"
                        )
                    raise _api_error(response)

                if network_retries < self.config.max_retries:
                    delay = self._calculate_backoff_delay(network_retries)
                    network_retries += 1
                    logger.warning(
                        f"Server error ({status}). Retrying in {delay}s "
                        f"(attempt {network_retries}/{self.config.max_retries})"
                    )
                    self._sleep(delay)
                    continue

                logger.error(f"Server error ({status}) after {self.config.max_retries} retries")
                raise _api_error(response)

            if not 200 <= status < 300:
                logger.error(f"API error ({status}): {response.text}")
                raise _api_error(response)

            parsed = self._parse(response)
            self.rate_limiter.record_success()
            if not spec.is_idempotent:
                self.cache.clear()
            return parsed

    def cacheable_execute(
        self,
        fingerprint: Optional[str],
        ttl: Optional[float],
        spec: RequestSpec,
    ) -> ParsedResponse:
        """
        Execute an idempotent request through the response cache.

        A hit within the TTL returns the cached response without touching
        the rate limiter or the network.

        Args:
            fingerprint: Cache key (derived from the spec if None)
            ttl: Time-to-live in seconds (config.cache_ttl if None)
            spec: Request description

        Returns:
            Cached or fresh parsed response

        Raises:
            InvalidRequest: If the request is not idempotent
        """
        if not spec.is_idempotent:
            raise InvalidRequest(f"{spec.method} {spec.path} is not idempotent and cannot be cached")

        key = fingerprint or spec.fingerprint()
        return self.cache.get_or_compute(key, ttl, lambda: self.execute(spec))

    def _parse(self, response: requests.Response) -> ParsedResponse:
        """
        Decode a 2xx response.

        Raises:
            ApiError: If the body is an error envelope
            ResponseParseError: If the body is not valid JSON
        """
        headers = dict(response.headers or {})

        if not response.content:
            return ParsedResponse(status_code=response.status_code, data=None, headers=headers)

        try:
            body = response.json()
        except ValueError as e:
            raise ResponseParseError(f"Invalid JSON in response: {e}") from e

        data = body
        if isinstance(body, dict) and "success" in body:
            if not body["success"]:
                raise _api_error(response, body)
            data = body.get("data")

        return ParsedResponse(status_code=response.status_code, data=data, raw=body, headers=headers)


def _nothing_sent(error: requests.exceptions.RequestException) -> bool:
    """True if the request failed while connecting, before anything was sent."""
    if isinstance(error, requests.exceptions.ConnectTimeout):
        return True
    if isinstance(error, requests.exceptions.ConnectionError):
        reason = error.args[0] if error.args else None
        if isinstance(reason, urllib3.exceptions.MaxRetryError):
            reason = reason.reason
        return isinstance(reason, urllib3.exceptions.NewConnectionError)
    return False


def _retry_after(response: requests.Response) -> Optional[float]:
    value = (response.headers or {}).get("Retry-After")
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _api_error(response: requests.Response, body: Any = None) -> ApiError:
    if body is None:
        try:
            body = response.json()
        except ValueError:
            body = None

    if isinstance(body, dict):
        code = body.get("code") or str(response.status_code)
        message = body.get("msg") or body.get("message") or response.text
    else:
        code, message = str(response.status_code), response.text

    return ApiError(str(code), str(message), status_code=response.status_code)
