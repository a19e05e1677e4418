"""Tests for the exception hierarchy."""

import pytest

from webull_client.exceptions import (
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


class TestExceptionHierarchy:
    """Tests for exception class relationships."""

    @pytest.mark.parametrize(
        "exc_class",
        [
            ConfigurationError,
            InvalidRequest,
            TokenStoreError,
            NetworkError,
            Timeout,
            RateLimitExceeded,
            ResponseParseError,
            AmbiguousOutcome,
            AuthenticationError,
            Unauthorized,
            MfaRequired,
            StreamingError,
            HandshakeRejected,
        ],
    )
    def test_all_inherit_from_base(self, exc_class):
        """Every client error can be caught as WebullError."""
        assert issubclass(exc_class, WebullError)

    def test_timeout_is_network_error(self):
        assert issubclass(Timeout, NetworkError)

    def test_auth_errors(self):
        assert issubclass(Unauthorized, AuthenticationError)
        assert issubclass(MfaRequired, AuthenticationError)

    def test_handshake_rejected_is_streaming_and_auth_error(self):
        """A rejected handshake can be handled as either kind of error."""
        assert issubclass(HandshakeRejected, StreamingError)
        assert issubclass(HandshakeRejected, AuthenticationError)

    def test_ambiguous_outcome_is_not_transient(self):
        """AmbiguousOutcome must never be retried automatically."""
        assert AmbiguousOutcome.transient is False
        assert not issubclass(AmbiguousOutcome, NetworkError)


class TestTransientFlag:
    """Tests for the transient classification."""

    @pytest.mark.parametrize("exc_class", [NetworkError, Timeout, RateLimitExceeded])
    def test_transient(self, exc_class):
        assert exc_class.transient is True

    @pytest.mark.parametrize(
        "exc_class",
        [ConfigurationError, InvalidRequest, Unauthorized, MfaRequired, ResponseParseError],
    )
    def test_not_transient(self, exc_class):
        assert exc_class.transient is False


class TestApiError:
    """Tests for ApiError."""

    def test_attributes(self):
        error = ApiError("417", "Insufficient buying power", status_code=400)

        assert error.code == "417"
        assert error.message == "Insufficient buying power"
        assert error.status_code == 400
        assert str(error) == "API error: 417 - Insufficient buying power"

    def test_status_code_optional(self):
        error = ApiError("bad", "Bad request")

        assert error.status_code is None

    def test_can_be_caught_as_base(self):
        with pytest.raises(WebullError):
            raise ApiError("500", "boom")
