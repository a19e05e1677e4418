"""Tests for client configuration."""

import dataclasses

import pytest

from webull_client.auth.token_store import FileTokenStore
from webull_client.config import (
    DEFAULT_BASE_URL,
    RateLimitConfig,
    StreamingConfig,
    WebullConfig,
)
from webull_client.exceptions import ConfigurationError


class TestWebullConfig:
    """Tests for WebullConfig."""

    def test_defaults(self):
        """Default configuration is valid."""
        config = WebullConfig()

        assert config.base_url == DEFAULT_BASE_URL
        assert config.timeout == 30.0
        assert config.refresh_margin == 60.0
        assert config.mfa_timeout == 300.0
        assert config.paper_trading is False
        assert config.account_mode == "live"
        assert config.device_id

    def test_device_id_is_random_per_instance(self):
        """Each config gets its own device id when none is given."""
        assert WebullConfig().device_id != WebullConfig().device_id

    def test_is_immutable(self):
        """Config cannot be modified after creation."""
        config = WebullConfig()

        with pytest.raises(dataclasses.FrozenInstanceError):
            config.timeout = 5

    def test_secret_not_in_repr(self):
        """api_secret does not appear in repr."""
        config = WebullConfig(api_key="key", api_secret="super-secret")

        assert "super-secret" not in repr(config)

    def test_websocket_url_derived_from_https(self):
        """https base URL becomes a wss stream URL."""
        config = WebullConfig(base_url="https://api.example.com/")

        assert config.websocket_url == "wss://api.example.com/ws"

    def test_websocket_url_derived_from_http(self):
        config = WebullConfig(base_url="http://localhost:8080")

        assert config.websocket_url == "ws://localhost:8080/ws"

    def test_explicit_stream_url(self):
        config = WebullConfig(stream_url="wss://stream.example.com/v1")

        assert config.websocket_url == "wss://stream.example.com/v1"

    def test_paper_account_mode(self):
        assert WebullConfig(paper_trading=True).account_mode == "paper"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"base_url": "ftp://example.com"},
            {"stream_url": "https://example.com"},
            {"device_id": ""},
            {"timeout": 0},
            {"refresh_margin": -1},
            {"mfa_timeout": 0},
            {"max_retries": -1},
            {"max_rate_limit_retries": -1},
            {"cache_max_entries": 0},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        """Invalid values raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            WebullConfig(**kwargs)


class TestRateLimitConfig:
    """Tests for RateLimitConfig."""

    def test_defaults(self):
        config = RateLimitConfig()

        assert config.limit == 60
        assert config.window == 60.0
        assert config.backoff_base == 1.0
        assert config.backoff_cap == 60.0
        assert config.jitter == 0.2

    def test_invalid_limit(self):
        with pytest.raises(ConfigurationError):
            RateLimitConfig(limit=0)

    def test_cap_below_base(self):
        with pytest.raises(ConfigurationError):
            RateLimitConfig(backoff_base=10.0, backoff_cap=1.0)


class TestStreamingConfig:
    """Tests for StreamingConfig."""

    def test_grace_defaults_to_twice_interval(self):
        config = StreamingConfig(heartbeat_interval=10.0)

        assert config.effective_heartbeat_grace == 20.0

    def test_explicit_grace(self):
        config = StreamingConfig(heartbeat_interval=10.0, heartbeat_grace=15.0)

        assert config.effective_heartbeat_grace == 15.0

    def test_max_delay_below_base(self):
        with pytest.raises(ConfigurationError):
            StreamingConfig(reconnect_base_delay=5.0, reconnect_max_delay=1.0)

    def test_negative_attempts(self):
        with pytest.raises(ConfigurationError):
            StreamingConfig(max_reconnect_attempts=-1)


class TestFromEnv:
    """Tests for WebullConfig.from_env()."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for var in (
            "WEBULL_API_KEY",
            "WEBULL_API_SECRET",
            "WEBULL_DEVICE_ID",
            "WEBULL_BASE_URL",
            "WEBULL_STREAM_URL",
            "WEBULL_TIMEOUT",
            "WEBULL_PAPER_TRADING",
            "WEBULL_TOKEN_FILE",
        ):
            monkeypatch.delenv(var, raising=False)

    def test_reads_environment(self, monkeypatch):
        """Values are read from WEBULL_* variables."""
        monkeypatch.setenv("WEBULL_API_KEY", "env_key")
        monkeypatch.setenv("WEBULL_API_SECRET", "env_secret")
        monkeypatch.setenv("WEBULL_DEVICE_ID", "device-123")
        monkeypatch.setenv("WEBULL_BASE_URL", "https://sandbox.example.com")
        monkeypatch.setenv("WEBULL_TIMEOUT", "12.5")
        monkeypatch.setenv("WEBULL_PAPER_TRADING", "true")

        config = WebullConfig.from_env()

        assert config.api_key == "env_key"
        assert config.api_secret == "env_secret"
        assert config.device_id == "device-123"
        assert config.base_url == "https://sandbox.example.com"
        assert config.timeout == 12.5
        assert config.paper_trading is True

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("WEBULL_TIMEOUT", "12")

        config = WebullConfig.from_env(timeout=3.0)

        assert config.timeout == 3.0

    def test_invalid_timeout(self, monkeypatch):
        monkeypatch.setenv("WEBULL_TIMEOUT", "soon")

        with pytest.raises(ConfigurationError, match="WEBULL_TIMEOUT"):
            WebullConfig.from_env()

    def test_token_file_creates_file_store(self, monkeypatch, tmp_path):
        """WEBULL_TOKEN_FILE configures a FileTokenStore."""
        token_file = tmp_path / "session.json"
        monkeypatch.setenv("WEBULL_TOKEN_FILE", str(token_file))

        config = WebullConfig.from_env()

        assert isinstance(config.token_store, FileTokenStore)
        assert config.token_store.token_file == token_file

    def test_no_environment(self):
        """Without variables the defaults apply."""
        config = WebullConfig.from_env()

        assert config.api_key is None
        assert config.token_store is None
        assert config.base_url == DEFAULT_BASE_URL
