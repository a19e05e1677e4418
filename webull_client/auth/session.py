"""
Session data structures.

This module defines the credential and session records owned by the
AuthSessionManager, plus the authorization header value that is the only
piece of credential material handed to other components.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class AccountMode(str, Enum):
    """Brokerage account mode."""

    LIVE = "live"
    PAPER = "paper"


@dataclass(frozen=True)
class Credentials:
    """
    Login credentials.

    Attributes:
        username: Account identifier (email or phone number)
        password: Account password (never logged)
        device_id: Device identifier overriding the configured one
    """

    username: str
    password: str = field(repr=False)
    device_id: Optional[str] = None


@dataclass(frozen=True)
class Session:
    """
    Authenticated session state.

    Attributes:
        access_token: Short-lived token attached to API calls
        refresh_token: Token used to obtain a new access token
        expires_at: When the access token expires (timezone-aware UTC)
        account_mode: Live or paper account
        mfa_pending: True while login waits for a verification code
                     (tokens are empty in that state)
    """

    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(repr=False)
    expires_at: datetime
    account_mode: AccountMode = AccountMode.LIVE
    mfa_pending: bool = False

    @classmethod
    def issued(
        cls,
        access_token: str,
        refresh_token: Optional[str],
        expires_in: float,
        account_mode: AccountMode = AccountMode.LIVE,
    ) -> "Session":
        """
        Create a session for tokens issued now.

        Args:
            access_token: Access token
            refresh_token: Refresh token (may be None)
            expires_in: Access token lifetime in seconds from now
            account_mode: Live or paper account

        Returns:
            Session instance
        """
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            account_mode=account_mode,
        )

    @classmethod
    def pending_mfa(cls, account_mode: AccountMode = AccountMode.LIVE) -> "Session":
        """Create the placeholder session returned while MFA is pending."""
        return cls(
            access_token="",
            refresh_token=None,
            expires_at=datetime.now(timezone.utc),
            account_mode=account_mode,
            mfa_pending=True,
        )

    @property
    def is_expired(self) -> bool:
        """True if the access token has expired."""
        return datetime.now(timezone.utc) >= self.expires_at

    def expires_within(self, seconds: float) -> bool:
        """
        Check if the access token expires within the given number of seconds.

        Args:
            seconds: Safety margin in seconds

        Returns:
            True if the token will have expired after ``seconds``
        """
        return datetime.now(timezone.utc) + timedelta(seconds=seconds) >= self.expires_at

    def seconds_remaining(self) -> float:
        """Seconds until the access token expires (never negative)."""
        return max(0.0, (self.expires_at - datetime.now(timezone.utc)).total_seconds())

    def to_dict(self) -> dict:
        """
        Convert to a JSON-serializable dictionary.

        Returns:
            Dictionary representation of the session
        """
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat(),
            "account_mode": self.account_mode.value,
            "mfa_pending": self.mfa_pending,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        """
        Create a Session from a dictionary produced by ``to_dict``.

        Args:
            data: Dictionary with session fields

        Returns:
            Session instance

        Raises:
            KeyError: If required fields are missing
            ValueError: If fields have invalid values
        """
        expires_at = datetime.fromisoformat(data["expires_at"])
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            account_mode=AccountMode(data.get("account_mode", AccountMode.LIVE.value)),
            mfa_pending=bool(data.get("mfa_pending", False)),
        )


@dataclass(frozen=True)
class AuthorizationHeader:
    """
    Ready-to-use authorization header value.

    The value is masked in ``repr`` so it does not leak into logs.
    """

    value: str = field(repr=False)
    name: str = "Authorization"

    @classmethod
    def bearer(cls, token: str) -> "AuthorizationHeader":
        return cls(value=f"Bearer {token}")

    def as_dict(self) -> dict:
        """Header mapping ready to merge into request headers."""
        return {self.name: self.value}
