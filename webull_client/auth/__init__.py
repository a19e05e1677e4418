"""
Authentication module for the Webull client.

Public API:
    Credentials: Login credentials
    Session: Authenticated session record
    AccountMode: Live or paper account
    AuthorizationHeader: Header value handed to other components
    AuthSessionManager: Session lifecycle and single-flight refresh
    AuthState: Session state machine states
    TokenStore: Session persistence contract
    MemoryTokenStore / FileTokenStore: Built-in session stores
    CredentialStore / MemoryCredentialStore: Credential persistence
"""

from .session import AccountMode, AuthorizationHeader, Credentials, Session
from .session_manager import AuthSessionManager, AuthState
from .token_store import (
    CredentialStore,
    FileTokenStore,
    MemoryCredentialStore,
    MemoryTokenStore,
    TokenStore,
)

__all__ = [
    # Session data
    "AccountMode",
    "AuthorizationHeader",
    "Credentials",
    "Session",
    # Session manager
    "AuthSessionManager",
    "AuthState",
    # Persistence
    "TokenStore",
    "MemoryTokenStore",
    "FileTokenStore",
    "CredentialStore",
    "MemoryCredentialStore",
]
