"""
Session and credential persistence.

The core only depends on the load/save/clear contract defined by
``TokenStore``. Two implementations are provided: an in-memory store (the
default) and a file-based store that writes the session as JSON with
user-only permissions.

Concurrent external modification of a backing store is not supported; the
AuthSessionManager is the single writer.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from ..exceptions import TokenStoreError
from .session import Credentials, Session

logger = logging.getLogger(__name__)


class TokenStore(ABC):
    """Load/save/clear contract for session persistence."""

    @abstractmethod
    def load(self) -> Optional[Session]:
        """Return the stored session, or None if nothing usable is stored."""

    @abstractmethod
    def save(self, session: Session) -> None:
        """Persist a session, replacing any previous one."""

    @abstractmethod
    def clear(self) -> None:
        """Remove the stored session."""


class MemoryTokenStore(TokenStore):
    """In-memory session store (lost when the process exits)."""

    def __init__(self, session: Optional[Session] = None):
        self._session = session
        self._lock = threading.Lock()

    def load(self) -> Optional[Session]:
        with self._lock:
            return self._session

    def save(self, session: Session) -> None:
        with self._lock:
            self._session = session

    def clear(self) -> None:
        with self._lock:
            self._session = None


class FileTokenStore(TokenStore):
    """
    File-based session store (plaintext JSON, chmod 600).

    Missing or corrupted files load as None so a fresh login can proceed.
    """

    def __init__(self, token_file: Union[str, Path]):
        """
        Initialize file token store.

        Args:
            token_file: Path to the session file
                        (e.g., ~/.webull/session.json)
        """
        self.token_file = Path(token_file).expanduser()
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        """Create parent directory if needed."""
        self.token_file.parent.mkdir(parents=True, exist_ok=True)

    def _set_secure_permissions(self) -> None:
        """Set file permissions to user-only read/write (600)."""
        try:
            self.token_file.chmod(0o600)
        except OSError as e:
            logger.warning(f"Could not set secure permissions: {e}")

    def save(self, session: Session) -> None:
        """
        Save the session to file.

        Args:
            session: Session to save

        Raises:
            TokenStoreError: If the file cannot be written
        """
        try:
            tmp_file = self.token_file.with_name(self.token_file.name + ".tmp")
            with open(tmp_file, "w") as f:
                json.dump(session.to_dict(), f, indent=2)
            tmp_file.chmod(0o600)
            os.replace(tmp_file, self.token_file)

            self._set_secure_permissions()
            logger.debug(f"Session saved to {self.token_file}")
        except OSError as e:
            tmp_file.unlink(missing_ok=True)
            logger.error(f"Failed to save session: {e}")
            raise TokenStoreError(f"Failed to save session: {e}") from e

    def load(self) -> Optional[Session]:
        """
        Load the session from file.

        Returns:
            Session if the file exists and is valid, None otherwise
        """
        if not self.token_file.exists():
            logger.debug(f"No session file found at {self.token_file}")
            return None

        try:
            with open(self.token_file, "r") as f:
                data = json.load(f)

            return Session.from_dict(data)

        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(
                f"Invalid session file at {self.token_file}, login required: {e}"
            )
            return None
        except OSError as e:
            logger.warning(f"Could not read session file: {e}")
            return None

    def clear(self) -> None:
        """
        Delete the session file.

        Raises:
            TokenStoreError: If the file exists but cannot be deleted
        """
        if not self.token_file.exists():
            return

        try:
            self.token_file.unlink()
            logger.info(f"Session file deleted: {self.token_file}")
        except OSError as e:
            logger.error(f"Failed to delete session file: {e}")
            raise TokenStoreError(f"Failed to delete session file: {e}") from e


class CredentialStore(ABC):
    """Load/save/clear contract for login credentials."""

    @abstractmethod
    def load(self) -> Optional[Credentials]:
        """Return the stored credentials, or None."""

    @abstractmethod
    def save(self, credentials: Credentials) -> None:
        """Persist credentials, replacing any previous ones."""

    @abstractmethod
    def clear(self) -> None:
        """Remove the stored credentials."""


class MemoryCredentialStore(CredentialStore):
    """In-memory credential store."""

    def __init__(self) -> None:
        self._credentials: Optional[Credentials] = None
        self._lock = threading.Lock()

    def load(self) -> Optional[Credentials]:
        with self._lock:
            return self._credentials

    def save(self, credentials: Credentials) -> None:
        with self._lock:
            self._credentials = credentials

    def clear(self) -> None:
        with self._lock:
            self._credentials = None
