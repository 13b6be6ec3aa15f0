"""
Token Storage for the API Insights client.

This module provides durable storage of the three opaque credentials
(access, refresh, challenge) using the system keyring or encrypted file
storage as fallback. The credentials are persisted as one record and
swapped as one in-memory snapshot, so no reader ever observes a partial
update.
"""

import os
import json
import logging
import threading
import tempfile
from typing import Optional
from pathlib import Path
from cryptography.fernet import Fernet, InvalidToken
from keyring.errors import KeyringError

from api_insights.shared.exceptions import ErrorCode, TokenStorageError
from api_insights.shared.interfaces import ITokenStorage
from api_insights.shared.models import TokenKind, TokenSet

logger = logging.getLogger(__name__)

CREDENTIALS_KEY = "credentials"


def _require_token(value: str, name: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} token must be a non-empty string")
    return value


class BaseTokenStorage(ITokenStorage):
    """
    Snapshot bookkeeping shared by all storage backends.

    Subclasses implement ``_load`` and ``_persist``. A write first persists
    the new snapshot and only then publishes it in memory; if persisting
    fails the previous snapshot stays in place.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._tokens: Optional[TokenSet] = None

    def _load(self) -> TokenSet:
        raise NotImplementedError

    def _persist(self, tokens: TokenSet) -> None:
        raise NotImplementedError

    def snapshot(self) -> TokenSet:
        tokens = self._tokens
        if tokens is None:
            with self._lock:
                if self._tokens is None:
                    self._tokens = self._load()
                tokens = self._tokens
        return tokens

    def _replace(self, tokens: TokenSet) -> None:
        with self._lock:
            self._persist(tokens)
            self._tokens = tokens

    def get(self, kind: TokenKind) -> Optional[str]:
        return self.snapshot().get(kind)

    def get_access_token(self) -> Optional[str]:
        return self.get(TokenKind.ACCESS)

    def get_refresh_token(self) -> Optional[str]:
        return self.get(TokenKind.REFRESH)

    def get_challenge_token(self) -> Optional[str]:
        return self.get(TokenKind.CHALLENGE)

    def set_pair(self, access: str, refresh: str) -> None:
        tokens = TokenSet(
            access=_require_token(access, "Access"),
            refresh=_require_token(refresh, "Refresh")
        )
        self._replace(tokens)
        logger.debug("Stored access/refresh token pair")

    def set_challenge(self, token: str) -> None:
        self._replace(TokenSet(challenge=_require_token(token, "Challenge")))
        logger.debug("Stored two-factor challenge token")

    def clear_challenge(self) -> None:
        current = self.snapshot()
        if current.challenge is None:
            return
        self._replace(TokenSet(access=current.access, refresh=current.refresh))
        logger.debug("Cleared two-factor challenge token")

    def clear_all(self) -> None:
        self._replace(TokenSet())
        logger.info("All stored credentials cleared")

    def is_authenticated(self) -> bool:
        return self.get(TokenKind.ACCESS) is not None


class MemoryTokenStorage(BaseTokenStorage):
    """Process-local storage; credentials are lost when the process exits."""

    def __init__(self, initial: Optional[TokenSet] = None):
        super().__init__()
        self._tokens = initial or TokenSet()

    def _load(self) -> TokenSet:
        return TokenSet()

    def _persist(self, tokens: TokenSet) -> None:
        pass


class SecureTokenStorage(BaseTokenStorage):
    """
    Durable storage for authentication tokens.

    Uses the system keyring when available and falls back to a
    Fernet-encrypted file otherwise.
    """

    def __init__(
        self,
        service_name: str = "api-insights-client",
        storage_path: Optional[Path] = None,
        use_keyring: Optional[bool] = None
    ):
        super().__init__()
        self.service_name = service_name
        self.storage_path = Path(storage_path) if storage_path else self._get_storage_path()
        if use_keyring is None:
            use_keyring = self._check_keyring_availability()
        self.keyring_available = use_keyring

        self._encryption_key: Optional[bytes] = None

        logger.info(f"Token storage initialized (keyring: {self.keyring_available})")

    def _check_keyring_availability(self) -> bool:
        """Check if system keyring is available."""
        try:
            import keyring
            test_key = f"{self.service_name}_test"
            keyring.set_password(self.service_name, test_key, "test")
            result = keyring.get_password(self.service_name, test_key)
            keyring.delete_password(self.service_name, test_key)
            return result == "test"
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    def _get_storage_path(self) -> Path:
        """Get path for encrypted file storage."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            config_dir = Path(xdg_config) / 'api-insights'
        else:
            config_dir = Path.home() / '.config' / 'api-insights'
        return config_dir / 'auth_tokens.enc'

    @property
    def key_path(self) -> Path:
        return self.storage_path.with_suffix('.key')

    def _get_encryption_key(self) -> bytes:
        """Get or create the encryption key for file storage."""
        if self._encryption_key:
            return self._encryption_key

        if self.key_path.exists():
            self._encryption_key = self.key_path.read_bytes().strip()
            return self._encryption_key

        key = Fernet.generate_key()
        self._write_private_file(self.key_path, key)
        self._encryption_key = key
        return key

    def _write_private_file(self, path: Path, data: bytes) -> None:
        """Write a file atomically with owner-only permissions."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, 'wb') as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _load(self) -> TokenSet:
        try:
            if self.keyring_available:
                return self._load_keyring()
            return self._load_file()
        except (InvalidToken, KeyringError, ValueError, OSError) as e:
            logger.warning(f"Failed to load stored credentials, starting empty: {e}")
            return TokenSet()

    def _load_keyring(self) -> TokenSet:
        import keyring

        value = keyring.get_password(self.service_name, CREDENTIALS_KEY)
        if not value:
            return TokenSet()
        return TokenSet.from_dict(json.loads(value))

    def _load_file(self) -> TokenSet:
        if not self.storage_path.exists():
            return TokenSet()

        fernet = Fernet(self._get_encryption_key())
        decrypted = fernet.decrypt(self.storage_path.read_bytes()).decode()
        return TokenSet.from_dict(json.loads(decrypted))

    def _persist(self, tokens: TokenSet) -> None:
        try:
            if self.keyring_available:
                self._persist_keyring(tokens)
            else:
                self._persist_file(tokens)
        except Exception as e:
            logger.error(f"Failed to persist credentials: {e}")
            raise TokenStorageError(
                f"Failed to persist credentials: {e}",
                error_code=ErrorCode.STORAGE_WRITE_FAILED,
                cause=e
            ) from e

    def _persist_keyring(self, tokens: TokenSet) -> None:
        import keyring
        from keyring.errors import PasswordDeleteError

        if tokens.is_empty():
            try:
                keyring.delete_password(self.service_name, CREDENTIALS_KEY)
            except PasswordDeleteError:
                # Nothing stored yet
                pass
            return
        keyring.set_password(self.service_name, CREDENTIALS_KEY, json.dumps(tokens.to_dict()))

    def _persist_file(self, tokens: TokenSet) -> None:
        if tokens.is_empty():
            if self.storage_path.exists():
                self.storage_path.unlink()
            return

        fernet = Fernet(self._get_encryption_key())
        encrypted = fernet.encrypt(json.dumps(tokens.to_dict()).encode())
        self._write_private_file(self.storage_path, encrypted)
