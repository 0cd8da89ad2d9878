"""Durable key/value backends for the persisted session.

The session is stored as three string values under fixed keys: the access
token, a refresh token placeholder and the serialized current user.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError


logger = logging.getLogger(__name__)

ACCESS_TOKEN = "accessToken"
REFRESH_TOKEN = "refreshToken"
CURRENT_USER = "currentUser"

SESSION_KEYS = (ACCESS_TOKEN, REFRESH_TOKEN, CURRENT_USER)


class StorageError(Exception):
    """A storage backend failed to read or write."""
    pass


class SessionStorage(ABC):
    """Interface for session persistence backends."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when absent.

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value.

        Raises:
            StorageError: If the value cannot be written
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a value; missing keys are ignored.

        Raises:
            StorageError: If the backend cannot be written
        """
        pass


class MemorySessionStorage(SessionStorage):
    """Process-local storage; nothing survives a restart."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def delete(self, key: str) -> None:
        self.values.pop(key, None)


class FileSessionStorage(SessionStorage):
    """JSON document on disk, rewritten atomically on every change."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read session file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Session file {self.path} does not contain an object")
        return data

    def _write(self, data: Dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".session-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f)
                os.chmod(tmp_path, 0o600)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StorageError(f"Cannot write session file {self.path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        if value is not None and not isinstance(value, str):
            raise StorageError(f"Stored value for '{key}' is not a string")
        return value

    def set(self, key: str, value: str) -> None:
        try:
            data = self._read()
        except StorageError:
            logger.warning(f"Replacing unreadable session file {self.path}")
            data = {}
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        try:
            data = self._read()
        except StorageError:
            logger.warning(f"Discarding unreadable session file {self.path}")
            data = {}
            self._write(data)
            return
        if key in data:
            del data[key]
            self._write(data)


class KeyringSessionStorage(SessionStorage):
    """Session values in the system keyring."""

    SERVICE_NAME = "todo_sync_session"

    def __init__(self, service_name: Optional[str] = None):
        self.service_name = service_name or self.SERVICE_NAME
        self.logger = logging.getLogger(__name__)

    def get(self, key: str) -> Optional[str]:
        try:
            return keyring.get_password(self.service_name, key)
        except KeyringError as e:
            raise StorageError(f"Keyring read failed for {key}: {e}") from e

    def set(self, key: str, value: str) -> None:
        try:
            keyring.set_password(self.service_name, key, value)
            self.logger.debug(f"Stored {key} in keyring")
        except KeyringError as e:
            raise StorageError(f"Keyring write failed for {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self.service_name, key)
        except PasswordDeleteError:
            # Not stored
            pass
        except KeyringError as e:
            raise StorageError(f"Keyring delete failed for {key}: {e}") from e


def create_storage(backend: str, data_dir: Optional[Path] = None) -> SessionStorage:
    """Build the storage backend named in the configuration.

    Args:
        backend: ``file``, ``keyring`` or ``memory``
        data_dir: Directory for the file backend

    Returns:
        SessionStorage instance
    """
    if backend == "memory":
        return MemorySessionStorage()
    if backend == "keyring":
        return KeyringSessionStorage()
    if backend == "file":
        base = Path(data_dir) if data_dir else Path(os.path.expanduser("~/.todo_sync"))
        return FileSessionStorage(base / "session.json")
    raise ValueError(f"Unknown session backend: {backend}")
