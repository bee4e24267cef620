"""
Credential persistence for the VPN username/password pair.

The OS keyring is preferred. When it is unavailable (headless sessions, locked
down desktops, missing secret service) the pair is written to an owner-only
JSON file in the user's config directory instead. Keyring problems never block
the credential flow; they are reported back as warnings.
"""

import enum
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NamedTuple, Optional

import keyring
from keyring.errors import PasswordDeleteError

from navtunnel.exceptions import CredentialsNotFound, StoreAccessFailure
from navtunnel.local.config import effective_settings as config
from navtunnel.paths import HOME_FALLBACK_DIR_NAME, user_config_dir

log = logging.getLogger(__name__)


class StoreLocation(str, enum.Enum):
    """Where a save/load operation found or put the credentials."""
    NONE = ""
    KEYRING = "keyring"
    FILE = "file"


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str = field(repr=False)

    @property
    def is_present(self) -> bool:
        """Both fields must be non-empty; a partial record counts as absent."""
        return bool(self.username) and bool(self.password)

    def to_json(self) -> str:
        return json.dumps({"username": self.username, "password": self.password})

    @classmethod
    def from_json(cls, data: str) -> "Credentials":
        parsed = json.loads(data)
        if not isinstance(parsed, dict):
            raise ValueError("credential record is not a JSON object")
        return cls(str(parsed.get("username") or ""), str(parsed.get("password") or ""))


class SaveResult(NamedTuple):
    location: StoreLocation
    warning: str = ""


class LoadResult(NamedTuple):
    username: str
    password: str
    location: StoreLocation
    warning: str = ""


class _NotStored(Exception):
    """Internal marker: the location holds no usable record."""


def keyring_warning(error: Exception) -> str:
    return f"could not access the system keyring: {error}"


class CredentialStore:
    """
    Durable storage for a single username/password pair.

    :param keyring_backend: A keyring backend object (anything with
        get_password/set_password/delete_password). Defaults to the `keyring`
        module, which resolves the platform's native backend.
    :param config_dir: Directory of the fallback file. Defaults to the
        platform's per-user config directory.
    """

    def __init__(
        self,
        keyring_backend: Any = None,
        config_dir: Optional[Path] = None,
        service: Optional[str] = None,
        account: Optional[str] = None,
    ) -> None:
        self._keyring = keyring_backend if keyring_backend is not None else keyring
        self._config_dir = Path(config_dir) if config_dir is not None else None
        self.service = service or config.KEYRING_SERVICE
        self.account = account or config.KEYRING_ACCOUNT
        self._lock = threading.RLock()

    #* --- Public API ---
    def save(self, username: str, password: str) -> SaveResult:
        """
        Persists the pair, preferring the keyring.

        :return: The location used and an optional non-fatal warning.
        :raises StoreAccessFailure: If neither location could be written.
        """
        creds = Credentials(username, password)
        if not creds.is_present:
            raise ValueError("username and password must both be non-empty")

        with self._lock:
            try:
                self._save_to_keyring(creds)
            except Exception as keyring_error:
                warning = keyring_warning(keyring_error)
                log.warning(f"Keyring save failed, falling back to file: {keyring_error}")
                try:
                    self._save_to_file(creds)
                except OSError as file_error:
                    raise StoreAccessFailure(
                        f"keyring unavailable ({keyring_error}) and fallback failed: {file_error}"
                    ) from file_error
                log.info(f"Credentials saved to fallback file {self.fallback_path()}")
                return SaveResult(StoreLocation.FILE, warning)

            # A stale fallback copy must not outlive a successful keyring save.
            try:
                self._delete_fallback_file()
            except OSError as e:
                log.warning(f"Could not remove stale credentials file: {e}")
            log.info("Credentials saved to the system keyring.")
            return SaveResult(StoreLocation.KEYRING)

    def load(self) -> LoadResult:
        """
        Retrieves the stored pair.

        :return: Username, password, the location found and an optional warning.
        :raises CredentialsNotFound: If neither location holds a usable record.
        :raises StoreAccessFailure: If the fallback file exists but cannot be read.
        """
        with self._lock:
            warning = ""
            try:
                creds = self._load_from_keyring()
                return LoadResult(creds.username, creds.password, StoreLocation.KEYRING)
            except _NotStored:
                pass
            except Exception as keyring_error:
                warning = keyring_warning(keyring_error)
                log.warning(f"Keyring read failed: {keyring_error}")

            try:
                creds = self._load_from_file()
            except _NotStored:
                raise CredentialsNotFound(warning=warning) from None
            except (OSError, ValueError) as file_error:
                raise StoreAccessFailure(
                    f"failed to read credentials file: {file_error}", warning=warning
                ) from file_error
            return LoadResult(creds.username, creds.password, StoreLocation.FILE, warning)

    def delete(self) -> None:
        """
        Removes the pair from both locations. Missing entries are not errors.

        :raises StoreAccessFailure: With both causes combined if removal failed.
        """
        with self._lock:
            errors = []
            try:
                self._keyring.delete_password(self.service, self.account)
            except PasswordDeleteError:
                pass
            except Exception as e:
                errors.append(f"keyring delete failed: {e}")

            try:
                self._delete_fallback_file()
            except OSError as e:
                errors.append(f"fallback delete failed: {e}")

            if errors:
                raise StoreAccessFailure("; ".join(errors))
            log.info("Stored credentials deleted.")

    def has_credentials(self) -> bool:
        try:
            self.load()
        except (CredentialsNotFound, StoreAccessFailure):
            return False
        return True

    def fallback_path(self) -> Optional[Path]:
        """Returns the fallback file location, or None if it cannot be determined."""
        base_dir = self._config_dir or user_config_dir()
        if base_dir is None:
            return None
        return base_dir / config.CREDENTIALS_FILE_NAME

    #* --- Keyring ---
    def _save_to_keyring(self, creds: Credentials) -> None:
        self._keyring.set_password(self.service, self.account, creds.to_json())

    def _load_from_keyring(self) -> Credentials:
        data = self._keyring.get_password(self.service, self.account)
        if not data:
            raise _NotStored()
        creds = Credentials.from_json(data)
        if not creds.is_present:
            raise _NotStored()
        return creds

    #* --- Fallback file ---
    def _require_fallback_path(self) -> Path:
        path = self.fallback_path()
        if path is None:
            raise OSError(f"cannot determine a config directory (not even ~/{HOME_FALLBACK_DIR_NAME})")
        return path

    def _save_to_file(self, creds: Credentials) -> None:
        path = self._require_fallback_path()
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

        temp_path = path.with_suffix(".tmp")
        try:
            fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(creds.to_json())
            os.chmod(temp_path, 0o600)
            os.replace(temp_path, path)
        finally:
            temp_path.unlink(missing_ok=True)
        os.chmod(path, 0o600)

    def _load_from_file(self) -> Credentials:
        path = self.fallback_path()
        if path is None or not path.exists():
            raise _NotStored()

        data = path.read_text(encoding="utf-8")
        if not data.strip():
            raise _NotStored()

        creds = Credentials.from_json(data)
        if not creds.is_present:
            raise _NotStored()
        return creds

    def _delete_fallback_file(self) -> None:
        path = self.fallback_path()
        if path is not None:
            path.unlink(missing_ok=True)
