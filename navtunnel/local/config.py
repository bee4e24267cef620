import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import navtunnel.settings as default_settings

log = logging.getLogger(__name__)


class MergedSettings:
    """
    NavTunnel settings with user overrides applied.

    Precedence, lowest first:
    1. Base values from `settings.py`.
    2. Environment variables / `.env` (read by `settings.py` itself).
    3. `overrides.json` in the user config directory, only for keys listed in
       `MODIFIABLE_SETTINGS`.
    """

    def __init__(self, overrides_path: Optional[Path] = None) -> None:
        """
        :param overrides_path: Alternative overrides file, mainly for tests.
        """
        self._load_defaults()
        if overrides_path is not None:
            self.OVERRIDES_JSON_PATH = Path(overrides_path)
        self._load_overrides()

    def _load_defaults(self) -> None:
        for key in dir(default_settings):
            if key.isupper():
                setattr(self, key, getattr(default_settings, key))

    def _read_overrides_file(self) -> Dict[str, Any]:
        path = self.OVERRIDES_JSON_PATH
        if path is None or not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            log.error(f"Could not read overrides file '{path}': {e}")
            return {}
        if not isinstance(data, dict):
            log.error(f"Overrides file '{path}' must contain a JSON object. Ignoring.")
            return {}
        return data

    def _coerce(self, key: str, value: Any) -> Any:
        """Converts an override to the type of the default it replaces."""
        current = getattr(self, key)
        if isinstance(current, Path):
            return Path(value)
        if isinstance(current, int) and not isinstance(current, bool):
            return int(value)
        return value

    def _load_overrides(self) -> None:
        overrides = self._read_overrides_file()
        if not overrides:
            return

        log.info(f"Applying NavTunnel overrides from {self.OVERRIDES_JSON_PATH}")
        for key, value in overrides.items():
            if not hasattr(self, key):
                log.warning(f"Unknown setting '{key}' in overrides. Ignoring.")
                continue
            if key not in self.MODIFIABLE_SETTINGS:
                log.warning(f"Setting '{key}' cannot be overridden. Ignoring.")
                continue
            try:
                value = self._coerce(key, value)
            except (TypeError, ValueError):
                log.warning(f"Override '{key}' has invalid value {value!r}. Ignoring.")
                continue
            setattr(self, key, value)
            log.debug(f"Overridden setting: {key} = {value}")

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def save_overrides(self, changes: Dict[str, Any]) -> None:
        """
        Persists settings to the overrides file and applies them immediately.

        Keys outside `MODIFIABLE_SETTINGS` are dropped.

        :param changes: Setting names mapped to their new values.
        """
        accepted = {key: value for key, value in changes.items() if key in self.MODIFIABLE_SETTINGS}
        if not accepted:
            log.warning("None of the given settings can be overridden; nothing saved.")
            return

        path = self.OVERRIDES_JSON_PATH
        if path is None:
            log.error("No configuration directory available; overrides were not saved.")
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(accepted, indent=4), encoding="utf-8")
        except OSError as e:
            log.error(f"Could not write overrides file '{path}': {e}")
            return
        log.info(f"Settings overrides saved to {path}")

        for key, value in accepted.items():
            setattr(self, key, value)


# Shared instance for the rest of the package
effective_settings = MergedSettings()
