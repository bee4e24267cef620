"""
Per-user directory resolution for NavTunnel.

Each supported operating system keeps configuration and logs in its own
conventional location. These helpers are shared by the settings layer, the
credential store and the platform supervisors so that every component agrees
on where the application lives on disk.
"""

import os
import platform
from pathlib import Path
from typing import Optional

APP_DIR_NAME = "NavTunnel"
HOME_FALLBACK_DIR_NAME = ".navtunnel"


def current_system() -> str:
    """Returns the normalized OS name ('linux', 'darwin' or 'windows')."""
    return platform.system().lower()


def _home() -> Optional[Path]:
    try:
        return Path.home()
    except (RuntimeError, KeyError):
        return None


def user_config_dir(system: Optional[str] = None, app_name: str = APP_DIR_NAME) -> Optional[Path]:
    """
    Returns the per-user configuration directory for the application.

    Linux follows the XDG base directory layout, Windows uses %APPDATA% and
    macOS uses ~/Library/Application Support. When no platform directory can be
    determined the dot-directory in the user's home is used instead.

    :param system: The OS name; defaults to the running system.
    :param app_name: Directory name appended to the platform location.
    :return: The directory path, or None if not even a home directory exists.
    """
    system = system or current_system()
    override = os.getenv("NAVTUNNEL_CONFIG_DIR")
    if override:
        return Path(override)

    home = _home()
    if system == "windows":
        app_data = os.getenv("APPDATA")
        if app_data:
            return Path(app_data) / app_name
    elif system == "darwin":
        if home:
            return home / "Library" / "Application Support" / app_name
    else:
        config_home = os.getenv("XDG_CONFIG_HOME")
        if config_home:
            return Path(config_home) / app_name
        if home:
            return home / ".config" / app_name

    return home / HOME_FALLBACK_DIR_NAME if home else None


def user_log_dir(system: Optional[str] = None, app_name: str = APP_DIR_NAME) -> Optional[Path]:
    """Returns the per-user log directory for the application."""
    system = system or current_system()
    home = _home()
    if system == "windows":
        local_app_data = os.getenv("LOCALAPPDATA")
        if local_app_data:
            return Path(local_app_data) / app_name / "logs"
        if home:
            return home / "AppData" / "Local" / app_name / "logs"
    elif system == "darwin":
        if home:
            return home / "Library" / "Logs" / app_name
    else:
        cache_home = os.getenv("XDG_CACHE_HOME")
        if cache_home:
            return Path(cache_home) / app_name / "logs"
        if home:
            return home / ".cache" / app_name / "logs"
    return None
