"""
This module contains the default configuration settings for NavTunnel.
It defines paths, supervisor timings, protocol markers and logging options.
Values can be overridden through environment variables (a `.env` file is
honoured) and, for keys in MODIFIABLE_SETTINGS, through `overrides.json`.
"""

import os
from dotenv import load_dotenv

from navtunnel import paths

# Load environment variables from .env file
load_dotenv()

#* --- Application Identity ---
APP_NAME = paths.APP_DIR_NAME

#* --- Core Paths ---
CONFIG_DIR = paths.user_config_dir()
LOG_DIR = paths.user_log_dir()
OVERRIDES_JSON_PATH = (CONFIG_DIR / "overrides.json") if CONFIG_DIR else None

#* --- Credential Store ---
# Identifiers of the OS keyring entry. Read-only constants, not session state.
KEYRING_SERVICE = os.getenv("NAVTUNNEL_KEYRING_SERVICE", APP_NAME)
KEYRING_ACCOUNT = os.getenv("NAVTUNNEL_KEYRING_ACCOUNT", "credentials")
CREDENTIALS_FILE_NAME = "credentials.json"

#* --- OpenVPN Invocation ---
MANAGEMENT_HOST = "127.0.0.1"
MANAGEMENT_PORT = int(os.getenv("NAVTUNNEL_MANAGEMENT_PORT", "7505"))
OPENVPN_VERBOSITY = 4
DEFAULT_PROFILE_NAME = "prey-prod.ovpn"

#* --- Supervisor Settings ---
GRACEFUL_SHUTDOWN_TIMEOUT = 5   # seconds before force-killing
THREAD_JOIN_TIMEOUT = 2         # seconds to wait for reader threads after exit
READ_CHUNK_SIZE = 1024          # bytes per pipe read

#* --- Logging ---
CONSOLE_LOG_LEVEL = os.getenv("NAVTUNNEL_LOG_LEVEL", "INFO").upper()
LOG_FILE_NAME = "navtunnel.log"
LOG_FILE_MAX_BYTES = 1024 * 1024
LOG_FILE_BACKUP_COUNT = 3
LOG_BUFFER_CAPACITY = 30

#* --- Protocol Markers ---
# None means the built-in marker table in navtunnel.session.protocol is used.
# An override is a mapping with the same keys as MarkerTable.to_dict().
PROTOCOL_MARKERS = None

#* --- MODIFIABLE SETTINGS (Changeable through overrides.json) ---
MODIFIABLE_SETTINGS = {
    "MANAGEMENT_PORT",
    "GRACEFUL_SHUTDOWN_TIMEOUT",
    "LOG_BUFFER_CAPACITY",
    "CONSOLE_LOG_LEVEL",
    "PROTOCOL_MARKERS",
    "KEYRING_SERVICE",
    "KEYRING_ACCOUNT",
}
