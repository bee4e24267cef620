"""
Custom exceptions for NavTunnel.

All exceptions inherit from NavTunnelError so callers can catch every
package-specific failure with a single except clause. Errors that the user can
act on carry a `hint` with remediation text (e.g. install instructions).
"""

from typing import Optional


class NavTunnelError(Exception):
    """Base exception for all NavTunnel errors."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint

    def __str__(self) -> str:
        message = super().__str__()
        if self.hint:
            return f"{message}. {self.hint}"
        return message


class UnsupportedPlatform(NavTunnelError):
    """The host operating system has no supervisor implementation."""


class NotFound(NavTunnelError):
    """A required resource (executable, profile, credentials) is missing."""


class ExecutableNotFound(NotFound):
    """The OpenVPN client executable could not be located."""


class ConfigNotFound(NotFound):
    """The OpenVPN profile passed to the supervisor does not exist."""


class CredentialsNotFound(NotFound):
    """
    No usable credentials are stored.

    `warning` carries a non-fatal secure-store problem observed while looking.
    """

    def __init__(self, message: str = "credentials not found", warning: str = ""):
        super().__init__(message)
        self.warning = warning


class PermissionElevationUnavailable(NavTunnelError):
    """The platform's privilege elevation helper is missing or unusable."""


class ProcessSpawnFailure(NavTunnelError):
    """The OS refused to start the client process."""


class ProcessNotRunning(NavTunnelError):
    """An operation needed a live client process but it has exited."""


class ProcessTerminationFailure(NavTunnelError):
    """The forced kill of the client process could not be delivered."""


class AuthenticationRejected(NavTunnelError):
    """The client reported that the submitted credential was rejected."""

    def __init__(self, message: str, stage: str):
        super().__init__(message)
        self.stage = stage


class UnexpectedProcessExit(NavTunnelError):
    """The client process vanished while the session was still live."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class StoreAccessFailure(NavTunnelError):
    """Neither the OS keyring nor the fallback file could be used."""

    def __init__(self, message: str, warning: str = ""):
        super().__init__(message)
        self.warning = warning


class SessionError(NavTunnelError):
    """A session manager operation was called in the wrong state."""
