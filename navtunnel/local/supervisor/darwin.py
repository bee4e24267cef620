import os
import shutil
from typing import List, Tuple

from navtunnel.exceptions import PermissionElevationUnavailable
from navtunnel.local.supervisor.supervisor import ProcessSupervisor


class DarwinSupervisor(ProcessSupervisor):
    """
    macOS: OpenVPN from Homebrew or the Tunnelblick bundle, elevated with sudo.

    osascript's "with administrator privileges" only returns output once the
    command finishes, which would make the interactive handshake impossible, so
    sudo is used to keep the pipes attached.
    """

    name = "darwin"
    install_hint = "Install it with: brew install openvpn"
    elevation_helper = "sudo"

    def candidate_paths(self) -> List[str]:
        return [
            "/usr/local/opt/openvpn/sbin/openvpn",     # Homebrew (Intel)
            "/opt/homebrew/opt/openvpn/sbin/openvpn",  # Homebrew (Apple Silicon)
            "/usr/local/sbin/openvpn",
            "/usr/local/bin/openvpn",
            "/Applications/Tunnelblick.app/Contents/Resources/openvpn",
        ]

    def elevate(self, path: str, args: List[str]) -> Tuple[str, List[str]]:
        helper = shutil.which(self.elevation_helper)
        if helper is None:
            raise PermissionElevationUnavailable(
                "sudo is not available",
                hint="Run NavTunnel from an administrator account",
            )
        return helper, ["--", os.path.abspath(path)] + list(args)
