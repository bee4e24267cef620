import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

from navtunnel.exceptions import PermissionElevationUnavailable, ProcessTerminationFailure
from navtunnel.local.supervisor.supervisor import ProcessSupervisor

log = logging.getLogger(__name__)


class LinuxSupervisor(ProcessSupervisor):
    """Linux: OpenVPN from the distribution packages, elevated through polkit's pkexec."""

    name = "linux"
    install_hint = "Install it with: sudo apt install openvpn"
    elevation_helper = "pkexec"
    elevation_hint = "Install it with: sudo apt install policykit-1"

    def candidate_paths(self) -> List[str]:
        return [
            "/usr/sbin/openvpn",
            "/usr/bin/openvpn",
            "/usr/local/sbin/openvpn",
            "/usr/local/bin/openvpn",
        ]

    def elevate(self, path: str, args: List[str]) -> Tuple[str, List[str]]:
        """pkexec needs the absolute program path as its first argument."""
        helper = shutil.which(self.elevation_helper)
        if helper is None:
            raise PermissionElevationUnavailable("pkexec is not available", hint=self.elevation_hint)
        return helper, [os.path.abspath(path)] + list(args)

    def signal_elevated(self, pid: int, signal_name: str) -> None:
        helper = shutil.which(self.elevation_helper)
        kill = shutil.which("kill") or "/bin/kill"
        if helper is None:
            raise ProcessTerminationFailure(f"Cannot send {signal_name} to PID {pid}: pkexec is not available")

        signal = signal_name[3:] if signal_name.startswith("SIG") else signal_name
        try:
            result = subprocess.run(
                [helper, kill, "-s", signal, str(pid)],
                capture_output=True,
                text=True,
                timeout=self.settings.GRACEFUL_SHUTDOWN_TIMEOUT * 6,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProcessTerminationFailure(f"Elevated {signal_name} to PID {pid} failed: {e}") from e
        if result.returncode != 0:
            raise ProcessTerminationFailure(
                f"Elevated {signal_name} to PID {pid} failed: {result.stderr.strip() or result.returncode}"
            )
        log.debug(f"Delivered {signal_name} to PID {pid} through pkexec.")

    def default_config_path(self) -> Optional[Path]:
        # The profile lives in ~/NavTunnel on Linux, next to the user's documents.
        try:
            return Path.home() / self.settings.APP_NAME / self.settings.DEFAULT_PROFILE_NAME
        except RuntimeError:
            return None
