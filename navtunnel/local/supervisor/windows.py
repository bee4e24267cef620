import os
from typing import List, Tuple

from navtunnel.exceptions import PermissionElevationUnavailable
from navtunnel.local.supervisor.supervisor import ProcessSupervisor

OPENVPN_DOWNLOAD_URL = "https://openvpn.net/community-downloads/"


class WindowsSupervisor(ProcessSupervisor):
    """
    Windows: OpenVPN community edition from Program Files.

    UAC elevation through ShellExecute cannot hand back the child's standard
    streams, so the session has to run from an already elevated process.
    """

    name = "windows"
    executable_name = "openvpn.exe"
    install_hint = f"Download and install it from {OPENVPN_DOWNLOAD_URL}"

    def candidate_paths(self) -> List[str]:
        candidates = [
            r"C:\Program Files\OpenVPN\bin\openvpn.exe",
            r"C:\Program Files (x86)\OpenVPN\bin\openvpn.exe",
        ]
        for env_var in ("ProgramFiles", "ProgramFiles(x86)"):
            base = os.getenv(env_var)
            if base:
                candidates.append(os.path.join(base, "OpenVPN", "bin", "openvpn.exe"))
        return candidates

    def elevate(self, path: str, args: List[str]) -> Tuple[str, List[str]]:
        if self.is_elevated():
            return path, list(args)
        raise PermissionElevationUnavailable(
            "OpenVPN needs Administrator rights and UAC cannot be used with an interactive session",
            hint="Restart NavTunnel with 'Run as administrator'",
        )
