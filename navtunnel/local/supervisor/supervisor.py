import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from navtunnel import paths
from navtunnel.exceptions import (
    ConfigNotFound,
    ExecutableNotFound,
    PermissionElevationUnavailable,
    ProcessNotRunning,
    ProcessSpawnFailure,
    ProcessTerminationFailure,
)
from navtunnel.local.config import effective_settings
from navtunnel.local.supervisor import process_utils, shutdown
from navtunnel.local.supervisor.process import SessionProcess, StopResult
from navtunnel.local.supervisor.process_utils import ExitHandler, LineHandler

log = logging.getLogger(__name__)


class ProcessSupervisor:
    """
    Starts, feeds and stops one OpenVPN child on the current platform.

    Subclasses supply the platform specifics: where OpenVPN is usually
    installed, how to elevate the command and where per-user files live. The
    spawn, stream draining and graceful-then-forceful stop logic is shared.
    """

    name = "generic"
    executable_name = "openvpn"
    install_hint = "Install the OpenVPN client"

    def __init__(self, settings: Any = None) -> None:
        """
        :param settings: A settings object; defaults to the merged application settings.
        """
        self.settings = settings if settings is not None else effective_settings

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} platform={self.name}>"

    #* --- Executable Discovery ---
    def candidate_paths(self) -> List[str]:
        """Well-known install locations, most predictable first."""
        return []

    def find_executable(self) -> str:
        """
        Locates the OpenVPN executable.

        Fixed install locations are probed first, then the PATH.

        :return: The absolute path of the first match.
        :raises ExecutableNotFound: With an install hint when nothing matches.
        """
        for candidate in self.candidate_paths():
            if candidate and os.path.isfile(candidate):
                return candidate

        found = shutil.which(self.executable_name)
        if found:
            return found
        raise ExecutableNotFound("OpenVPN is not installed", hint=self.install_hint)

    def resolve_executable(self, executable_path: Optional[str] = None) -> str:
        """Validates an explicit executable path or falls back to discovery."""
        if executable_path is None:
            return self.find_executable()
        if os.path.isfile(executable_path):
            return str(executable_path)
        found = shutil.which(str(executable_path))
        if found:
            return found
        raise ExecutableNotFound(f"OpenVPN executable not found at '{executable_path}'", hint=self.install_hint)

    #* --- Command Construction ---
    def build_args(self, config_path: str, management_port: int) -> List[str]:
        """Returns the fixed OpenVPN argument vector for an interactive session."""
        return [
            "--config", str(config_path),
            "--management", self.settings.MANAGEMENT_HOST, str(management_port),
            "--management-query-passwords",
            "--management-hold",
            "--auth-retry", "interact",
            "--auth-nocache",
            "--verb", str(self.settings.OPENVPN_VERBOSITY),
        ]

    #* --- Privilege Elevation ---
    def requires_elevation(self) -> bool:
        """Creating the tunnel device needs administrative rights on every platform."""
        return True

    def is_elevated(self) -> bool:
        return process_utils.is_elevated()

    def elevate(self, path: str, args: List[str]) -> Tuple[str, List[str]]:
        """
        Wraps a command with the platform's elevation front-end.

        :raises PermissionElevationUnavailable: If the front-end is missing.
        """
        raise PermissionElevationUnavailable(f"No elevation mechanism for platform '{self.name}'")

    def signal_elevated(self, pid: int, signal_name: str) -> None:
        """Delivers a signal to a child owned by another (privileged) user."""
        raise ProcessTerminationFailure(f"Not permitted to send {signal_name} to PID {pid}")

    #* --- Paths ---
    def config_dir(self) -> Optional[Path]:
        return paths.user_config_dir(self.name)

    def default_config_path(self) -> Optional[Path]:
        """The location where the VPN profile is expected by default."""
        config_dir = self.config_dir()
        return config_dir / self.settings.DEFAULT_PROFILE_NAME if config_dir else None

    def log_dir(self) -> Optional[Path]:
        return paths.user_log_dir(self.name)

    #* --- Lifecycle ---
    def start(
        self,
        config_path: str,
        management_port: int,
        on_log_line: Optional[LineHandler],
        executable_path: Optional[str] = None,
        on_exit: Optional[ExitHandler] = None,
        prompt_markers: Sequence[str] = (),
    ) -> SessionProcess:
        """
        Spawns OpenVPN under elevated privileges and starts draining its output.

        :param config_path: The .ovpn profile.
        :param management_port: Port of the local management endpoint.
        :param on_log_line: Called as on_log_line(line, stream) for every output line.
        :param executable_path: Explicit OpenVPN binary; discovered when omitted.
        :param on_exit: Called once with the return code after the child exited
            and all of its output was delivered.
        :param prompt_markers: Substrings identifying prompts the child writes
            without a trailing newline.
        :return: The running process.
        :raises ExecutableNotFound: Before anything is spawned if OpenVPN is missing.
        :raises ConfigNotFound: If the profile does not exist.
        :raises PermissionElevationUnavailable: If elevation is impossible.
        :raises ProcessSpawnFailure: If the OS refused to start the process.
        """
        executable = self.resolve_executable(executable_path)
        if not os.path.isfile(config_path):
            raise ConfigNotFound(
                f"OpenVPN profile not found at '{config_path}'",
                hint=f"Place your profile at {self.default_config_path()}",
            )

        command_path, command_args = executable, self.build_args(config_path, management_port)
        if self.requires_elevation() and not self.is_elevated():
            command_path, command_args = self.elevate(command_path, command_args)
        command = [command_path] + list(command_args)

        log.info(f"Starting OpenVPN: {executable} (profile {config_path}, management port {management_port})")
        try:
            popen = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **process_utils.get_popen_creation_flags(),
            )
        except OSError as e:
            log.error(f"Failed to start OpenVPN: {e}")
            raise ProcessSpawnFailure(f"Failed to start OpenVPN: {e}") from e

        process = SessionProcess(popen, command)

        def _drained(returncode: Optional[int]) -> None:
            process._drained.set()
            if on_exit is not None:
                try:
                    on_exit(returncode)
                except Exception as e:
                    log.error(f"Error in exit handler: {e}", exc_info=True)

        readers = process_utils.start_output_readers(
            popen, on_log_line, self.settings.READ_CHUNK_SIZE, prompt_markers
        )
        waiter = process_utils.start_exit_waiter(
            popen, readers, process._confirm_exit, _drained, self.settings.THREAD_JOIN_TIMEOUT
        )
        process._threads = readers + [waiter]
        log.info(f"OpenVPN started successfully with PID: {process.pid}")
        return process

    def write_line(self, process: SessionProcess, line: str) -> None:
        """
        Writes one line to the child's standard input.

        :raises ProcessNotRunning: If the child exited or its input is closed.
        """
        stdin = process._popen.stdin
        with process._stdin_lock:
            if not process.is_running or stdin is None or stdin.closed:
                raise ProcessNotRunning("OpenVPN is not running")
            try:
                stdin.write((line + "\n").encode("utf-8"))
                stdin.flush()
            except (BrokenPipeError, ValueError, OSError) as e:
                raise ProcessNotRunning(f"Could not write to OpenVPN: {e}") from e

    def stop(self, process: SessionProcess) -> StopResult:
        """
        Stops the child: polite termination, grace period, then forced kill.

        :return: Whether a forced kill was needed.
        :raises ProcessTerminationFailure: If the forced kill failed; the process
            is still marked not running.
        """
        result = shutdown.graceful_shutdown_sequence(
            self,
            process,
            timeout=self.settings.GRACEFUL_SHUTDOWN_TIMEOUT,
            join_timeout=self.settings.THREAD_JOIN_TIMEOUT,
        )
        log.info(f"OpenVPN (PID {process.pid}) stop sequence completed (forced={result.forced}).")
        return result
