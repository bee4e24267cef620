import subprocess
import threading
from typing import List, NamedTuple, Optional

import psutil


class StopResult(NamedTuple):
    """Outcome of a stop sequence."""
    forced: bool = False
    already_stopped: bool = False


class SessionProcess:
    """
    An OpenVPN child owned by a ProcessSupervisor.

    Consumers only get read-only snapshots (`pid`, `is_running`, `returncode`).
    The running flag is cleared by the supervisor's exit waiter once the exit is
    confirmed, or by the stop sequence.
    """

    def __init__(self, popen: subprocess.Popen, command: List[str]) -> None:
        self._popen = popen
        self._handle: Optional[psutil.Process] = None
        try:
            # Bound to the PID's create time so a recycled PID is never signalled.
            self._handle = psutil.Process(popen.pid)
        except psutil.Error:
            pass
        self._pid = popen.pid
        self._command = list(command)
        self._running = True
        self._returncode: Optional[int] = None
        self._exited = threading.Event()
        self._drained = threading.Event()
        self._threads: List[threading.Thread] = []
        self._state_lock = threading.Lock()
        self._stdin_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<SessionProcess pid={self._pid} running={self.is_running}>"

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._running

    @property
    def returncode(self) -> Optional[int]:
        with self._state_lock:
            return self._returncode

    @property
    def command(self) -> List[str]:
        return list(self._command)

    def wait_for_exit(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the OS reports the exit. Returns False on timeout."""
        return self._exited.wait(timeout)

    def wait_until_drained(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the exit was confirmed and both output readers finished."""
        return self._drained.wait(timeout)

    #* --- Supervisor-only mutation points ---
    def _confirm_exit(self, returncode: Optional[int]) -> None:
        with self._state_lock:
            self._running = False
            if returncode is not None:
                self._returncode = returncode
        self._exited.set()

    def _mark_stopped(self) -> None:
        with self._state_lock:
            self._running = False
