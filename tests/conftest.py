"""
Pytest configuration and shared fixtures.

This module contains fixtures shared across the test modules: isolated
settings, in-memory keyring backends, a scripted supervisor that runs Python
child processes in place of OpenVPN and a fake supervisor for driving the
session manager without any process at all.
"""

import os
import signal
import sys
import textwrap
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from navtunnel.local.config import MergedSettings
from navtunnel.local.supervisor import LinuxSupervisor, StopResult


class MemoryKeyring(KeyringBackend):
    """A keyring backend that keeps entries in a dict."""

    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.entries: Dict[Tuple[str, str], str] = {}

    def get_password(self, service, username):
        return self.entries.get((service, username))

    def set_password(self, service, username, password):
        self.entries[(service, username)] = password

    def delete_password(self, service, username):
        try:
            del self.entries[(service, username)]
        except KeyError:
            raise PasswordDeleteError("Password not found") from None


class BrokenKeyring(KeyringBackend):
    """A keyring backend whose every operation fails, like a locked vault."""

    priority = 1

    def get_password(self, service, username):
        raise KeyringError("secret service unavailable")

    def set_password(self, service, username, password):
        raise KeyringError("secret service unavailable")

    def delete_password(self, service, username):
        raise KeyringError("secret service unavailable")


@pytest.fixture
def settings(tmp_path) -> MergedSettings:
    """
    Provide settings isolated from the user's overrides file.

    Timeouts are shortened so stop sequences finish quickly.
    """
    merged = MergedSettings(overrides_path=tmp_path / "overrides.json")
    merged.GRACEFUL_SHUTDOWN_TIMEOUT = 1
    merged.THREAD_JOIN_TIMEOUT = 2
    merged.LOG_BUFFER_CAPACITY = 30
    merged.PROTOCOL_MARKERS = None
    return merged


@pytest.fixture
def config_dir(tmp_path) -> Path:
    """Provide an empty per-test config directory."""
    path = tmp_path / "config"
    path.mkdir()
    return path


@pytest.fixture
def memory_keyring() -> MemoryKeyring:
    return MemoryKeyring()


@pytest.fixture
def broken_keyring() -> BrokenKeyring:
    return BrokenKeyring()


@pytest.fixture
def profile(tmp_path) -> Path:
    """Provide an existing (dummy) OpenVPN profile."""
    path = tmp_path / "profile.ovpn"
    path.write_text("client\ndev tun\n")
    return path


#* --- Scripted child processes ---
class ScriptSupervisor(LinuxSupervisor):
    """
    Runs a Python script through the real supervisor machinery.

    The OpenVPN argument vector is replaced by the script and elevation is
    skipped, everything else (spawn, readers, exit waiter, stop) is real.
    """

    def __init__(self, script: Path, settings=None) -> None:
        super().__init__(settings=settings)
        self.script = script
        self.elevated_signals: List[Tuple[int, str]] = []

    def build_args(self, config_path, management_port):
        return ["-u", str(self.script)]

    def requires_elevation(self) -> bool:
        return False

    def signal_elevated(self, pid, signal_name):
        self.elevated_signals.append((pid, signal_name))
        os.kill(pid, getattr(signal, signal_name))


@pytest.fixture
def write_script(tmp_path):
    """Return a factory that writes a child script and returns its path."""
    def _write(name: str, body: str) -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(body))
        return path
    return _write


@pytest.fixture
def script_supervisor(settings):
    """Return a factory building a ScriptSupervisor for a script path."""
    def _build(script: Path) -> ScriptSupervisor:
        return ScriptSupervisor(script, settings=settings)
    return _build


@pytest.fixture
def python_executable() -> str:
    return sys.executable


#* --- Fake supervisor ---
class FakeProcess:
    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.is_running = True
        self.returncode: Optional[int] = None


class FakeSupervisor:
    """
    Stands in for a ProcessSupervisor in session manager tests.

    Tests push child output with `emit()` and the exit notice with `exit()`;
    both go through the same callbacks the real reader threads use.
    """

    def __init__(self, start_error: Optional[Exception] = None) -> None:
        self.start_error = start_error
        self.process: Optional[FakeProcess] = None
        self.written: List[str] = []
        self.stop_calls = 0
        self.started_with: Optional[dict] = None
        self._on_log_line = None
        self._on_exit = None
        self._lock = threading.Lock()

    def start(
        self, config_path, management_port, on_log_line, executable_path=None, on_exit=None, prompt_markers=()
    ):
        if self.start_error is not None:
            raise self.start_error
        self.started_with = {
            "config_path": config_path,
            "management_port": management_port,
            "executable_path": executable_path,
            "prompt_markers": tuple(prompt_markers),
        }
        self._on_log_line = on_log_line
        self._on_exit = on_exit
        self.process = FakeProcess()
        return self.process

    def write_line(self, process, line):
        with self._lock:
            self.written.append(line)

    def stop(self, process):
        self.stop_calls += 1
        if not process.is_running:
            return StopResult(forced=False, already_stopped=True)
        process.is_running = False
        self.exit(0)
        return StopResult(forced=False)

    def emit(self, *lines: str, stream: str = "stdout") -> None:
        for line in lines:
            self._on_log_line(line, stream)

    def exit(self, returncode: Optional[int] = 1) -> None:
        if self.process is not None:
            self.process.is_running = False
            self.process.returncode = returncode
        self._on_exit(returncode)


@pytest.fixture
def fake_supervisor() -> FakeSupervisor:
    return FakeSupervisor()
