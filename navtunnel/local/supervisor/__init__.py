"""
The Supervisor package.
Manages the lifecycle of the OpenVPN child process.

The shared ProcessSupervisor handles spawning, output draining and the
graceful-then-forceful stop sequence; one subclass per operating system adds
executable discovery, privilege elevation and per-user paths. The concrete
class is picked by `create_supervisor` from the host OS.
"""
from .process import SessionProcess, StopResult
from .supervisor import ProcessSupervisor
from .linux import LinuxSupervisor
from .darwin import DarwinSupervisor
from .windows import WindowsSupervisor
from .factory import create_supervisor, supervisor_class_for

__all__ = [
    'ProcessSupervisor', 'SessionProcess', 'StopResult',
    'LinuxSupervisor', 'DarwinSupervisor', 'WindowsSupervisor',
    'create_supervisor', 'supervisor_class_for',
]
