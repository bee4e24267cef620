import functools
import logging
from typing import Any, Dict, Optional, Type

from navtunnel import paths
from navtunnel.exceptions import UnsupportedPlatform
from navtunnel.local.supervisor.darwin import DarwinSupervisor
from navtunnel.local.supervisor.linux import LinuxSupervisor
from navtunnel.local.supervisor.supervisor import ProcessSupervisor
from navtunnel.local.supervisor.windows import WindowsSupervisor

log = logging.getLogger(__name__)

SUPERVISORS: Dict[str, Type[ProcessSupervisor]] = {
    "linux": LinuxSupervisor,
    "darwin": DarwinSupervisor,
    "windows": WindowsSupervisor,
}


@functools.lru_cache(maxsize=None)
def supervisor_class_for(system: str) -> Type[ProcessSupervisor]:
    """
    Maps an OS name to its supervisor class. The choice is made once per OS name.

    :raises UnsupportedPlatform: For operating systems without an implementation.
    """
    try:
        supervisor_cls = SUPERVISORS[system.lower()]
    except KeyError:
        raise UnsupportedPlatform(f"Unsupported platform: {system}") from None
    log.debug(f"Selected {supervisor_cls.__name__} for platform '{system}'.")
    return supervisor_cls


def create_supervisor(system: Optional[str] = None, settings: Any = None) -> ProcessSupervisor:
    """Returns a new supervisor for the given OS name, defaulting to the host OS."""
    return supervisor_class_for(system or paths.current_system())(settings)
