import logging
from typing import TYPE_CHECKING, Callable

import psutil

from navtunnel.exceptions import ProcessTerminationFailure
from navtunnel.local.supervisor.process import SessionProcess, StopResult

if TYPE_CHECKING:
    from .supervisor import ProcessSupervisor

log = logging.getLogger(__name__)


def _deliver(
    supervisor: "ProcessSupervisor",
    process: SessionProcess,
    action: Callable[[psutil.Process], None],
    signal_name: str,
) -> bool:
    """
    Sends a signal to the child.

    :return: False if the process turned out to be gone already.
    :raises ProcessTerminationFailure: If the signal could not be delivered.
    """
    handle = process._handle
    if handle is None:
        raise ProcessTerminationFailure(f"No handle for OpenVPN (PID {process.pid}) to send {signal_name}")
    try:
        action(handle)
        return True
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # The child runs as root under the elevation helper.
        log.debug(f"{signal_name} to PID {process.pid} denied; using the elevated helper.")
        supervisor.signal_elevated(process.pid, signal_name)
        return True
    except (psutil.Error, OSError) as e:
        raise ProcessTerminationFailure(f"Failed to send {signal_name} to OpenVPN (PID {process.pid}): {e}") from e


def _release(process: SessionProcess, join_timeout: float) -> None:
    """Closes the pipes held by the supervisor and joins the worker threads."""
    popen = process._popen
    with process._stdin_lock:
        if popen.stdin and not popen.stdin.closed:
            try:
                popen.stdin.close()
            except OSError:
                pass
    for thread in process._threads:
        thread.join(join_timeout)
        if thread.is_alive():
            log.warning(f"Thread '{thread.name}' did not finish within {join_timeout}s; abandoning it.")


def graceful_shutdown_sequence(
    supervisor: "ProcessSupervisor",
    process: SessionProcess,
    timeout: float,
    join_timeout: float,
) -> StopResult:
    """
    Terminates the child politely, then forcefully after `timeout` seconds.

    On return the process is always marked as not running, even when the forced
    kill reported an error, since after a kill the process is assumed gone.

    :param supervisor: The owning supervisor (provides the elevated signal hook).
    :param process: The child to stop.
    :param timeout: Grace period before the forced kill.
    :param join_timeout: How long to wait for each worker thread afterwards.
    :return: Whether a forced kill was needed.
    :raises ProcessTerminationFailure: If the forced kill could not be delivered.
    """
    if not process.is_running:
        return StopResult(forced=False, already_stopped=True)

    try:
        try:
            delivered = _deliver(supervisor, process, lambda p: p.terminate(), "SIGTERM")
        except ProcessTerminationFailure as e:
            log.warning(f"{e}. Waiting for the grace period before forcing.")
            delivered = True

        if not delivered:
            log.info(f"OpenVPN (PID {process.pid}) was already gone.")
            return StopResult(forced=False, already_stopped=True)

        log.debug(f"Sent SIGTERM to OpenVPN (PID {process.pid}); waiting up to {timeout}s.")
        if process.wait_for_exit(timeout):
            log.info(f"OpenVPN (PID {process.pid}) exited gracefully.")
            return StopResult(forced=False)

        log.warning(f"OpenVPN (PID {process.pid}) did not terminate within {timeout}s. Forcing shutdown...")
        try:
            _deliver(supervisor, process, lambda p: p.kill(), "SIGKILL")
        finally:
            process.wait_for_exit(join_timeout)
        return StopResult(forced=True)
    finally:
        process._mark_stopped()
        _release(process, join_timeout)
