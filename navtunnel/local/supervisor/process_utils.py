import codecs
import logging
import os
import subprocess
import sys
import threading
from typing import IO, Any, Callable, Dict, List, Optional, Sequence

from navtunnel.log.buffer import redact_line

log = logging.getLogger(__name__)

LineHandler = Callable[[str, str], None]
ExitHandler = Callable[[Optional[int]], None]

#* --- Privilege Detection ---
def is_elevated() -> bool:
    """Returns True when the current process already has administrative rights."""
    if sys.platform == "win32":
        try:
            import ctypes
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


#* --- Process Creation ---
def get_popen_creation_flags() -> Dict[str, Any]:
    """
    Returns platform-specific keyword arguments for subprocess.Popen.

    On Windows the child gets its own process group and no console window. On
    POSIX it is placed in a new session so terminal signals aimed at the GUI do
    not reach it directly.

    :return dict: A dictionary of keyword arguments for Popen.
    """
    if sys.platform == "win32":
        return {
            "creationflags": subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.CREATE_NO_WINDOW
        }
    return {"start_new_session": True}


#* --- Output Readers ---
def _emit_line(proc_logger: logging.Logger, raw: str, stream: str, line_handler: Optional[LineHandler]) -> None:
    line = raw.rstrip("\r").strip()
    if not line:
        return
    proc_logger.debug(redact_line(line))
    if line_handler is None:
        return
    try:
        line_handler(line, stream)
    except Exception as e:
        proc_logger.error(f"Error in line handler: {e}", exc_info=True)


def _is_prompt(partial: str, prompt_markers: Sequence[str]) -> bool:
    return any(marker and marker in partial for marker in prompt_markers)


def _read_pipe(
    pipe: IO[bytes],
    stream: str,
    line_handler: Optional[LineHandler],
    chunk_size: int,
    prompt_markers: Sequence[str] = (),
) -> None:
    """
    Target function for reader threads.

    Reads the pipe in chunks, splits on newlines and hands each line to the
    handler. Interactive prompts are written without a newline and the child
    blocks until they are answered, so a trailing partial line holding one of
    `prompt_markers` is flushed at once. Any other partial line waits for the
    rest of its bytes; chunk boundaries fall anywhere in a line.
    """
    proc_logger = logging.getLogger(f"proc.openvpn.{stream}")
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pending = ""
    read = getattr(pipe, "read1", pipe.read)
    try:
        while True:
            chunk = read(chunk_size)
            if not chunk:
                break
            pending += decoder.decode(chunk)
            *lines, pending = pending.split("\n")
            for line in lines:
                _emit_line(proc_logger, line, stream, line_handler)
            if pending and _is_prompt(pending, prompt_markers):
                _emit_line(proc_logger, pending, stream, line_handler)
                pending = ""
        pending += decoder.decode(b"", final=True)
        _emit_line(proc_logger, pending, stream, line_handler)
    except (OSError, ValueError) as e:
        proc_logger.debug(f"Pipe reader for {stream} stream exited: {e}")
    finally:
        try:
            pipe.close()
        except OSError:
            pass


def start_output_readers(
    popen: subprocess.Popen,
    line_handler: Optional[LineHandler],
    chunk_size: int,
    prompt_markers: Sequence[str] = (),
) -> List[threading.Thread]:
    """
    Starts one daemon thread per output stream of the child.

    Draining both pipes concurrently keeps the child from blocking on a full
    pipe buffer. Every line is tagged with the stream it came from.

    :param popen: The spawned child.
    :param line_handler: Called as handler(line, stream) for every line.
    :param chunk_size: Maximum bytes per read.
    :param prompt_markers: Substrings that mark a partial line as a prompt.
    :return: The started threads.
    """
    threads = []
    for stream, pipe in (("stdout", popen.stdout), ("stderr", popen.stderr)):
        if pipe is None:
            continue
        thread = threading.Thread(
            target=_read_pipe,
            args=(pipe, stream, line_handler, chunk_size, tuple(prompt_markers)),
            name=f"OpenVPN-{stream}-reader",
            daemon=True,
        )
        thread.start()
        threads.append(thread)
    return threads


def start_exit_waiter(
    popen: subprocess.Popen,
    readers: List[threading.Thread],
    on_confirmed_exit: Callable[[Optional[int]], None],
    on_drained: Callable[[Optional[int]], None],
    join_timeout: float,
) -> threading.Thread:
    """
    Starts the thread that waits on the child's exit.

    `on_confirmed_exit` runs as soon as the OS reports the exit. `on_drained`
    runs after the reader threads finished (or the join timed out), so every
    line the child produced is delivered before the exit notice.
    """
    def _wait() -> None:
        returncode = None
        try:
            returncode = popen.wait()
        except OSError as e:
            log.warning(f"Waiting on OpenVPN (PID {popen.pid}) failed: {e}")
        on_confirmed_exit(returncode)
        for reader in readers:
            reader.join(join_timeout)
        log.debug(f"OpenVPN (PID {popen.pid}) exited with code {returncode}.")
        on_drained(returncode)

    thread = threading.Thread(target=_wait, name="OpenVPN-exit-waiter", daemon=True)
    thread.start()
    return thread
