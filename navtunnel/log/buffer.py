import threading
from collections import deque
from typing import Deque, List, Optional

from navtunnel.local.config import effective_settings as config

REDACTION_MASK = "********"
REDACTED_MARKER = "[REDACTED]"
_CONTROL_COMMAND_PREFIXES = ("username ", "password ")


def redact_line(line: str) -> str:
    """
    Removes secrets from a line before it is retained anywhere.

    Control commands such as `password "Auth" hunter2` keep only their first
    two tokens, the rest is masked. Independently, any line mentioning
    "password" in any case is replaced wholesale.

    :param line: The raw line.
    :return: The redacted line.
    """
    if line.startswith(_CONTROL_COMMAND_PREFIXES):
        parts = line.split()
        if len(parts) >= 2:
            line = f"{parts[0]} {parts[1]} {REDACTION_MASK}"

    if "password" in line.lower():
        return REDACTED_MARKER

    return line


class LogBuffer:
    """
    A bounded, thread-safe ring of recent output lines.

    Lines are redacted on the way in; the raw text is never stored. Once the
    capacity is reached the oldest line is evicted.
    """

    def __init__(self, capacity: Optional[int] = None):
        """
        :param capacity: Maximum number of lines kept. Defaults to LOG_BUFFER_CAPACITY.
        """
        capacity = config.LOG_BUFFER_CAPACITY if capacity is None else capacity
        if capacity <= 0:
            raise ValueError(f"LogBuffer capacity must be positive, got {capacity}")
        self._lines: Deque[str] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._lines.maxlen

    def add(self, line: str) -> None:
        """Appends a redacted copy of the line, evicting the oldest if full."""
        sanitized = redact_line(line)
        with self._lock:
            self._lines.append(sanitized)

    def get_all(self) -> List[str]:
        """Returns an independent snapshot of the current lines."""
        with self._lock:
            return list(self._lines)

    def get_text(self) -> str:
        return "\n".join(self.get_all())

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()

    def count(self) -> int:
        with self._lock:
            return len(self._lines)

    def __len__(self) -> int:
        return self.count()
