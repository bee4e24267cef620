"""
Line classification for the OpenVPN interactive authentication dialogue.

OpenVPN run with `--auth-retry interact` writes its credential prompts and
status markers into otherwise unstructured log output. The vocabulary differs
between client versions, so it is kept as data in a MarkerTable that can be
overridden from the PROTOCOL_MARKERS setting instead of being hard-coded in
the classifier.
"""

import logging
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple

from navtunnel.session.events import STAGE_OTP, STAGE_PASSWORD, Event, EventKind

log = logging.getLogger(__name__)


class MarkerRule(NamedTuple):
    marker: str
    kind: EventKind
    stage: Optional[str] = None


@dataclass(frozen=True)
class MarkerTable:
    """
    Marker vocabulary and response formats of the child process.

    Matching is a case-sensitive substring test. Rules are checked in the
    order returned by `rules()`: authentication failures first (OTP specific
    before generic), then prompts, then connection status. The first match wins.
    """
    ask_username: Tuple[str, ...] = ("Enter Auth Username", "Need 'Auth' username")
    ask_password: Tuple[str, ...] = ("Enter Auth Password", "Need 'Auth' password")
    ask_otp: Tuple[str, ...] = ("CHALLENGE:", "Enter Challenge Response", "Need 'Static Challenge'")
    auth_failed_otp: Tuple[str, ...] = ("Verification Failed: 'Static Challenge'", "AUTH_FAILED,CRV1")
    auth_failed_password: Tuple[str, ...] = ("Verification Failed: 'Auth'", "AUTH_FAILED")
    connected: Tuple[str, ...] = ("Initialization Sequence Completed",)
    disconnected: Tuple[str, ...] = ("process exiting",)
    commands: Dict[str, str] = field(default_factory=lambda: {
        "username": 'username "{value}"',
        "password": 'password "{value}"',
        "otp": 'otp "{value}"',
    })

    def rules(self) -> List[MarkerRule]:
        ordered = (
            (self.auth_failed_otp, EventKind.AUTH_FAILED, STAGE_OTP),
            (self.auth_failed_password, EventKind.AUTH_FAILED, STAGE_PASSWORD),
            (self.ask_otp, EventKind.ASK_OTP, None),
            (self.ask_password, EventKind.ASK_PASSWORD, None),
            (self.ask_username, EventKind.ASK_USERNAME, None),
            (self.connected, EventKind.CONNECTED, None),
            (self.disconnected, EventKind.DISCONNECTED, None),
        )
        return [
            MarkerRule(marker, kind, stage)
            for markers, kind, stage in ordered
            for marker in markers
            if marker
        ]

    def prompt_markers(self) -> Tuple[str, ...]:
        """Markers of the prompts the child writes without a trailing newline."""
        return tuple(m for m in self.ask_username + self.ask_password + self.ask_otp if m)

    def format_command(self, field_name: str, value: str) -> str:
        """
        Renders the control command that answers a prompt.

        Backslashes and double quotes in the value are escaped so the value
        cannot terminate the quoted argument.
        """
        try:
            template = self.commands[field_name]
        except KeyError:
            raise ValueError(f"No command template for '{field_name}'") from None
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return template.format(value=escaped)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, tuple):
                data[key] = list(value)
        return data

    @classmethod
    def from_dict(cls, overrides: Optional[Mapping[str, Any]]) -> "MarkerTable":
        """
        Builds a table from the defaults plus the given overrides.

        Unknown keys are ignored with a warning. Marker lists replace the
        default list for that key; `commands` is merged key by key.
        """
        table = cls()
        if not overrides:
            return table

        known = {f.name for f in fields(cls)}
        changes: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in known:
                log.warning(f"Unknown protocol marker key '{key}'. Ignoring.")
                continue
            if key == "commands":
                changes[key] = {**table.commands, **dict(value)}
            elif isinstance(value, str):
                changes[key] = (value,)
            else:
                changes[key] = tuple(value)
        return replace(table, **changes)

    @classmethod
    def from_settings(cls, settings: Any) -> "MarkerTable":
        return cls.from_dict(getattr(settings, "PROTOCOL_MARKERS", None))


class ProtocolClassifier:
    """Turns single output lines into session events using a MarkerTable."""

    def __init__(self, table: Optional[MarkerTable] = None) -> None:
        self.table = table or MarkerTable()
        self._rules = self.table.rules()

    def match(self, line: str) -> Optional[MarkerRule]:
        for rule in self._rules:
            if rule.marker in line:
                return rule
        return None

    def classify(self, line: str, stream: Optional[str] = None) -> Event:
        """
        Classifies one line of child output.

        :param line: The output line.
        :param stream: The origin stream, carried onto the event.
        :return: A protocol event, or a LOG_LINE event when no marker matches.
        """
        rule = self.match(line)
        if rule is None:
            return Event(EventKind.LOG_LINE, line, stream=stream)
        return Event(rule.kind, line, stage=rule.stage, stream=stream)
