import enum
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from navtunnel.exceptions import AuthenticationRejected, UnexpectedProcessExit

STAGE_PASSWORD = "password"
STAGE_OTP = "otp"


class EventKind(str, enum.Enum):
    LOG_LINE = "log_line"
    ASK_USERNAME = "ask_username"
    ASK_PASSWORD = "ask_password"
    ASK_OTP = "ask_otp"
    CONNECTED = "connected"
    AUTH_FAILED = "auth_failed"
    DISCONNECTED = "disconnected"
    FATAL = "fatal"


class SessionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    FAILED = "failed"
    DISCONNECTED = "disconnected"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.FAILED, SessionState.DISCONNECTED)

    @property
    def is_live(self) -> bool:
        """States in which the child process is expected to be running."""
        return self in (SessionState.CONNECTING, SessionState.AUTHENTICATING, SessionState.CONNECTED)


ALLOWED_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.IDLE: frozenset({
        SessionState.CONNECTING, SessionState.FAILED, SessionState.DISCONNECTED,
    }),
    SessionState.CONNECTING: frozenset({
        SessionState.AUTHENTICATING, SessionState.CONNECTED,
        SessionState.FAILED, SessionState.DISCONNECTED,
    }),
    SessionState.AUTHENTICATING: frozenset({
        SessionState.AUTHENTICATING, SessionState.CONNECTED,
        SessionState.FAILED, SessionState.DISCONNECTED,
    }),
    # A renegotiation may ask for credentials again while connected.
    SessionState.CONNECTED: frozenset({
        SessionState.AUTHENTICATING, SessionState.FAILED, SessionState.DISCONNECTED,
    }),
    SessionState.FAILED: frozenset(),
    SessionState.DISCONNECTED: frozenset(),
}


@dataclass(frozen=True)
class Event:
    """
    One normalized happening of a session.

    `stage` is set for AUTH_FAILED ("password" or "otp") and names the
    credential that has to be asked for again. `stream` is set for output
    derived events ("stdout" or "stderr").
    """
    kind: EventKind
    message: str = ""
    stage: Optional[str] = None
    stream: Optional[str] = None

    @property
    def is_prompt(self) -> bool:
        return self.kind in (EventKind.ASK_USERNAME, EventKind.ASK_PASSWORD, EventKind.ASK_OTP)

    def raise_for_failure(self) -> None:
        """Raises the matching exception for AUTH_FAILED and FATAL events."""
        if self.kind is EventKind.AUTH_FAILED:
            raise AuthenticationRejected(self.message, stage=self.stage or STAGE_PASSWORD)
        if self.kind is EventKind.FATAL:
            raise UnexpectedProcessExit(self.message)


# Session state an event moves the manager into, if any.
EVENT_TARGET_STATES: Dict[EventKind, SessionState] = {
    EventKind.ASK_USERNAME: SessionState.AUTHENTICATING,
    EventKind.ASK_PASSWORD: SessionState.AUTHENTICATING,
    EventKind.ASK_OTP: SessionState.AUTHENTICATING,
    EventKind.AUTH_FAILED: SessionState.AUTHENTICATING,
    EventKind.CONNECTED: SessionState.CONNECTED,
    EventKind.DISCONNECTED: SessionState.DISCONNECTED,
    EventKind.FATAL: SessionState.FAILED,
}

# Response field a prompt event asks for.
PROMPT_FIELDS: Dict[EventKind, str] = {
    EventKind.ASK_USERNAME: "username",
    EventKind.ASK_PASSWORD: STAGE_PASSWORD,
    EventKind.ASK_OTP: STAGE_OTP,
}
