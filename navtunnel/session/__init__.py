"""
The Session package.

SessionManager owns one supervised OpenVPN process, turns its output into
Events through the ProtocolClassifier and tracks the SessionState.
"""
from .events import Event, EventKind, SessionState, STAGE_OTP, STAGE_PASSWORD
from .protocol import MarkerRule, MarkerTable, ProtocolClassifier
from .manager import SessionManager

__all__ = [
    'Event', 'EventKind', 'SessionState', 'STAGE_OTP', 'STAGE_PASSWORD',
    'MarkerRule', 'MarkerTable', 'ProtocolClassifier',
    'SessionManager',
]
