"""
Logging package.

`setup_logging` configures the process-wide handlers; `LogBuffer` keeps the
recent, redacted OpenVPN output for diagnostics display.
"""
from .buffer import LogBuffer, redact_line
from .setup import setup_logging

__all__ = ['LogBuffer', 'redact_line', 'setup_logging']
