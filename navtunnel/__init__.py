"""
NavTunnel: supervision and interactive authentication for an OpenVPN client.

The package launches OpenVPN with elevated privileges, answers its credential
prompts on behalf of a front-end and reports the session as a stream of events.
"""

__version__ = "0.1.0"
