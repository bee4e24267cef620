"""
Local package for NavTunnel.

Holds everything that touches the local machine: the merged configuration,
the credential store and the OpenVPN process supervisor.
"""
