"""Bastion — failed-logon detection and firewall auto-remediation for Windows Server."""

__version__ = "1.0.0"
