"""SnapSecure tamper-evident audit trail and firewall core."""

__version__ = "0.1.0"
