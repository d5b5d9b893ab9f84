"""SnapSecure background worker."""
