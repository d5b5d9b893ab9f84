"""Prometheus metrics."""

from prometheus_client import Counter, Gauge, Histogram

# Ledger metrics
ledger_appends = Counter(
    "snapsecure_ledger_appends_total",
    "Total ledger appends",
    ["tx_type"],
)

ledger_append_duration = Histogram(
    "snapsecure_ledger_append_duration_seconds",
    "Ledger append duration",
)

ledger_block_number = Gauge(
    "snapsecure_ledger_block_number",
    "Current ledger block number",
)

integrity_failures = Counter(
    "snapsecure_integrity_failures_total",
    "Hash mismatches detected",
    ["source"],
)

# Audit metrics
audit_records = Counter(
    "snapsecure_audit_records_total",
    "Audit records written",
    ["risk_level"],
)

security_log_write_failures = Counter(
    "snapsecure_security_log_write_failures_total",
    "Security log writes that failed after the ledger write succeeded",
)

# Firewall metrics
firewall_denials = Counter(
    "snapsecure_firewall_denials_total",
    "Requests denied by the firewall",
    ["reason"],
)

blocked_ips = Gauge(
    "snapsecure_blocked_ips",
    "Currently blocked IP addresses",
)

# Intrusion metrics
intrusion_detections = Counter(
    "snapsecure_intrusion_detections_total",
    "Intrusion evaluations with at least one matched signal",
    ["level"],
)
