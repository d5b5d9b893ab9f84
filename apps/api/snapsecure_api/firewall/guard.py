"""Firewall gate: IP blocklist, rate limiting, failed-attempt lockout, emergency lockdown.

Denials are returned as values so request handlers can answer the user
without treating them as failures. Storage errors raised while auditing
propagate unchanged.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Union

from snapsecure_api.audit.service import AuditTrailService
from snapsecure_api.firewall.state import FirewallState
from snapsecure_api.utils.metrics import blocked_ips, firewall_denials

logger = logging.getLogger(__name__)

Subject = Union[int, str]


class DenialReason(str, Enum):
    LOCKDOWN = "lockdown"
    IP_BLOCKED = "ip_blocked"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of the firewall gate."""

    allowed: bool
    reason: Optional[DenialReason] = None

    @property
    def user_message(self) -> str:
        """Generic message safe to show to end users."""
        if self.allowed:
            return "ok"
        if self.reason == DenialReason.RATE_LIMITED:
            return "Too many requests. Please try again later."
        return "Access denied"


ALLOW = AccessDecision(allowed=True)


class FirewallGuard:
    """Gatekeeper consulted before authentication or business logic."""

    def __init__(
        self,
        state: FirewallState,
        audit: AuditTrailService,
        rate_limit_window: float = 60.0,
        max_requests: int = 100,
        max_failed_attempts: int = 5,
        failed_attempt_ttl: float = 3600.0,
        suspicious_threshold: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize guard with thresholds."""
        self.state = state
        self.audit = audit
        self.rate_limit_window = rate_limit_window
        self.max_requests = max_requests
        self.max_failed_attempts = max_failed_attempts
        self.failed_attempt_ttl = failed_attempt_ttl
        self.suspicious_threshold = suspicious_threshold
        self._clock = clock

    @classmethod
    def from_settings(cls, state: FirewallState, audit: AuditTrailService, settings, clock=time.monotonic):
        """Build guard from application settings and seed the blocklist."""
        guard = cls(
            state,
            audit,
            rate_limit_window=settings.rate_limit_window_seconds,
            max_requests=settings.rate_limit_max_requests,
            max_failed_attempts=settings.max_failed_attempts,
            failed_attempt_ttl=settings.failed_attempt_ttl_seconds,
            suspicious_threshold=settings.suspicious_threshold,
            clock=clock,
        )
        guard.seed(settings.firewall_seed_blocked_ips)
        return guard

    def seed(self, ips: Iterable[str]) -> None:
        """Preload known-bad IPs without auditing (configuration, not an event)."""
        for ip in ips:
            self.state.add_blocked(ip)
        blocked_ips.set(self.state.blocked_count())
        logger.info("Firewall initialized", extra={"blocked_ips": self.state.blocked_count()})

    def is_blocked(self, ip: str) -> bool:
        """Check if IP address is blocked."""
        return self.state.is_blocked(ip)

    def block(self, ip: str, reason: str, user_id: Optional[int] = None) -> str:
        """Block ip (idempotent) and audit at high risk. Returns the ledger hash."""
        newly_blocked = self.state.add_blocked(ip)
        blocked_ips.set(self.state.blocked_count())
        logger.warning(
            f"IP {ip} blocked: {reason}",
            extra={"ip": ip, "user_id": user_id, "already_blocked": not newly_blocked},
        )
        return self.audit.record(
            user_id,
            "ip_blocked",
            f"IP {ip} blocked: {reason}",
            "high",
            ip_address=ip,
        )

    def check_rate_limit(self, identifier: str, ip: str) -> bool:
        """Count a request against (identifier, ip). False once the window is full.

        Windows reset on expiry rather than sliding, so a burst straddling
        a window boundary can reach twice the limit.
        """
        allowed, count = self.state.hit_window(
            (identifier, ip), self._clock(), self.rate_limit_window, self.max_requests
        )
        if not allowed:
            firewall_denials.labels(reason=DenialReason.RATE_LIMITED.value).inc()
            self.record_suspicious_activity(
                identifier,
                "rate_limit_exceeded",
                f"Rate limit exceeded: {count} requests",
                ip,
            )
        return allowed

    def record_failed_attempt(self, identifier: str, ip: str) -> bool:
        """Count a failed authentication. Returns True when this attempt blocked the IP."""
        attempts = self.state.increment_failed((identifier, ip), self._clock())
        if attempts >= self.max_failed_attempts:
            self.block(ip, f"{self.max_failed_attempts} failed login attempts for {identifier}")
            return True

        self.audit.record(
            None,
            "failed_login_attempt",
            f"Failed login attempt {attempts}/{self.max_failed_attempts} for {identifier}",
            "medium" if attempts > 2 else "low",
            ip_address=ip,
        )
        return False

    def clear_failed_attempts(self, identifier: str, ip: str) -> None:
        """Reset the failed-attempt counter after a successful authentication."""
        self.state.clear_failed((identifier, ip))

    def failed_attempts(self, identifier: str, ip: str) -> int:
        return self.state.failed_count((identifier, ip))

    def record_suspicious_activity(
        self,
        subject: Subject,
        activity_type: str,
        description: str,
        ip: Optional[str] = None,
    ) -> int:
        """Escalate the (subject, activity) counter; blocks ip past the threshold."""
        count = self.state.increment_suspicious((str(subject), activity_type))
        if count > self.suspicious_threshold:
            risk_level = "critical"
        elif count > 5:
            risk_level = "high"
        else:
            risk_level = "medium"

        self.audit.record(
            subject if isinstance(subject, int) else None,
            "suspicious_activity",
            f"{activity_type}: {description} (occurrence: {count})",
            risk_level,
            ip_address=ip,
        )

        if count > self.suspicious_threshold and ip:
            self.block(ip, f"Suspicious activity threshold exceeded: {activity_type}")
        return count

    def suspicious_count(self, subject: Subject, activity_type: str) -> int:
        return self.state.suspicious_count((str(subject), activity_type))

    def check_access(self, identifier: str, ip: str) -> AccessDecision:
        """Lockdown, then IP block, then rate limit."""
        if self.is_locked_down:
            firewall_denials.labels(reason=DenialReason.LOCKDOWN.value).inc()
            return AccessDecision(allowed=False, reason=DenialReason.LOCKDOWN)
        if self.is_blocked(ip):
            firewall_denials.labels(reason=DenialReason.IP_BLOCKED.value).inc()
            return AccessDecision(allowed=False, reason=DenialReason.IP_BLOCKED)
        if not self.check_rate_limit(identifier, ip):
            return AccessDecision(allowed=False, reason=DenialReason.RATE_LIMITED)
        return ALLOW

    def cleanup(self) -> dict:
        """Sweep expired rate windows and failed attempts older than the TTL."""
        windows, failed = self.state.sweep(self._clock(), self.failed_attempt_ttl)
        logger.info(
            "Security data cleanup completed",
            extra={"rate_windows_removed": windows, "failed_attempts_removed": failed},
        )
        return {"rate_windows_removed": windows, "failed_attempts_removed": failed}

    @property
    def is_locked_down(self) -> bool:
        return self.state.lockdown_reason() is not None

    def emergency_lockdown(self, reason: str) -> str:
        """Deny all gated traffic until lift_lockdown().

        The flag lives in the firewall state, so with the Redis backend it
        reaches every worker and survives restarts.
        """
        self.state.set_lockdown(reason)
        logger.critical("Emergency security lockdown activated", extra={"reason": reason})
        return self.audit.record(
            None,
            "emergency_lockdown",
            f"Emergency lockdown activated: {reason}",
            "critical",
        )

    def lift_lockdown(self) -> Optional[str]:
        """End a lockdown. Returns the ledger hash, or None if none was active."""
        reason = self.state.clear_lockdown()
        if reason is None:
            return None
        logger.warning("Emergency security lockdown lifted", extra={"reason": reason})
        return self.audit.record(
            None,
            "lockdown_lifted",
            f"Emergency lockdown lifted (was: {reason})",
            "high",
        )

    def dashboard(self) -> dict:
        """Counters for the security dashboard."""
        stats = self.audit.get_chain_stats()
        suspicious = self.state.suspicious_items()
        return {
            "blocked_ips": self.state.blocked_count(),
            "total_security_events": stats.total_entries,
            "critical_alerts": sum(1 for _, count in suspicious if count > self.suspicious_threshold),
            "system_health": min(100, stats.security_score),
            "integrity_status": stats.integrity_status,
            "lockdown": self.is_locked_down,
            "recent_threats": [
                {"activity": f"{subject}:{activity}", "count": count}
                for (subject, activity), count in suspicious[-10:]
            ],
        }
