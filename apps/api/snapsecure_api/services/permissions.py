"""Device permission requests with security checks."""

import logging
from dataclasses import dataclass
from typing import Optional

from snapsecure_api.audit.service import AuditTrailService
from snapsecure_api.errors import NotFoundError
from snapsecure_api.intrusion.heuristics import IntrusionHeuristics, ThreatAction

logger = logging.getLogger(__name__)

PERMISSION_TYPES = ("CAMERA", "MICROPHONE", "GALLERY")
PERMISSION_REQUEST = "permission_request"


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: Optional[str] = None


def _validate_type(permission_type: str) -> str:
    if permission_type not in PERMISSION_TYPES:
        raise ValueError(f"Unknown permission type: {permission_type}")
    return permission_type


class PermissionService:
    """Grants and revokes CAMERA / MICROPHONE / GALLERY access."""

    def __init__(
        self,
        users,
        firewall,
        heuristics: IntrusionHeuristics,
        audit: AuditTrailService,
        min_security_score: int = 50,
        max_flagged_requests: int = 3,
    ):
        """Initialize permission service."""
        self.users = users
        self.firewall = firewall
        self.heuristics = heuristics
        self.audit = audit
        self.min_security_score = min_security_score
        self.max_flagged_requests = max_flagged_requests

    def check(self, user_id: int, permission_type: str) -> PermissionDecision:
        """Security score and recent-activity checks. Raises NotFoundError for unknown users."""
        _validate_type(permission_type)
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")

        if user.security_score < self.min_security_score:
            self.audit.record(
                user_id,
                "permission_denied",
                f"Permission {permission_type} denied due to low security score: {user.security_score}",
                "medium",
            )
            return PermissionDecision(allowed=False, reason="Security score too low")

        if self.firewall.suspicious_count(user_id, PERMISSION_REQUEST) > self.max_flagged_requests:
            return PermissionDecision(allowed=False, reason="Too many recent permission requests")

        return PermissionDecision(allowed=True)

    def request(
        self,
        user_id: int,
        permission_type: str,
        reason: str,
        metadata: Optional[dict] = None,
        ip_address: Optional[str] = None,
    ) -> PermissionDecision:
        """Grant a permission if the user passes the security checks."""
        _validate_type(permission_type)
        self.heuristics.note_activity(user_id)
        assessment = self.heuristics.evaluate(user_id, PERMISSION_REQUEST, metadata)
        if assessment.threat:
            self.firewall.record_suspicious_activity(
                user_id,
                PERMISSION_REQUEST,
                f"Flagged {permission_type} request: {', '.join(assessment.signals)}",
                ip_address,
            )
        if assessment.action in (ThreatAction.REQUIRE_VERIFICATION, ThreatAction.BLOCK_USER):
            return PermissionDecision(allowed=False, reason="Additional verification required")

        decision = self.check(user_id, permission_type)
        if not decision.allowed:
            return decision

        self.users.set_permission(
            user_id,
            permission_type,
            True,
            security_context={"reason": reason, "signals": list(assessment.signals)},
        )
        self.audit.record(
            user_id,
            "permission_granted",
            f"{permission_type} permission granted: {reason}",
            "low",
            ip_address=ip_address,
        )
        return PermissionDecision(allowed=True)

    def revoke(self, user_id: int, permission_type: str) -> str:
        """Revoke a permission. Returns the ledger hash."""
        _validate_type(permission_type)
        self.users.set_permission(user_id, permission_type, False)
        return self.audit.record(
            user_id,
            "permission_revoked",
            f"{permission_type} permission revoked",
            "medium",
        )

    def list_for_user(self, user_id: int) -> list[dict]:
        return [
            {
                "permission_type": p.permission_type,
                "is_granted": p.is_granted,
                "granted_at": p.granted_at.isoformat() if p.granted_at else None,
                "revoked_at": p.revoked_at.isoformat() if p.revoked_at else None,
            }
            for p in self.users.get_permissions(user_id)
        ]
