"""Registration, login and session tokens."""

import json
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from passlib.context import CryptContext

from snapsecure_api.audit.service import AuditTrailService
from snapsecure_api.errors import InvalidCiphertext
from snapsecure_api.firewall.guard import DenialReason, FirewallGuard
from snapsecure_api.intrusion.heuristics import IntrusionHeuristics, ThreatAction
from snapsecure_api.models import User
from snapsecure_api.security.crypto import CryptoPrimitives
from snapsecure_api.services.permissions import PERMISSION_TYPES
from snapsecure_api.storage.repositories import UserRepository

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid username or password"


def make_password_context(rounds: int = 12) -> CryptContext:
    """bcrypt context for password hashes."""
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


@dataclass
class AuthResult:
    """Outcome of register/login. ``message`` is safe to show to the user."""

    success: bool
    message: str
    user: Optional[dict] = None
    token: Optional[str] = None
    verification_required: bool = False
    signals: list[str] = field(default_factory=list)


def _public_user(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "display_name": user.display_name,
        "security_score": user.security_score,
    }


class AccountService:
    """Login and registration flows gated by the firewall and audited."""

    def __init__(
        self,
        users: UserRepository,
        firewall: FirewallGuard,
        heuristics: IntrusionHeuristics,
        audit: AuditTrailService,
        crypto: CryptoPrimitives,
        pwd_context: Optional[CryptContext] = None,
        token_max_age: int = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize account service."""
        self.users = users
        self.firewall = firewall
        self.heuristics = heuristics
        self.audit = audit
        self.crypto = crypto
        self.pwd_context = pwd_context or make_password_context()
        self.token_max_age = token_max_age
        self._clock = clock

    def register(self, username: str, email: str, password: str, ip_address: str) -> AuthResult:
        """Create a user, record it on the ledger and seed its permissions."""
        decision = self.firewall.check_access("register", ip_address)
        if not decision.allowed:
            return AuthResult(success=False, message=decision.user_message)

        if self.users.get_by_username(username):
            self.firewall.record_suspicious_activity(
                username,
                "duplicate_registration",
                "Attempted to register existing username",
                ip_address,
            )
            return AuthResult(success=False, message="Username already exists")

        if self.users.get_by_email(email):
            return AuthResult(success=False, message="Email already exists")

        user = self.users.create(
            username=username,
            email=email,
            password_hash=self.pwd_context.hash(password),
            display_name=username,
            security_score=100,
            is_verified=False,
        )
        tx_hash = self.audit.register_user(
            user.id,
            {
                "username": username,
                "email": email,
                "registrationTime": datetime.utcnow().isoformat(),
            },
        )
        for permission_type in PERMISSION_TYPES:
            self.users.set_permission(user.id, permission_type, False)

        logger.info("User registered", extra={"user_id": user.id, "tx_hash": tx_hash})
        return AuthResult(
            success=True,
            message="Registration successful",
            user=_public_user(user),
            token=self.issue_token(user.id),
        )

    def login(self, username: str, password: str, ip_address: str) -> AuthResult:
        """Authenticate with firewall gating, lockout and intrusion checks."""
        decision = self.firewall.check_access("login", ip_address)
        if not decision.allowed:
            if decision.reason == DenialReason.IP_BLOCKED:
                return AuthResult(success=False, message="Access denied from this IP address")
            return AuthResult(success=False, message=decision.user_message)

        user = self.users.get_by_username(username)
        if user is None:
            # Equalize timing with the wrong-password path
            self.pwd_context.dummy_verify()
            valid = False
        else:
            valid = self.pwd_context.verify(password, user.password_hash)

        if not valid:
            blocked = self.firewall.record_failed_attempt(username, ip_address)
            if blocked:
                return AuthResult(
                    success=False,
                    message="Account temporarily locked due to suspicious activity",
                )
            return AuthResult(success=False, message=INVALID_CREDENTIALS)

        self.firewall.clear_failed_attempts(username, ip_address)

        self.heuristics.note_activity(user.id)
        assessment = self.heuristics.evaluate(
            user.id,
            "login_attempt",
            {"ipAddress": ip_address, "timestamp": int(self._clock() * 1000)},
        )
        if assessment.action == ThreatAction.BLOCK_USER:
            self.firewall.block(
                ip_address,
                f"Intrusion heuristics: {', '.join(assessment.signals)}",
                user.id,
            )
            return AuthResult(
                success=False,
                message="Account temporarily suspended for security reasons",
            )

        self.users.update(user.id, last_active=datetime.utcnow())
        self.audit.record(
            user.id,
            "user_login",
            f"User {username} logged in successfully",
            "low",
            ip_address=ip_address,
        )
        return AuthResult(
            success=True,
            message="Login successful",
            user=_public_user(user),
            token=self.issue_token(user.id),
            verification_required=assessment.action == ThreatAction.REQUIRE_VERIFICATION,
            signals=list(assessment.signals),
        )

    def logout(self, user_id: int) -> str:
        """Record a logout."""
        return self.audit.record(user_id, "user_logout", "User logged out", "low")

    def issue_token(self, user_id: int) -> str:
        """Encrypted session token bound to user_id."""
        token_data = {
            "userId": user_id,
            "issuedAt": int(self._clock() * 1000),
            "nonce": secrets.token_hex(8),
        }
        return self.crypto.encrypt(json.dumps(token_data))

    def validate_token(self, token: str) -> Optional[int]:
        """Return the user id for a valid, unexpired token, else None."""
        try:
            token_data = json.loads(self.crypto.decrypt(token))
        except (InvalidCiphertext, json.JSONDecodeError):
            return None

        user_id = token_data.get("userId") if isinstance(token_data, dict) else None
        issued_at = token_data.get("issuedAt") if isinstance(token_data, dict) else None
        if not isinstance(user_id, int) or not isinstance(issued_at, int):
            return None

        age_ms = int(self._clock() * 1000) - issued_at
        if age_ms < 0 or age_ms >= self.token_max_age * 1000:
            return None
        return user_id
