"""Explicit construction of the long-lived security services.

One container per process, built at startup and passed to request
handlers and tasks.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import redis
from sqlalchemy.orm import sessionmaker

from snapsecure_api.audit.service import AuditTrailService
from snapsecure_api.firewall.guard import FirewallGuard
from snapsecure_api.firewall.state import FirewallState, InMemoryFirewallState, RedisFirewallState
from snapsecure_api.intrusion.heuristics import IntrusionHeuristics
from snapsecure_api.ledger.service import HashChainLedger
from snapsecure_api.security.crypto import CryptoPrimitives
from snapsecure_api.services.accounts import AccountService, make_password_context
from snapsecure_api.services.permissions import PermissionService
from snapsecure_api.settings import Settings
from snapsecure_api.storage.repositories import LedgerRepository, SecurityLogRepository, UserRepository

logger = logging.getLogger(__name__)


@dataclass
class SecurityContainer:
    settings: Settings
    crypto: CryptoPrimitives
    users: UserRepository
    ledger: HashChainLedger
    audit: AuditTrailService
    firewall: FirewallGuard
    heuristics: IntrusionHeuristics
    accounts: AccountService
    permissions: PermissionService


def build_firewall_state(settings: Settings, redis_client: Optional[redis.Redis] = None) -> FirewallState:
    """Pick the firewall state backend from settings."""
    if settings.firewall_backend.lower() == "redis":
        client = redis_client or redis.from_url(settings.redis_url, decode_responses=True)
        return RedisFirewallState(client, failed_ttl=settings.failed_attempt_ttl_seconds)
    return InMemoryFirewallState()


def build_container(
    settings: Settings,
    session_factory: sessionmaker,
    redis_client: Optional[redis.Redis] = None,
    clock: Callable[[], float] = time.time,
    monotonic: Callable[[], float] = time.monotonic,
) -> SecurityContainer:
    """Validate settings and wire every service."""
    settings.validate_settings()

    crypto = CryptoPrimitives.from_settings(settings)
    users = UserRepository(session_factory)
    ledger = HashChainLedger(LedgerRepository(session_factory), crypto, clock=clock)
    audit = AuditTrailService(ledger, SecurityLogRepository(session_factory), users, clock=clock)

    state = build_firewall_state(settings, redis_client)
    firewall = FirewallGuard.from_settings(state, audit, settings, clock=monotonic)
    heuristics = IntrusionHeuristics(
        state,
        audit,
        rapid_activity_threshold=settings.rapid_activity_threshold,
        activity_window=settings.rate_limit_window_seconds,
        clock=monotonic,
    )
    accounts = AccountService(
        users,
        firewall,
        heuristics,
        audit,
        crypto,
        pwd_context=make_password_context(settings.bcrypt_rounds),
        token_max_age=settings.token_max_age_seconds,
        clock=clock,
    )
    permissions = PermissionService(
        users,
        firewall,
        heuristics,
        audit,
        min_security_score=settings.min_security_score,
        max_flagged_requests=settings.max_permission_requests,
    )
    logger.info(
        "Security services initialized",
        extra={"firewall_backend": settings.firewall_backend, "environment": settings.environment},
    )
    return SecurityContainer(
        settings=settings,
        crypto=crypto,
        users=users,
        ledger=ledger,
        audit=audit,
        firewall=firewall,
        heuristics=heuristics,
        accounts=accounts,
        permissions=permissions,
    )
