"""Audit trail: domain events written through the ledger plus a readable log.

A record is two writes: the ledger entry (source of truth) and a
security log row that backlinks to it. They are not one transaction. If
the log write fails the ledger still holds the event, and ``reconcile``
rebuilds the row later.
"""

import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Optional

from snapsecure_api.errors import DependencyUnavailable, NotFoundError, SecurityLogWriteFailed
from snapsecure_api.ledger.service import HashChainLedger
from snapsecure_api.models import LedgerEntry, SecurityLog
from snapsecure_api.storage.repositories import SecurityLogRepository, UserRepository
from snapsecure_api.utils.metrics import audit_records, security_log_write_failures

logger = logging.getLogger(__name__)

SECURITY_AUDIT = "security_audit"
USER_REGISTRATION = "user_registration"
MESSAGE_SENT = "message_sent"


class RiskLevel(str, Enum):
    """Coarse severity attached to audit entries."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


ANOMALY_LEVELS = {RiskLevel.HIGH, RiskLevel.CRITICAL}


@dataclass
class ChainStats:
    """Read-only ledger aggregate."""

    total_entries: int
    current_block_number: int
    integrity_status: str
    security_score: int

    def to_dict(self) -> dict:
        return asdict(self)


def _user_id_from(related_entity_id: Optional[str]) -> Optional[int]:
    if related_entity_id and related_entity_id.isdigit():
        return int(related_entity_id)
    return None


class AuditTrailService:
    """Builds audit entries from domain events and writes them through the ledger."""

    def __init__(
        self,
        ledger: HashChainLedger,
        security_logs: SecurityLogRepository,
        users: UserRepository,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize audit trail and subscribe to ledger tamper events."""
        self.ledger = ledger
        self.security_logs = security_logs
        self.users = users
        self.crypto = ledger.crypto
        self._clock = clock
        ledger.add_tamper_listener(self.record_tamper)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def record(
        self,
        user_id: Optional[int],
        event_type: str,
        description: str,
        risk_level: str = "low",
        ip_address: Optional[str] = None,
    ) -> str:
        """Record a security event. Returns the ledger hash."""
        level = RiskLevel(risk_level)
        payload: dict[str, Any] = {
            "userId": user_id,
            "eventType": event_type,
            "description": description,
            "riskLevel": level.value,
            "timestamp": self._now_ms(),
        }
        if ip_address:
            payload["ipAddress"] = ip_address

        tx_hash = self.ledger.append(SECURITY_AUDIT, payload, related_entity_id=user_id)
        audit_records.labels(risk_level=level.value).inc()

        log = SecurityLog(
            user_id=user_id,
            event_type=event_type,
            event_description=description,
            ip_address=ip_address,
            risk_level=level.value,
            blockchain_hash=tx_hash,
            is_anomaly=level in ANOMALY_LEVELS,
        )
        try:
            # None means reconcile() already rebuilt this row
            self.security_logs.insert(log)
        except DependencyUnavailable as e:
            security_log_write_failures.inc()
            logger.error(
                "Security log write failed after ledger append",
                extra={"tx_hash": tx_hash, "event_type": event_type},
            )
            raise SecurityLogWriteFailed(
                f"Security log row for {tx_hash} not written; rebuild with reconcile()",
                tx_hash=tx_hash,
            ) from e

        if level in ANOMALY_LEVELS:
            logger.warning(
                f"Security event: {event_type}",
                extra={"user_id": user_id, "risk_level": level.value, "tx_hash": tx_hash},
            )
        return tx_hash

    def record_tamper(self, entry: LedgerEntry, event_type: str) -> Optional[SecurityLog]:
        """Write the critical log row for a tampered entry (no ledger append).

        Each (entry, event type) is reported once; later detections return None.
        """
        if event_type == "blockchain_tampering_detected":
            description = f"Transaction hash verification failed for {entry.tx_hash}"
        else:
            description = f"Chain integrity violation: {entry.tx_hash}"
        return self.security_logs.insert(
            SecurityLog(
                user_id=_user_id_from(entry.related_entity_id),
                event_type=event_type,
                event_description=description,
                risk_level=RiskLevel.CRITICAL.value,
                blockchain_hash=entry.tx_hash,
                is_anomaly=True,
            )
        )

    def register_user(self, user_id: int, user_data: dict) -> str:
        """Mint attribution keys for a new user and record the registration."""
        if self.users.get_by_id(user_id) is None:
            raise NotFoundError(f"User {user_id} not found")

        key_pair = self.crypto.generate_key_pair()
        payload = {
            "userId": user_id,
            "publicKey": key_pair["public_key"],
            "registrationData": user_data,
            "timestamp": self._now_ms(),
        }
        tx_hash = self.ledger.append(USER_REGISTRATION, payload, related_entity_id=user_id)

        self.users.update(
            user_id,
            public_key=key_pair["public_key"],
            private_key_encrypted=self.crypto.encrypt(
                key_pair["private_key"], self.crypto.master_key
            ),
        )
        return tx_hash

    def decrypt_private_key(self, encrypted_key: str) -> str:
        """Decrypt a stored private key with MASTER_ENCRYPTION_KEY."""
        return self.crypto.decrypt(encrypted_key, self.crypto.master_key)

    def record_message(
        self,
        message_id: str,
        sender_id: int,
        recipient_id: int,
        message_hash: str,
    ) -> str:
        """Record message integrity metadata."""
        payload = {
            "messageId": message_id,
            "senderId": sender_id,
            "recipientId": recipient_id,
            "messageHash": message_hash,
            "timestamp": self._now_ms(),
        }
        return self.ledger.append(MESSAGE_SENT, payload, related_entity_id=sender_id)

    def get_chain_stats(self) -> ChainStats:
        """Entry count, head block and latest integrity status."""
        confirmed = self.ledger.count_confirmed()
        return ChainStats(
            total_entries=confirmed,
            current_block_number=self.ledger.current_block_number,
            integrity_status=self.ledger.integrity_status,
            security_score=min(100, confirmed * 10),
        )

    def reconcile(self) -> int:
        """Rebuild security log rows missing for intact security_audit entries.

        Safe to run while requests are recording: the (hash, event type)
        unique constraint keeps one row per event.
        """
        linked = self.security_logs.linked_hashes()
        rebuilt = 0
        for entry in self.ledger.entries_of_type(SECURITY_AUDIT):
            if entry.tx_hash in linked:
                continue
            if not self.ledger.verify(entry.tx_hash):
                logger.warning(
                    "Skipping reconcile for tampered entry",
                    extra={"tx_hash": entry.tx_hash},
                )
                continue

            data = entry.payload["data"]
            level = RiskLevel(data["riskLevel"])
            row = self.security_logs.insert(
                SecurityLog(
                    user_id=data.get("userId"),
                    event_type=data["eventType"],
                    event_description=data["description"],
                    ip_address=data.get("ipAddress"),
                    risk_level=level.value,
                    blockchain_hash=entry.tx_hash,
                    is_anomaly=level in ANOMALY_LEVELS,
                )
            )
            # None: a concurrent record() wrote the row first
            if row is not None:
                rebuilt += 1

        if rebuilt:
            logger.info("Security log reconciled", extra={"rebuilt": rebuilt})
        return rebuilt
