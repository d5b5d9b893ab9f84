"""Hash-chained ledger models."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text, UniqueConstraint

from snapsecure_api.db.base import Base


class LedgerEntry(Base):
    """Append-only record of a security-relevant event."""

    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True)
    tx_hash = Column(String(64), nullable=False, unique=True, index=True)
    tx_type = Column(String(50), nullable=False, index=True)  # open set: user_registration, security_audit, ...
    related_entity_id = Column(String(255), nullable=True, index=True)  # weak reference, no FK
    payload = Column(JSON, nullable=False)
    previous_hash = Column(String(64), nullable=True)  # NULL for block 1
    block_number = Column(Integer, nullable=False, unique=True, index=True)
    gas_used = Column(Integer, nullable=True)  # cosmetic
    is_confirmed = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    confirmed_at = Column(DateTime, nullable=True)


class SecurityLog(Base):
    """Human-readable companion row for an audited event. Never mutated.

    At most one row per (ledger hash, event type).
    """

    __tablename__ = "security_logs"
    __table_args__ = (
        UniqueConstraint("blockchain_hash", "event_type", name="uq_security_log_hash_event"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    event_type = Column(String(50), nullable=False, index=True)
    event_description = Column(Text, nullable=False)
    ip_address = Column(String(45), nullable=True)
    risk_level = Column(String(20), default="low", nullable=False)  # low, medium, high, critical
    blockchain_hash = Column(String(64), nullable=True, index=True)
    is_anomaly = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
