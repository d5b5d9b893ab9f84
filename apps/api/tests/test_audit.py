"""Tests for the audit trail."""

from unittest.mock import patch

import pytest

from snapsecure_api.audit.service import SECURITY_AUDIT
from snapsecure_api.errors import DependencyUnavailable, NotFoundError, SecurityLogWriteFailed


def test_record_writes_ledger_and_log(container):
    audit = container.audit
    tx_hash = audit.record(42, "user_login", "User logged in", "low", ip_address="10.0.0.9")

    entry = container.ledger.get(tx_hash)
    assert entry.tx_type == SECURITY_AUDIT
    assert entry.related_entity_id == "42"
    assert entry.payload["data"] == {
        "userId": 42,
        "eventType": "user_login",
        "description": "User logged in",
        "riskLevel": "low",
        "timestamp": 1_700_000_000_000,
        "ipAddress": "10.0.0.9",
    }

    logs = audit.security_logs.list_for_hash(tx_hash)
    assert len(logs) == 1
    assert logs[0].user_id == 42
    assert logs[0].is_anomaly is False


@pytest.mark.parametrize(
    "risk_level,anomaly",
    [("low", False), ("medium", False), ("high", True), ("critical", True)],
)
def test_anomaly_flag_follows_risk_level(container, risk_level, anomaly):
    tx_hash = container.audit.record(None, "ping", "ping", risk_level)
    assert container.audit.security_logs.list_for_hash(tx_hash)[0].is_anomaly is anomaly


def test_unknown_risk_level_rejected(container):
    with pytest.raises(ValueError):
        container.audit.record(None, "ping", "ping", "severe")
    assert container.ledger.current_block_number == 0


def test_anonymous_event_has_no_user(container):
    tx_hash = container.audit.record(None, "failed_login_attempt", "Failed login", "low")
    assert container.ledger.get(tx_hash).related_entity_id is None
    assert container.audit.security_logs.list_for_hash(tx_hash)[0].user_id is None


def test_log_write_failure_keeps_ledger_entry_and_reconciles(container):
    audit = container.audit
    with patch.object(
        audit.security_logs, "insert", side_effect=DependencyUnavailable("database is locked")
    ):
        with pytest.raises(SecurityLogWriteFailed) as exc_info:
            audit.record(5, "permission_granted", "CAMERA granted", "high")

    tx_hash = exc_info.value.tx_hash
    assert container.ledger.get(tx_hash) is not None
    assert audit.security_logs.list_for_hash(tx_hash) == []

    assert audit.reconcile() == 1
    rebuilt = audit.security_logs.list_for_hash(tx_hash)
    assert len(rebuilt) == 1
    assert rebuilt[0].event_type == "permission_granted"
    assert rebuilt[0].is_anomaly is True

    # Nothing left to rebuild
    assert audit.reconcile() == 0


def test_register_user_mints_keys(container):
    user = container.users.create(
        username="bob", email="bob@example.com", password_hash="x", display_name="bob"
    )
    tx_hash = container.audit.register_user(user.id, {"username": "bob"})

    stored = container.users.get_by_id(user.id)
    assert stored.public_key
    private_key = container.audit.decrypt_private_key(stored.private_key_encrypted)
    assert container.crypto.hash(private_key) == stored.public_key

    entry = container.ledger.get(tx_hash)
    assert entry.tx_type == "user_registration"
    assert entry.payload["data"]["publicKey"] == stored.public_key
    assert private_key not in str(entry.payload)


def test_register_unknown_user_raises(container):
    with pytest.raises(NotFoundError):
        container.audit.register_user(999, {})
    assert container.ledger.current_block_number == 0


def test_record_message(container):
    tx_hash = container.audit.record_message("msg-1", 1, 2, "ab" * 32)
    entry = container.ledger.get(tx_hash)
    assert entry.tx_type == "message_sent"
    assert entry.payload["data"]["recipientId"] == 2


def test_chain_stats(container):
    stats = container.audit.get_chain_stats()
    assert stats.to_dict() == {
        "total_entries": 0,
        "current_block_number": 0,
        "integrity_status": "unverified",
        "security_score": 0,
    }

    for i in range(12):
        container.audit.record(None, "ping", f"ping {i}", "low")
    container.ledger.verify_all()

    stats = container.audit.get_chain_stats()
    assert stats.total_entries == 12
    assert stats.current_block_number == 12
    assert stats.integrity_status == "verified"
    assert stats.security_score == 100


def test_reconcile_racing_record_keeps_one_row(container):
    audit = container.audit
    real_insert = audit.security_logs.insert
    raced = []

    def insert_after_reconcile(log):
        # Reconcile runs between the ledger append and the log insert
        if not raced:
            raced.append(True)
            assert audit.reconcile() == 1
        return real_insert(log)

    with patch.object(audit.security_logs, "insert", side_effect=insert_after_reconcile):
        tx_hash = audit.record(3, "user_login", "User logged in", "low")

    assert len(audit.security_logs.list_for_hash(tx_hash)) == 1
    assert audit.reconcile() == 0
