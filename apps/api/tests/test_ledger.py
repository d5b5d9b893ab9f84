"""Tests for the hash-chained ledger."""

import threading

import pytest

from snapsecure_api.errors import (
    DependencyUnavailable,
    IntegrityError,
    LedgerWriteUnconfirmed,
    NotFoundError,
)
from snapsecure_api.ledger.service import INTEGRITY_VIOLATION, TAMPER_DETECTED, HashChainLedger
from snapsecure_api.models import LedgerEntry, SecurityLog
from snapsecure_api.storage.repositories import LedgerRepository


def _tamper(session_factory, tx_hash, **data_changes):
    db = session_factory()
    try:
        entry = db.query(LedgerEntry).filter(LedgerEntry.tx_hash == tx_hash).one()
        payload = dict(entry.payload)
        payload["data"] = {**payload["data"], **data_changes}
        entry.payload = payload
        db.commit()
    finally:
        db.close()


def _security_logs(session_factory, tx_hash):
    db = session_factory()
    try:
        return db.query(SecurityLog).filter(SecurityLog.blockchain_hash == tx_hash).all()
    finally:
        db.close()


def test_append_chains_entries(container):
    ledger = container.ledger
    first = ledger.append("security_audit", {"eventType": "a"}, related_entity_id=7)
    second = ledger.append("security_audit", {"eventType": "b"})

    one, two = ledger.get(first), ledger.get(second)
    assert one.block_number == 1 and two.block_number == 2
    assert one.previous_hash is None
    assert two.previous_hash == first
    assert two.payload["previousHash"] == first
    assert one.related_entity_id == "7"
    assert ledger.current_block_number == 2


def test_hash_matches_canonical_envelope(container):
    ledger = container.ledger
    tx_hash = ledger.append("security_audit", {"b": 2, "a": 1})
    entry = ledger.get(tx_hash)
    assert set(entry.payload) == {
        "txType", "blockNumber", "previousHash", "relatedEntityId", "data", "timestamp"
    }
    assert container.crypto.hash_payload(entry.payload) == tx_hash
    assert entry.payload["timestamp"] == 1_700_000_000_000


def test_float_payload_rejected_before_write(container):
    with pytest.raises(ValueError):
        container.ledger.append("security_audit", {"score": 1.5})
    assert container.ledger.current_block_number == 0


def test_get_unknown_returns_none(container):
    assert container.ledger.get("0" * 64) is None


def test_verify_unknown_raises(container):
    with pytest.raises(NotFoundError):
        container.ledger.verify("0" * 64)


def test_verify_is_idempotent_for_intact_entries(container, session_factory):
    tx_hash = container.ledger.append("security_audit", {"eventType": "a"})
    assert container.ledger.verify(tx_hash) is True
    assert container.ledger.verify(tx_hash) is True
    assert _security_logs(session_factory, tx_hash) == []


def test_verify_detects_tampering_and_logs_without_appending(container, session_factory):
    ledger = container.ledger
    tx_hash = ledger.append("security_audit", {"eventType": "a", "userId": 1})
    _tamper(session_factory, tx_hash, eventType="edited")

    assert ledger.verify(tx_hash) is False
    logs = _security_logs(session_factory, tx_hash)
    assert len(logs) == 1
    assert logs[0].event_type == TAMPER_DETECTED
    assert logs[0].risk_level == "critical"
    assert logs[0].is_anomaly is True
    # Tamper reporting never grows the ledger
    assert ledger.current_block_number == 1


def test_verify_unconfirmed_entry_is_false(container, session_factory):
    tx_hash = container.ledger.append("security_audit", {"eventType": "a"})
    db = session_factory()
    db.query(LedgerEntry).filter(LedgerEntry.tx_hash == tx_hash).update({"is_confirmed": False})
    db.commit()
    db.close()
    assert container.ledger.verify(tx_hash) is False


def test_verify_all_valid_chain(container):
    for i in range(5):
        container.ledger.append("security_audit", {"n": i})
    report = container.ledger.verify_all()
    assert report.valid
    assert report.entries_checked == 5
    assert container.ledger.integrity_status == "verified"


def test_verify_all_reports_corruption(container, session_factory):
    hashes = [container.ledger.append("security_audit", {"n": i}) for i in range(3)]
    _tamper(session_factory, hashes[1], n=99)

    report = container.ledger.verify_all()
    assert not report.valid
    assert report.corrupted_hashes == [hashes[1]]
    assert report.broken_links == []
    assert container.ledger.integrity_status == "corrupted"
    assert _security_logs(session_factory, hashes[1])[0].event_type == INTEGRITY_VIOLATION


def test_verify_all_reports_deleted_entry(container, session_factory):
    hashes = [container.ledger.append("security_audit", {"n": i}) for i in range(3)]
    db = session_factory()
    db.query(LedgerEntry).filter(LedgerEntry.tx_hash == hashes[1]).delete()
    db.commit()
    db.close()

    report = container.ledger.verify_all()
    assert not report.valid
    assert report.corrupted_hashes == []
    assert report.broken_links == [hashes[2]]


def test_concurrent_appends_get_unique_contiguous_blocks(container):
    ledger = container.ledger
    errors = []

    def worker(n):
        try:
            for i in range(10):
                ledger.append("security_audit", {"worker": n, "i": i})
        except Exception as e:  # surfaced below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    blocks = [e.block_number for e in container.ledger.repository.list_all()]
    assert blocks == list(range(1, 41))
    assert ledger.verify_all().valid


def test_head_resumes_from_storage(container, session_factory):
    container.ledger.append("security_audit", {"n": 1})
    last = container.ledger.append("security_audit", {"n": 2})

    fresh = HashChainLedger(LedgerRepository(session_factory), container.crypto)
    assert fresh.current_block_number == 2
    tx_hash = fresh.append("security_audit", {"n": 3})
    assert fresh.get(tx_hash).previous_hash == last


class _FlakyRepository(LedgerRepository):
    """Insert lands but reports failure, or fails outright."""

    def __init__(self, session_factory, lands):
        super().__init__(session_factory)
        self.lands = lands

    def insert(self, entry):
        if self.lands:
            super().insert(entry)
        raise DependencyUnavailable("connection reset")


def test_ambiguous_insert_that_landed_is_success(container, session_factory):
    ledger = HashChainLedger(_FlakyRepository(session_factory, lands=True), container.crypto)
    tx_hash = ledger.append("security_audit", {"n": 1})
    assert ledger.get(tx_hash).block_number == 1
    assert ledger.current_block_number == 1


def test_failed_insert_does_not_consume_block(container, session_factory):
    ledger = HashChainLedger(_FlakyRepository(session_factory, lands=False), container.crypto)
    with pytest.raises(DependencyUnavailable):
        ledger.append("security_audit", {"n": 1})
    assert ledger.current_block_number == 0


class _CorruptingRepository(LedgerRepository):
    def get_by_hash(self, tx_hash):
        entry = super().get_by_hash(tx_hash)
        if entry is not None:
            entry.payload = {**entry.payload, "data": {"forged": True}}
        return entry


def test_append_raises_when_stored_entry_does_not_verify(container, session_factory):
    ledger = HashChainLedger(_CorruptingRepository(session_factory), container.crypto)
    with pytest.raises(IntegrityError) as exc_info:
        ledger.append("security_audit", {"n": 1})
    assert exc_info.value.tx_hash is not None
    # The block stays taken
    assert ledger.current_block_number == 1


class _UnreadableAfterInsert(LedgerRepository):
    """Insert commits, then the read confirming it times out once."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.armed = True
        self.fail_next_read = False

    def insert(self, entry):
        stored = super().insert(entry)
        if self.armed:
            self.armed = False
            self.fail_next_read = True
        return stored

    def get_by_hash(self, tx_hash):
        if self.fail_next_read:
            self.fail_next_read = False
            raise DependencyUnavailable("read timeout")
        return super().get_by_hash(tx_hash)


def test_unconfirmed_append_carries_hash_for_lookup_before_retry(container, session_factory):
    repository = _UnreadableAfterInsert(session_factory)
    ledger = HashChainLedger(repository, container.crypto)

    with pytest.raises(LedgerWriteUnconfirmed) as exc_info:
        ledger.append("security_audit", {"eventType": "a"})
    tx_hash = exc_info.value.tx_hash

    # The entry is found, so the caller does not append it again
    assert ledger.get(tx_hash).block_number == 1
    assert len(repository.list_all()) == 1

    second = ledger.append("security_audit", {"eventType": "b"})
    assert ledger.get(second).previous_hash == tx_hash


class _PartitionedAfterInsert(LedgerRepository):
    """Insert lands but reports failure; hash lookups fail until healed."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.partitioned = False

    def insert(self, entry):
        super().insert(entry)
        self.partitioned = True
        raise DependencyUnavailable("connection reset")

    def get_by_hash(self, tx_hash):
        if self.partitioned:
            raise DependencyUnavailable("connection reset")
        return super().get_by_hash(tx_hash)


def test_failed_recheck_raises_unconfirmed_with_hash(container, session_factory):
    repository = _PartitionedAfterInsert(session_factory)
    ledger = HashChainLedger(repository, container.crypto)

    with pytest.raises(LedgerWriteUnconfirmed) as exc_info:
        ledger.append("security_audit", {"eventType": "a"})

    repository.partitioned = False
    assert ledger.get(exc_info.value.tx_hash) is not None
    # Head is reloaded from storage
    assert ledger.current_block_number == 1


def test_known_corruption_is_reported_once(container, session_factory):
    tx_hash = container.ledger.append("security_audit", {"n": 1})
    _tamper(session_factory, tx_hash, n=2)

    container.ledger.verify_all()
    container.ledger.verify_all()
    container.ledger.verify(tx_hash)
    container.ledger.verify(tx_hash)

    event_types = sorted(log.event_type for log in _security_logs(session_factory, tx_hash))
    assert event_types == [INTEGRITY_VIOLATION, TAMPER_DETECTED]
