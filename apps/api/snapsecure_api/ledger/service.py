"""Hash-chained append-only ledger with tamper detection.

One writer, no peers, no consensus: every entry stores a canonical
envelope and ``tx_hash = sha256(canonical(envelope))``. The envelope
embeds the previous entry's hash and the block number, so deleting,
reordering or editing an entry is visible on re-verification.
"""

import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from snapsecure_api.errors import (
    DependencyUnavailable,
    IntegrityError,
    LedgerWriteUnconfirmed,
    NotFoundError,
)
from snapsecure_api.models import LedgerEntry
from snapsecure_api.security.crypto import CryptoPrimitives, canonicalize
from snapsecure_api.storage.repositories import LedgerRepository
from snapsecure_api.utils.metrics import (
    integrity_failures,
    ledger_append_duration,
    ledger_appends,
    ledger_block_number,
)

logger = logging.getLogger(__name__)

TamperListener = Callable[[LedgerEntry, str], None]

TAMPER_DETECTED = "blockchain_tampering_detected"
INTEGRITY_VIOLATION = "blockchain_integrity_violation"


@dataclass
class VerificationReport:
    """Result of a full ledger scan."""

    valid: bool
    corrupted_hashes: list[str] = field(default_factory=list)
    broken_links: list[str] = field(default_factory=list)
    entries_checked: int = 0
    checked_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "corrupted_hashes": list(self.corrupted_hashes),
            "broken_links": list(self.broken_links),
            "entries_checked": self.entries_checked,
            "checked_at": self.checked_at.isoformat(),
        }


class HashChainLedger:
    """Append-only record store; the integrity root of the audit trail."""

    def __init__(
        self,
        repository: LedgerRepository,
        crypto: CryptoPrimitives,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize ledger. The head is loaded lazily on first use."""
        self.repository = repository
        self.crypto = crypto
        self._clock = clock
        self._lock = threading.Lock()
        self._current_block: Optional[int] = None
        self._last_hash: Optional[str] = None
        self._tamper_listeners: list[TamperListener] = []
        self._last_report: Optional[VerificationReport] = None

    def add_tamper_listener(self, listener: TamperListener) -> None:
        """Register a callback invoked with (entry, event_type) on hash mismatch."""
        self._tamper_listeners.append(listener)

    def _load_head(self) -> None:
        last = self.repository.last()
        self._current_block = last.block_number if last else 0
        self._last_hash = last.tx_hash if last else None

    @property
    def current_block_number(self) -> int:
        """Block number of the latest entry (0 for an empty ledger)."""
        with self._lock:
            if self._current_block is None:
                self._load_head()
            return self._current_block

    def _matches(self, entry: LedgerEntry) -> bool:
        try:
            return self.crypto.hash_payload(entry.payload) == entry.tx_hash
        except ValueError:
            # Payload rewritten into something non-canonical (e.g. a float)
            return False

    def _notify(self, entry: LedgerEntry, event_type: str) -> None:
        for listener in self._tamper_listeners:
            listener(entry, event_type)

    def append(
        self,
        tx_type: str,
        payload: dict,
        related_entity_id: Optional[Any] = None,
    ) -> str:
        """Append an entry and return its hash.

        Block numbers come from a single in-process sequence guarded by a
        lock; the storage layer's unique constraint on ``block_number``
        rejects a second writer. When the stored row cannot be confirmed the
        error is ``LedgerWriteUnconfirmed`` carrying the hash to look up
        before any retry.
        """
        # Fail fast on payloads that cannot be hashed deterministically
        canonicalize(payload)
        related = str(related_entity_id) if related_entity_id is not None else None
        started = time.perf_counter()

        with self._lock:
            if self._current_block is None:
                self._load_head()

            block_number = self._current_block + 1
            envelope = {
                "txType": tx_type,
                "blockNumber": block_number,
                "previousHash": self._last_hash,
                "relatedEntityId": related,
                "data": payload,
                "timestamp": int(self._clock() * 1000),
            }
            tx_hash = self.crypto.hash_payload(envelope)
            now = datetime.utcnow()
            entry = LedgerEntry(
                tx_hash=tx_hash,
                tx_type=tx_type,
                related_entity_id=related,
                payload=envelope,
                previous_hash=self._last_hash,
                block_number=block_number,
                gas_used=secrets.randbelow(50000) + 21000,
                is_confirmed=True,
                created_at=now,
                confirmed_at=now,
            )

            try:
                self.repository.insert(entry)
            except DependencyUnavailable as e:
                # Ambiguous outcome: the row may have landed before the failure
                try:
                    landed = self.repository.get_by_hash(tx_hash) is not None
                except DependencyUnavailable:
                    self._current_block = None
                    raise LedgerWriteUnconfirmed(
                        f"Ledger insert outcome unknown for block {block_number}",
                        tx_hash=tx_hash,
                    ) from e
                if not landed:
                    self._current_block = None
                    raise
                logger.warning(
                    "Ledger insert reported failure but entry is present",
                    extra={"tx_hash": tx_hash, "block_number": block_number},
                )

            # The block is taken from here on, even if verification fails
            self._current_block = block_number
            self._last_hash = tx_hash

            try:
                stored = self.repository.get_by_hash(tx_hash)
            except DependencyUnavailable as e:
                raise LedgerWriteUnconfirmed(
                    f"Ledger entry for block {block_number} stored but not read back",
                    tx_hash=tx_hash,
                ) from e
            if stored is None or not self._matches(stored):
                integrity_failures.labels(source="append").inc()
                logger.critical(
                    "Transaction hash verification failed after append",
                    extra={"tx_hash": tx_hash, "block_number": block_number},
                )
                raise IntegrityError(
                    "Transaction hash verification failed - potential tampering detected",
                    tx_hash=tx_hash,
                )

        ledger_appends.labels(tx_type=tx_type).inc()
        ledger_append_duration.observe(time.perf_counter() - started)
        ledger_block_number.set(block_number)
        logger.info(
            "Ledger entry appended",
            extra={"tx_hash": tx_hash, "tx_type": tx_type, "block_number": block_number},
        )
        return tx_hash

    def get(self, tx_hash: str) -> Optional[LedgerEntry]:
        """Get entry by hash, or None."""
        return self.repository.get_by_hash(tx_hash)

    def verify(self, tx_hash: str) -> bool:
        """Recompute the digest of a stored entry.

        A mismatch notifies tamper listeners (which write a critical
        security log row). An intact entry is read only.
        """
        entry = self.repository.get_by_hash(tx_hash)
        if entry is None:
            raise NotFoundError(f"Ledger entry {tx_hash} not found")
        if not entry.is_confirmed:
            return False

        if self._matches(entry):
            return True

        integrity_failures.labels(source="verify").inc()
        logger.critical(
            "Transaction hash verification failed",
            extra={"tx_hash": tx_hash, "block_number": entry.block_number},
        )
        self._notify(entry, TAMPER_DETECTED)
        return False

    def verify_all(self) -> VerificationReport:
        """Full O(n) scan of hashes and chain links. For periodic jobs only."""
        entries = self.repository.list_all()
        corrupted: list[str] = []
        broken: list[str] = []
        previous: Optional[LedgerEntry] = None

        for entry in entries:
            if not self._matches(entry):
                corrupted.append(entry.tx_hash)
                integrity_failures.labels(source="verify_all").inc()
                logger.critical(
                    "Chain integrity violation detected",
                    extra={"tx_hash": entry.tx_hash, "block_number": entry.block_number},
                )
                self._notify(entry, INTEGRITY_VIOLATION)

            expected_previous = previous.tx_hash if previous else None
            expected_block = previous.block_number + 1 if previous else 1
            envelope_previous = entry.payload.get("previousHash") if isinstance(entry.payload, dict) else None
            if (
                entry.previous_hash != expected_previous
                or envelope_previous != expected_previous
                or entry.block_number != expected_block
            ):
                broken.append(entry.tx_hash)
                logger.critical(
                    "Chain link broken",
                    extra={
                        "tx_hash": entry.tx_hash,
                        "block_number": entry.block_number,
                        "expected_block": expected_block,
                    },
                )
            previous = entry

        report = VerificationReport(
            valid=not corrupted and not broken,
            corrupted_hashes=corrupted,
            broken_links=broken,
            entries_checked=len(entries),
        )
        self._last_report = report
        logger.info(
            "Ledger verification complete",
            extra={
                "valid": report.valid,
                "entries_checked": report.entries_checked,
                "corrupted": len(corrupted),
                "broken_links": len(broken),
            },
        )
        return report

    @property
    def integrity_status(self) -> str:
        """unverified, verified or corrupted, from the latest full scan."""
        if self._last_report is None:
            return "unverified"
        return "verified" if self._last_report.valid else "corrupted"

    @property
    def last_report(self) -> Optional[VerificationReport]:
        return self._last_report

    def count_confirmed(self) -> int:
        return self.repository.count_confirmed()

    def entries_of_type(self, tx_type: str) -> list[LedgerEntry]:
        return self.repository.list_by_type(tx_type)
