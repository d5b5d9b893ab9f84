"""Error taxonomy for the audit core.

Denials (blocked IP, rate limit, wrong password) are NOT errors: they are
returned as structured results. Everything here is either a fatal
misconfiguration, an integrity violation or an infrastructure failure,
and callers must be able to tell these apart from a legitimate denial.
"""

from typing import Optional


class SnapSecureError(Exception):
    """Base class for all audit core errors."""


class ConfigurationError(SnapSecureError):
    """Required configuration is missing or invalid. The process must not start."""


class IntegrityError(SnapSecureError):
    """A stored hash no longer matches its payload."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class NotFoundError(SnapSecureError):
    """Lookup of a nonexistent ledger entry or user."""


class DependencyUnavailable(SnapSecureError):
    """A storage call failed. Retryable for reads; re-verify before retrying writes."""


class SecurityLogWriteFailed(DependencyUnavailable):
    """The ledger write succeeded but its companion security log row did not.

    The ledger is the source of truth, so the missing row can be rebuilt
    with ``AuditTrailService.reconcile``.
    """

    def __init__(self, message: str, tx_hash: str):
        super().__init__(message)
        self.tx_hash = tx_hash


class InvalidCiphertext(SnapSecureError):
    """Decryption failed: wrong key or corrupted ciphertext."""


class LedgerWriteUnconfirmed(DependencyUnavailable):
    """A ledger insert may have been stored but could not be read back.

    Look the entry up with ``HashChainLedger.get(tx_hash)`` before
    retrying, or the retry records the event twice.
    """

    def __init__(self, message: str, tx_hash: str):
        super().__init__(message)
        self.tx_hash = tx_hash
