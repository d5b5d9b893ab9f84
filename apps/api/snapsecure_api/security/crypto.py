"""Hashing, symmetric encryption and key minting."""

import base64
import hashlib
import json
import logging
import secrets
from functools import lru_cache
from typing import Any, Optional, Union

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from snapsecure_api.errors import ConfigurationError, InvalidCiphertext

logger = logging.getLogger(__name__)


def _check_canonical(value: Any, path: str) -> None:
    """Reject values without a single deterministic JSON encoding."""
    if value is None or isinstance(value, (bool, int, str)):
        return
    if isinstance(value, float):
        raise ValueError(f"Float at {path} cannot be hashed deterministically; use int or str")
    if isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _check_canonical(item, f"{path}[{i}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"Non-string key {key!r} at {path}")
            _check_canonical(item, f"{path}.{key}")
        return
    raise ValueError(f"Unsupported type {type(value).__name__} at {path}")


def canonicalize(payload: Any) -> str:
    """Serialize payload with recursively sorted keys and no whitespace."""
    _check_canonical(payload, "$")
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@lru_cache(maxsize=16)
def _derive_fernet(passphrase: str, salt: str, iterations: int) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt.encode(),
        iterations=iterations,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(passphrase.encode())))


class CryptoPrimitives:
    """Deterministic hashing plus Fernet (AES-CBC + HMAC) encryption.

    Keys are passphrases; the Fernet key is derived with PBKDF2-SHA256.
    Both keys are required at construction so a missing key fails at
    startup rather than on the first request.
    """

    def __init__(
        self,
        encryption_key: Optional[str],
        master_key: Optional[str],
        salt: str = "snapsecure-key-derivation",
        iterations: int = 100000,
    ):
        """Initialize with required key material."""
        if not encryption_key:
            raise ConfigurationError("ENCRYPTION_KEY is required for secure operations")
        if not master_key:
            raise ConfigurationError("MASTER_ENCRYPTION_KEY is required for secure operations")
        self.encryption_key = encryption_key
        self.master_key = master_key
        self._salt = salt
        self._iterations = iterations

    @classmethod
    def from_settings(cls, settings) -> "CryptoPrimitives":
        """Build from application settings."""
        return cls(
            settings.encryption_key,
            settings.master_encryption_key,
            salt=settings.key_derivation_salt,
            iterations=settings.key_derivation_iterations,
        )

    def hash(self, data: Union[bytes, str]) -> str:
        """SHA-256 hex digest."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        return hashlib.sha256(data).hexdigest()

    def hash_payload(self, payload: Any) -> str:
        """Digest of the canonical serialization of payload."""
        return self.hash(canonicalize(payload))

    def encrypt(self, plaintext: str, key: Optional[str] = None) -> str:
        """Encrypt with key (defaults to ENCRYPTION_KEY)."""
        fernet = _derive_fernet(key or self.encryption_key, self._salt, self._iterations)
        return fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str, key: Optional[str] = None) -> str:
        """Decrypt with key (defaults to ENCRYPTION_KEY).

        Raises InvalidCiphertext on a wrong key or tampered token; never
        returns partial plaintext.
        """
        fernet = _derive_fernet(key or self.encryption_key, self._salt, self._iterations)
        try:
            return fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError) as e:
            logger.warning("Decryption failed", extra={"error": type(e).__name__})
            raise InvalidCiphertext("Ciphertext could not be decrypted") from e

    def generate_key_pair(self) -> dict:
        """Mint an attribution identifier pair.

        The public key is only the SHA-256 of a random secret. It identifies
        a user in ledger payloads and is not usable for signatures.
        """
        private_key = secrets.token_hex(32)
        public_key = self.hash(private_key)
        return {"public_key": public_key, "private_key": private_key}

    @staticmethod
    def generate_passphrase() -> str:
        """Generate a random key suitable for ENCRYPTION_KEY."""
        return secrets.token_urlsafe(32)
