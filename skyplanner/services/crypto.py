"""Encryption of TOTP secrets at rest and keyed hashing of backup codes."""

import hashlib
import hmac
import logging
import secrets
from base64 import b64decode, b64encode
from binascii import Error as BinasciiError

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from skyplanner.core.config import Settings
from skyplanner.core.errors import ConfigError

logger = logging.getLogger(__name__)

# 12 bytes IV + 16 bytes auth tag
MIN_ENCRYPTED_LENGTH = 28
IV_LENGTH = 12

# Binds ciphertexts to the column they were written for
TOTP_SECRET_AAD = b"totp_secret"

# scrypt cost parameters (N=2^14, r=8, p=1)
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


class MissingKeyError(ConfigError):
    """ENCRYPTION_KEY or ENCRYPTION_SALT is not configured."""


class DecryptionError(ConfigError):
    """Stored ciphertext could not be decrypted with any configured key."""


def derive_key(key: str, salt: str) -> bytes:
    """Derive a 256-bit AES key from the configured key and salt."""
    kdf = Scrypt(salt=salt.encode("utf-8"), length=32, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(key.encode("utf-8"))


class SecretCipher:
    """AES-256-GCM cipher for TOTP secrets.

    Layout at rest: base64(IV (12 bytes) || ciphertext || tag (16 bytes)).
    Keys are derived once, on first use. Decryption falls back to the
    previous key while a rotation is in progress.
    """

    def __init__(self, key: str | None, salt: str | None, old_key: str | None = None):
        self._key = key
        self._salt = salt
        self._old_key = old_key
        self._derived: bytes | None = None
        self._derived_old: bytes | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "SecretCipher":
        return cls(
            key=settings.encryption_key,
            salt=settings.encryption_salt,
            old_key=settings.encryption_key_old,
        )

    def _current_key(self) -> bytes:
        if not self._key or not self._salt:
            # Never name the missing variable in anything a client can see
            logger.error("Secret encryption requested but encryption key/salt are not configured")
            raise MissingKeyError()
        if self._derived is None:
            self._derived = derive_key(self._key, self._salt)
        return self._derived

    def _previous_key(self) -> bytes | None:
        if not self._old_key or not self._salt:
            return None
        if self._derived_old is None:
            self._derived_old = derive_key(self._old_key, self._salt)
        return self._derived_old

    def encrypt(self, plaintext: str) -> str:
        aesgcm = AESGCM(self._current_key())
        iv = secrets.token_bytes(IV_LENGTH)
        ciphertext = aesgcm.encrypt(iv, plaintext.encode("utf-8"), TOTP_SECRET_AAD)
        return b64encode(iv + ciphertext).decode("ascii")

    def _open(self, blob: str) -> tuple[str, bool]:
        """Plaintext of ``blob`` and whether the previous key was needed."""
        key = self._current_key()
        try:
            encrypted = b64decode(blob, validate=True)
        except (BinasciiError, ValueError) as e:
            raise DecryptionError() from e

        if len(encrypted) < MIN_ENCRYPTED_LENGTH:
            logger.error(f"Encrypted secret too short: {len(encrypted)} bytes")
            raise DecryptionError()

        iv, ciphertext = encrypted[:IV_LENGTH], encrypted[IV_LENGTH:]
        try:
            return AESGCM(key).decrypt(iv, ciphertext, TOTP_SECRET_AAD).decode("utf-8"), False
        except InvalidTag as primary_error:
            old_key = self._previous_key()
            if old_key is None:
                logger.error("Failed to decrypt TOTP secret with the current key")
                raise DecryptionError() from primary_error
            try:
                plaintext = AESGCM(old_key).decrypt(iv, ciphertext, TOTP_SECRET_AAD)
            except InvalidTag as e:
                logger.error("Failed to decrypt TOTP secret with current and previous keys")
                raise DecryptionError() from e
            return plaintext.decode("utf-8"), True

    def decrypt(self, blob: str) -> str:
        """Decrypt a stored secret.

        Raises:
            MissingKeyError: If no key is configured
            DecryptionError: If the blob is malformed or no key authenticates it
        """
        return self._open(blob)[0]

    def decrypt_and_upgrade(self, blob: str) -> tuple[str, str | None]:
        """Decrypt ``blob``; if it was written under the previous key, also
        return it re-encrypted under the current one (else None).
        """
        plaintext, stale = self._open(blob)
        if not stale:
            return plaintext, None
        logger.info("Re-encrypting TOTP secret written under the previous key")
        return plaintext, self.encrypt(plaintext)


def normalize_backup_code(code: str) -> str:
    return (code or "").replace("-", "").replace(" ", "").strip().upper()


def hash_backup_code(code: str, key: str) -> str:
    """Keyed one-way hash (HMAC-SHA256, hex) of a normalized backup code."""
    if not key:
        logger.error("Backup code hashing requested but the encryption key is not configured")
        raise MissingKeyError()
    return hmac.new(
        key.encode("utf-8"), normalize_backup_code(code).encode("utf-8"), hashlib.sha256
    ).hexdigest()


def verify_backup_code(code: str, hashes: list[str], key: str) -> int | None:
    """Index of the stored hash matching ``code``, or None.

    Every stored hash is compared so timing does not reveal the position.
    """
    candidate = hash_backup_code(code, key)
    match: int | None = None
    for index, stored in enumerate(hashes):
        if hmac.compare_digest(candidate, stored) and match is None:
            match = index
    return match
