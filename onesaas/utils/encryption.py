"""Encryption utilities for sensitive data storage.

Provides the secret codec used to protect stored secrets and token payloads:
- Emails (encrypted copy kept alongside the lookup value)
- TOTP secrets (encrypted at rest)
- Session token payloads (encrypted before signing)

Uses AES-256-GCM from the cryptography library:
- Fresh random 96-bit nonce per call, prepended to the ciphertext
- Authenticated encryption (tampering or a wrong key fails decryption)
- Hex encoding with ``:`` between nonce and ciphertext, so a value is
  self-contained and safe to store in a text column

Also provides the unsalted SHA-256 digest used for content-addressable lookups
(API keys, backup codes) and random token generation.
"""

import hashlib
import logging
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from onesaas.exceptions import CryptoError

logger = logging.getLogger(__name__)

NONCE_BYTES = 12
DELIMITER = ":"


class SecretCodec:
    """Symmetric encrypt/decrypt plus one-way hashing.

    The key is supplied once at startup (see ``onesaas.context``) and is never
    logged.

    Example:
        >>> codec = SecretCodec("00" * 32)
        >>> codec.decrypt(codec.encrypt("secret")) == "secret"
        True
    """

    def __init__(self, encryption_key: str):
        """Initialize the codec.

        Args:
            encryption_key: 64 hexadecimal characters (32-byte AES key)

        Raises:
            ValueError: If the key is not valid hex of the right length
        """
        try:
            key_bytes = bytes.fromhex(encryption_key)
        except (TypeError, ValueError):
            raise ValueError("Invalid encryption key format: expected 64 hexadecimal characters")
        if len(key_bytes) != 32:
            raise ValueError("Invalid encryption key length: expected 32 bytes (64 hex characters)")
        self._cipher = AESGCM(key_bytes)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string into ``<nonce hex>:<ciphertext hex>``.

        Raises:
            ValueError: If plaintext is None
        """
        if plaintext is None:
            raise ValueError("Cannot encrypt None value")

        nonce = secrets.token_bytes(NONCE_BYTES)
        ciphertext = self._cipher.encrypt(nonce, plaintext.encode("utf-8"), None)
        return f"{nonce.hex()}{DELIMITER}{ciphertext.hex()}"

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a value produced by ``encrypt``.

        Raises:
            CryptoError: If the value is malformed, tampered with, or was
                encrypted under a different key
        """
        if not ciphertext or DELIMITER not in ciphertext:
            raise CryptoError("Malformed ciphertext")

        nonce_hex, _, body_hex = ciphertext.partition(DELIMITER)
        try:
            nonce = bytes.fromhex(nonce_hex)
            body = bytes.fromhex(body_hex)
        except ValueError:
            raise CryptoError("Malformed ciphertext")
        if len(nonce) != NONCE_BYTES:
            raise CryptoError("Malformed ciphertext")

        try:
            plaintext = self._cipher.decrypt(nonce, body, None)
        except InvalidTag:
            logger.warning("Decryption failed: wrong key or tampered data")
            raise CryptoError("Failed to decrypt data")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise CryptoError("Decrypted data is not valid UTF-8")

    @staticmethod
    def hash(data: str) -> str:
        """Deterministic, unsalted SHA-256 hex digest for lookups."""
        return hashlib.sha256(data.encode("utf-8")).hexdigest()

    @staticmethod
    def random_token(length: int = 32) -> str:
        """Hex token built from ``length`` random bytes."""
        return secrets.token_hex(length)
