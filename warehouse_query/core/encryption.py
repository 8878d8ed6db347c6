"""
Credential encryption.

AES-256-GCM with a key derived from the application secret via
PBKDF2-SHA512 and a random per-blob salt.

Blob layout: salt (64 bytes) | iv (16 bytes) | tag (16 bytes) | ciphertext
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

_SALT_SIZE = 64
_IV_SIZE = 16
_TAG_SIZE = 16
_KEY_SIZE = 32
_KDF_ITERATIONS = 2145


class EncryptionError(Exception):
    """Raised when a blob cannot be decrypted."""


class EncryptionService:
    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Encryption secret must not be empty")
        self._secret = secret.encode("utf-8")

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=_KEY_SIZE,
            salt=salt,
            iterations=_KDF_ITERATIONS,
        )
        return kdf.derive(self._secret)

    def encrypt(self, message: str) -> bytes:
        salt = os.urandom(_SALT_SIZE)
        iv = os.urandom(_IV_SIZE)
        sealed = AESGCM(self._derive_key(salt)).encrypt(iv, message.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-_TAG_SIZE], sealed[-_TAG_SIZE:]
        return salt + iv + tag + ciphertext

    def decrypt(self, blob: bytes) -> str:
        """
        Decrypt a blob produced by `encrypt`.

        Raises:
            EncryptionError: truncated blob, wrong secret or tampered data
        """
        data = bytes(blob)
        header = _SALT_SIZE + _IV_SIZE + _TAG_SIZE
        if len(data) < header:
            raise EncryptionError("Encrypted payload is truncated")

        salt = data[:_SALT_SIZE]
        iv = data[_SALT_SIZE : _SALT_SIZE + _IV_SIZE]
        tag = data[_SALT_SIZE + _IV_SIZE : header]
        ciphertext = data[header:]

        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise EncryptionError("Failed to authenticate encrypted payload") from e
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EncryptionError("Decrypted payload is not valid UTF-8") from e
