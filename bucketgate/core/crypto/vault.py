"""
Credential vault for bucket secrets at rest.

Provider access keys are stored as versioned blobs:

    v1:<base64 nonce>:<base64 ciphertext>

v1 uses ChaCha20-Poly1305, an AEAD primitive: one call gives both
confidentiality and tamper detection. Every encryption draws a fresh
nonce from os.urandom, so a nonce is never reused under the same key.

The key itself is configured as "base64:<32 bytes, base64-encoded>".
A malformed key is a configuration error raised when the vault is built,
not something individual requests should ever see.
"""

import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from ..errors import AuthenticationFailure, ConfigurationError, UnsupportedCipherVersion

logger = logging.getLogger(__name__)

KEY_PREFIX = "base64:"
KEY_LENGTH = 32
NONCE_LENGTH = 12
CIPHER_VERSION = "v1"


def parse_key(encoded_key: str) -> bytes:
    """
    Decode a prefix-tagged key into raw key bytes.

    Raises ConfigurationError for a missing prefix, invalid base64
    or a key that isn't exactly 32 bytes.
    """
    if not encoded_key or not encoded_key.startswith(KEY_PREFIX):
        raise ConfigurationError(
            f"Encryption key must start with '{KEY_PREFIX}'"
        )

    try:
        raw = base64.b64decode(encoded_key[len(KEY_PREFIX):], validate=True)
    except (binascii.Error, ValueError):
        raise ConfigurationError("Encryption key is not valid base64")

    if len(raw) != KEY_LENGTH:
        raise ConfigurationError(
            f"Encryption key must decode to {KEY_LENGTH} bytes, got {len(raw)}"
        )

    return raw


def generate_key() -> str:
    """Generate a new prefix-tagged vault key."""
    return KEY_PREFIX + base64.b64encode(os.urandom(KEY_LENGTH)).decode("ascii")


def is_encrypted(value: Optional[str]) -> bool:
    """True if the value already looks like a versioned cipher blob."""
    if not value:
        return False
    parts = value.split(":")
    return len(parts) == 3 and parts[0].startswith("v") and parts[0][1:].isdigit()


def _b64decode_part(part: str) -> bytes:
    try:
        return base64.b64decode(part, validate=True)
    except (binascii.Error, ValueError):
        raise AuthenticationFailure("Encrypted blob is malformed")


class CredentialVault:
    """
    Encrypts and decrypts provider secrets with a single configured key.

    The vault holds no mutable state beyond the immutable key, so one
    instance can be shared by every concurrent request without locking.
    """

    def __init__(self, encoded_key: str) -> None:
        self._cipher = ChaCha20Poly1305(parse_key(encoded_key))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_LENGTH)
        ciphertext = self._cipher.encrypt(nonce, plaintext.encode("utf-8"), None)
        return ":".join([
            CIPHER_VERSION,
            base64.b64encode(nonce).decode("ascii"),
            base64.b64encode(ciphertext).decode("ascii"),
        ])

    def decrypt(self, blob: str) -> str:
        """
        Decrypt a v1 blob.

        Raises:
            UnsupportedCipherVersion: tag is anything other than v1
            AuthenticationFailure: blob was altered, forged or sealed with
                another key
        """
        version, _, rest = (blob or "").partition(":")
        if version != CIPHER_VERSION:
            raise UnsupportedCipherVersion(
                f"Unsupported cipher version: {version or '<empty>'}"
            )

        nonce_part, sep, cipher_part = rest.partition(":")
        if not sep:
            raise AuthenticationFailure("Encrypted blob is malformed")

        nonce = _b64decode_part(nonce_part)
        ciphertext = _b64decode_part(cipher_part)
        if len(nonce) != NONCE_LENGTH:
            raise AuthenticationFailure("Encrypted blob is malformed")

        try:
            plaintext = self._cipher.decrypt(nonce, ciphertext, None)
        except InvalidTag:
            logger.warning("Rejected encrypted blob that failed authentication")
            raise AuthenticationFailure("Encrypted blob failed authentication")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise AuthenticationFailure("Encrypted blob does not hold UTF-8 text")


def encrypt_with_key(encoded_key: str, plaintext: str) -> str:
    """Encrypt plaintext under the given prefix-tagged key."""
    return CredentialVault(encoded_key).encrypt(plaintext)


def decrypt_with_key(encoded_key: str, blob: str) -> str:
    """Decrypt a blob under the given prefix-tagged key."""
    return CredentialVault(encoded_key).decrypt(blob)
