"""
Authenticated encryption for provider credentials at rest.
"""

from .vault import (
    CredentialVault,
    decrypt_with_key,
    encrypt_with_key,
    generate_key,
    is_encrypted,
)

__all__ = [
    "CredentialVault",
    "decrypt_with_key",
    "encrypt_with_key",
    "generate_key",
    "is_encrypted",
]
