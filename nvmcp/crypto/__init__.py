"""Field-level encryption at rest for tag configuration."""

from nvmcp.crypto.vault import (
    CryptoVault,
    EncryptedValue,
    Redacted,
    decrypt_field,
    encrypt_field,
    is_sensitive_field_name,
)

__all__ = [
    "CryptoVault",
    "EncryptedValue",
    "Redacted",
    "decrypt_field",
    "encrypt_field",
    "is_sensitive_field_name",
]
