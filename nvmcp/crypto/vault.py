"""CryptoVault — master secret management and selective field encryption.

A 32-byte master secret is generated once and stored hex-encoded with
owner-only permissions. Every encrypted field gets its own random salt and
nonce; the AES-256-GCM key is derived from (master secret, salt) with scrypt,
so decrypting needs nothing but the master secret.

Only string leaves under sensitive-looking keys are encrypted. Decryption
never aborts a whole document: a field that fails becomes a Redacted value
which callers must handle.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from pydantic import ValidationError as PydanticValidationError

from nvmcp.exceptions import CryptoError
from nvmcp.types import StoredModel

_logger = logging.getLogger(__name__)

ALGORITHM = "aes-256-gcm"
KDF = "scrypt"
KEY_LENGTH = 32
SALT_LENGTH = 16
NONCE_LENGTH = 12
TAG_LENGTH = 16
MASTER_KEY_LENGTH = 32
MASTER_KEY_MODE = 0o600

# scrypt cost parameters (interactive profile)
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1

_MASTER_KEY_PATTERN = re.compile(rf"^[0-9a-fA-F]{{{MASTER_KEY_LENGTH * 2}}}$")

_SENSITIVE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"key$",
        r"token$",
        r"secret$",
        r"password$",
        r"auth",
        r"credential",
        r"^api",
        r"session",
        r"cookie",
    )
]


class EncryptedValue(StoredModel):
    """An encrypted field as persisted inside a tag file."""

    algorithm: str = ALGORITHM
    kdf: str = KDF
    ciphertext: str
    salt: str
    iv: str
    auth_tag: str | None = None

    @staticmethod
    def looks_like(value: Any) -> bool:
        return (
            isinstance(value, dict)
            and isinstance(value.get("ciphertext"), str)
            and isinstance(value.get("salt"), str)
            and isinstance(value.get("iv"), str)
        )


@dataclass(frozen=True)
class Redacted:
    """Placeholder for a field whose ciphertext could not be decrypted."""

    field: str
    reason: str

    def __str__(self) -> str:
        return "[ENCRYPTED]"


def is_sensitive_field_name(key: str) -> bool:
    return any(p.search(key) for p in _SENSITIVE_PATTERNS)


def _derive_key(secret: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)
    return kdf.derive(secret.encode("utf-8"))


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(data: str, name: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise CryptoError(f"Malformed encrypted value: bad {name} encoding") from None


def encrypt_field(plaintext: str, secret: str) -> EncryptedValue:
    """Encrypt one string with a fresh salt and nonce."""
    if not plaintext or not secret:
        raise CryptoError("Plaintext and secret are required for encryption")

    salt = secrets.token_bytes(SALT_LENGTH)
    nonce = secrets.token_bytes(NONCE_LENGTH)
    sealed = AESGCM(_derive_key(secret, salt)).encrypt(nonce, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return EncryptedValue(
        ciphertext=_b64(ciphertext),
        salt=_b64(salt),
        iv=_b64(nonce),
        auth_tag=_b64(tag),
    )


def decrypt_field(value: EncryptedValue | dict[str, Any], secret: str) -> str:
    """Decrypt one field. Raises CryptoError rather than returning wrong plaintext."""
    if not secret:
        raise CryptoError("Secret is required for decryption")
    if isinstance(value, dict):
        try:
            value = EncryptedValue.model_validate(value)
        except PydanticValidationError:
            raise CryptoError("Incomplete encrypted data structure") from None

    if value.algorithm != ALGORITHM:
        raise CryptoError(f"Unsupported algorithm: {value.algorithm}")
    if value.kdf != KDF:
        raise CryptoError(f"Unsupported key derivation: {value.kdf}")
    if not value.auth_tag:
        raise CryptoError("Refusing to decrypt unauthenticated ciphertext (no authTag)")

    salt = _unb64(value.salt, "salt")
    nonce = _unb64(value.iv, "iv")
    sealed = _unb64(value.ciphertext, "ciphertext") + _unb64(value.auth_tag, "authTag")

    try:
        plaintext = AESGCM(_derive_key(secret, salt)).decrypt(nonce, sealed, None)
        return plaintext.decode("utf-8")
    except (InvalidTag, ValueError, UnicodeDecodeError):
        raise CryptoError(
            "Failed to decrypt data: authentication failed or corrupted data"
        ) from None


class CryptoVault:
    """Owns the master secret for one invocation and applies it to documents."""

    def __init__(self, key_path: Path) -> None:
        self._key_path = key_path
        self._secret: str | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def master_secret(self) -> str:
        """Read-through cached master secret; generated on first use."""
        if self._secret is None:
            if self._key_path.exists():
                self._secret = self._read_key()
            else:
                self._secret = self._generate_key()
        return self._secret

    def _read_key(self) -> str:
        try:
            data = self._key_path.read_text(encoding="ascii").strip()
        except (OSError, UnicodeDecodeError) as e:
            raise CryptoError(f"Could not read master key: {e}", {"path": str(self._key_path)}) from e
        if not _MASTER_KEY_PATTERN.match(data):
            raise CryptoError("Malformed master key file", {"path": str(self._key_path)})
        return data

    def _generate_key(self) -> str:
        key = secrets.token_hex(MASTER_KEY_LENGTH)
        self._key_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self._key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, MASTER_KEY_MODE)
        except FileExistsError:
            # Another invocation won the race; use its key.
            return self._read_key()
        with os.fdopen(fd, "w", encoding="ascii") as f:
            f.write(key)
        os.chmod(self._key_path, MASTER_KEY_MODE)
        _logger.info("Generated new master key at %s", self._key_path)
        return key

    def encrypt(self, plaintext: str) -> EncryptedValue:
        return encrypt_field(plaintext, self.master_secret())

    def decrypt(self, value: EncryptedValue | dict[str, Any]) -> str:
        return decrypt_field(value, self.master_secret())

    def encrypt_sensitive(self, obj: Any) -> Any:
        """Encrypt every non-empty string leaf whose key looks sensitive."""
        if not isinstance(obj, dict):
            return obj
        result: dict[str, Any] = {}
        for key, value in obj.items():
            if isinstance(value, EncryptedValue):
                result[key] = value.to_document()
            elif isinstance(value, str) and value and is_sensitive_field_name(key):
                result[key] = self.encrypt(value).to_document()
            elif isinstance(value, dict) and not EncryptedValue.looks_like(value):
                result[key] = self.encrypt_sensitive(value)
            else:
                result[key] = value
        return result

    def decrypt_sensitive(self, obj: Any, _path: str = "") -> Any:
        """Mirror of encrypt_sensitive. Per-field failures become Redacted.

        A malformed master key still raises: it is a configuration problem,
        not a bad field.
        """
        if not isinstance(obj, dict):
            return obj
        result: dict[str, Any] = {}
        for key, value in obj.items():
            path = f"{_path}.{key}" if _path else key
            if EncryptedValue.looks_like(value):
                secret = self.master_secret()
                try:
                    result[key] = decrypt_field(value, secret)
                except CryptoError as e:
                    _logger.warning("Could not decrypt %s: %s", path, e)
                    result[key] = Redacted(field=path, reason=str(e))
            elif isinstance(value, dict):
                result[key] = self.decrypt_sensitive(value, path)
            else:
                result[key] = value
        return result
