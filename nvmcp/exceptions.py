"""Custom exception hierarchy for nvmcp."""

from __future__ import annotations

from typing import Any


class NvmcpError(Exception):
    """Base for all nvmcp errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = {k: v for k, v in (details or {}).items() if v is not None}


class ClassificationError(NvmcpError):
    """Source string matches no known grammar."""


class ResolutionError(NvmcpError):
    """No runnable entry point could be produced for a source."""


class ConfigError(NvmcpError):
    """A tag, pointer or settings file is malformed or unreadable."""


class TagError(NvmcpError):
    """Invalid operation on a tag (missing, duplicate, active)."""


class CryptoError(NvmcpError):
    """Decryption failed or key material is malformed."""


class ProcessError(NvmcpError):
    """Spawn failure or unknown process id."""


class ValidationError(NvmcpError):
    """User input rejected before any mutation."""


class NetworkError(NvmcpError):
    """A registry metadata request failed."""
