"""Tag documents and the active-tag pointer.

One JSON file per tag under ``configs/``. Sensitive environment values are
encrypted by the CryptoVault on save and decrypted on load; a value that
fails to decrypt comes back as ``Redacted``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from nvmcp.crypto import CryptoVault, Redacted
from nvmcp.exceptions import ConfigError, TagError
from nvmcp.store.documents import read_document, write_document
from nvmcp.types import StoredModel, utcnow
from nvmcp.validation import validate_tag_name

_logger = logging.getLogger(__name__)

TAG_VERSION = "2.0.0"


class TagSettings(StoredModel):
    auto_start: bool = False


class Tag(StoredModel):
    """A named, isolated set of MCP declarations plus environment."""

    name: str
    version: str = TAG_VERSION
    description: str = ""
    created: datetime = Field(default_factory=utcnow)
    updated: datetime = Field(default_factory=utcnow)
    mcps: dict[str, str] = Field(default_factory=dict)
    # str once decrypted, Redacted when a sensitive value could not be
    environment: dict[str, Any] = Field(default_factory=dict)
    settings: TagSettings = Field(default_factory=TagSettings)


class ActiveTagPointer(StoredModel):
    tag: str
    activated_at: datetime = Field(default_factory=utcnow)


class TagStore:
    """CRUD over tag files plus the active pointer."""

    def __init__(self, configs_dir: Path, active_file: Path, vault: CryptoVault) -> None:
        self._configs_dir = configs_dir
        self._active_file = active_file
        self._vault = vault

    def _tag_path(self, name: str) -> Path:
        return self._configs_dir / f"{name}.json"

    # ── Tags ──────────────────────────────────────────────────────

    async def tag_exists(self, name: str) -> bool:
        validate_tag_name(name)
        return self._tag_path(name).exists()

    async def get_tag(self, name: str) -> Tag | None:
        validate_tag_name(name)
        path = self._tag_path(name)
        raw = read_document(path)
        if raw is None:
            return None
        raw["environment"] = self._vault.decrypt_sensitive(raw.get("environment") or {})
        try:
            return Tag.model_validate(raw)
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid tag file {path}: {e}", {"path": str(path)}) from e

    async def save_tag(self, name: str, **fields: Any) -> Tag:
        """Merge ``fields`` over the stored tag (or defaults) and persist.

        ``created`` is preserved, ``updated`` is stamped. Redacted environment
        values keep their stored ciphertext rather than being overwritten.
        """
        validate_tag_name(name)
        path = self._tag_path(name)
        existing = read_document(path) or {}
        now = utcnow()

        doc = Tag(name=name, created=now, updated=now).to_document()
        doc.update(existing)
        for key, value in fields.items():
            if key == "settings" and isinstance(value, TagSettings):
                value = value.to_document()
            if key == "settings" and isinstance(value, dict):
                doc["settings"] = {**(doc.get("settings") or {}), **value}
            else:
                doc[key] = value

        doc["name"] = name
        doc["created"] = existing.get("created", doc["created"])
        doc["updated"] = now.isoformat()

        stored_env = existing.get("environment") or {}
        environment: dict[str, Any] = {}
        for key, value in (doc.get("environment") or {}).items():
            if isinstance(value, Redacted):
                if key in stored_env:
                    environment[key] = stored_env[key]
                continue
            environment[key] = value
        doc["environment"] = self._vault.encrypt_sensitive(environment)

        try:
            Tag.model_validate(doc)
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid tag data for {name}: {e}") from e

        write_document(path, doc)
        _logger.debug("Saved tag %s", name)
        saved = await self.get_tag(name)
        assert saved is not None
        return saved

    async def list_tags(self) -> list[str]:
        if not self._configs_dir.exists():
            return []
        return sorted(p.stem for p in self._configs_dir.glob("*.json"))

    async def delete_tag(self, name: str) -> bool:
        validate_tag_name(name)
        active = await self.get_active_tag()
        if active == name:
            raise TagError(
                f"Cannot delete active tag '{name}'. Switch to another tag first.",
                {"tag": name},
            )
        path = self._tag_path(name)
        if not path.exists():
            return False
        path.unlink()
        _logger.info("Deleted tag %s", name)
        return True

    # ── Active pointer ────────────────────────────────────────────

    async def get_active_pointer(self) -> ActiveTagPointer | None:
        raw = read_document(self._active_file)
        if raw is None:
            return None
        try:
            return ActiveTagPointer.model_validate(raw)
        except PydanticValidationError as e:
            raise ConfigError(
                f"Invalid active tag file {self._active_file}: {e}",
                {"path": str(self._active_file)},
            ) from e

    async def get_active_tag(self) -> str | None:
        pointer = await self.get_active_pointer()
        return pointer.tag if pointer else None

    async def set_active_tag(self, name: str) -> ActiveTagPointer:
        validate_tag_name(name)
        pointer = ActiveTagPointer(tag=name)
        write_document(self._active_file, pointer.to_document())
        return pointer

    async def clear_active_tag(self) -> None:
        if self._active_file.exists():
            self._active_file.unlink()
