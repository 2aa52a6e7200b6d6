"""Global settings document with dot-delimited key addressing.

    store = ConfigStore(settings.config_file)
    store.get("integrations.cursor.configPath")
    store.set("settings.autoStartOnUse", True)
"""

from __future__ import annotations

import copy
import platform
from pathlib import Path
from typing import Any

from nvmcp.exceptions import ValidationError
from nvmcp.store.documents import read_document, write_document

CONFIG_VERSION = "2.0.0"

_MISSING = object()


def _claude_config_path() -> str:
    if platform.system() == "Darwin":
        return "~/Library/Application Support/Claude/claude_desktop_config.json"
    if platform.system() == "Windows":
        return "~/AppData/Roaming/Claude/claude_desktop_config.json"
    return "~/.config/Claude/claude_desktop_config.json"


def default_config() -> dict[str, Any]:
    return {
        "version": CONFIG_VERSION,
        "settings": {
            "defaultTag": None,
            "autoStartOnUse": False,
            "debugMode": False,
        },
        "performance": {
            "requestTimeout": 30000,
            "maxConcurrentProcesses": 10,
        },
        "integrations": {
            "claude": {"enabled": True, "configPath": _claude_config_path()},
            "cursor": {"enabled": True, "configPath": "~/.cursor/mcp.json"},
            "vscode": {"enabled": True, "configPath": "~/.vscode/mcp.json"},
        },
    }


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def get_nested(data: dict[str, Any], key: str, default: Any = None) -> Any:
    current: Any = data
    for part in key.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return default
    return current


def set_nested(data: dict[str, Any], key: str, value: Any) -> None:
    parts = key.split(".")
    current = data
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


class ConfigStore:
    """Lazily-loaded global settings, defaults merged under the file contents."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._data: dict[str, Any] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        if self._data is None:
            stored = read_document(self._path) or {}
            self._data = _deep_merge(default_config(), stored)
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        if not key:
            return copy.deepcopy(self.load())
        return get_nested(self.load(), key, default)

    def set(self, key: str, value: Any) -> None:
        if not key:
            raise ValidationError("Configuration key is required", {"field": "key"})
        data = self.load()
        set_nested(data, key, value)
        write_document(self._path, data)

    def has(self, key: str) -> bool:
        return get_nested(self.load(), key, _MISSING) is not _MISSING
