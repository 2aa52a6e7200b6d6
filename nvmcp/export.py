"""Export sink — write resolved MCPs into a tool's JSON config file.

Only ``mcpServers.<name>`` entries are replaced; every other key in the
target file is preserved.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from nvmcp.exceptions import ConfigError
from nvmcp.store.documents import read_document, write_document
from nvmcp.types import LaunchSpec

_logger = logging.getLogger(__name__)

EXPORT_TARGETS = ("claude", "cursor", "vscode")


def server_entry(spec: LaunchSpec, env: dict[str, str] | None = None) -> dict[str, Any]:
    entry: dict[str, Any] = {"command": spec.command, "args": list(spec.args)}
    if spec.working_dir:
        entry["cwd"] = spec.working_dir
    if env:
        entry["env"] = dict(env)
    return entry


def merge_servers(path: Path, servers: dict[str, dict[str, Any]]) -> Path:
    """Merge ``servers`` under ``mcpServers`` of the JSON file at ``path``.

    A malformed target raises ConfigError instead of being overwritten.
    """
    path = path.expanduser()
    data = read_document(path) or {}
    existing = data.get("mcpServers")
    if existing is None:
        existing = {}
    elif not isinstance(existing, dict):
        raise ConfigError(f"'mcpServers' in {path} is not an object", {"path": str(path)})

    data["mcpServers"] = {**existing, **servers}
    write_document(path, data)
    _logger.info("Wrote %d server(s) to %s", len(servers), path)
    return path
