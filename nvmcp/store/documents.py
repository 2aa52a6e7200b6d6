"""JSON document helpers shared by every on-disk store."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

import orjson

from nvmcp.exceptions import ConfigError


def read_document(path: Path) -> dict[str, Any] | None:
    """Load a JSON object from disk. Missing file → None, malformed → ConfigError."""
    if not path.exists():
        return None
    try:
        data = orjson.loads(path.read_bytes())
    except orjson.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}", {"path": str(path)}) from e
    except OSError as e:
        raise ConfigError(f"Could not read {path}: {e}", {"path": str(path)}) from e
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a JSON object in {path}", {"path": str(path)})
    return data


def write_document(path: Path, data: dict[str, Any]) -> None:
    """Write via a sibling temp file and ``os.replace``; readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = orjson.dumps(data, option=orjson.OPT_INDENT_2) + b"\n"
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            os.chmod(tmp_path, path.stat().st_mode & 0o777)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
