"""Core types shared across all nvmcp subsystems."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ── ID Types ──────────────────────────────────────────────────────────────────

TagName: TypeAlias = str
McpName: TypeAlias = str
ProcessId: TypeAlias = str


def new_process_id(name: McpName) -> ProcessId:
    """`<name>-<epoch millis>`, unique per start attempt."""
    return f"{name}-{int(time.time() * 1000)}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Persisted models ──────────────────────────────────────────────────────────


class StoredModel(BaseModel):
    """Base for everything written to disk: camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class LaunchSpec(StoredModel):
    """Concrete command needed to run a resolved MCP."""

    command: str
    args: list[str] = Field(default_factory=list)
    working_dir: str | None = None

    def argv(self) -> list[str]:
        return [self.command, *self.args]
