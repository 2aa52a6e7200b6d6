"""TagManager — maps each command onto the store and the supervisor.

Validation runs before any mutation. Multi-MCP operations report per-item
results and never abort the batch on a single failure.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel

from nvmcp.crypto import Redacted, is_sensitive_field_name
from nvmcp.exceptions import NvmcpError, TagError, ValidationError
from nvmcp.export import EXPORT_TARGETS, merge_servers, server_entry
from nvmcp.processes import ProcessRecord, ProcessSupervisor, ProcessView
from nvmcp.sources import SourceResolver, classify
from nvmcp.store import ConfigStore, Tag, TagStore
from nvmcp.validation import (
    sanitize_input,
    validate_description,
    validate_env_key,
    validate_mcp_name,
    validate_process_id,
    validate_tag_name,
)

_logger = logging.getLogger(__name__)

MASK = "********"


class StartResult(BaseModel):
    name: str
    status: Literal["started", "failed", "skipped"]
    process_id: str | None = None
    error: str | None = None


class TagSummary(BaseModel):
    name: str
    active: bool = False
    valid: bool = True
    mcp_count: int = 0
    description: str = ""


class TagManager:
    def __init__(
        self,
        store: TagStore,
        config_store: ConfigStore,
        supervisor: ProcessSupervisor,
        resolver: SourceResolver,
    ) -> None:
        self._store = store
        self._config = config_store
        self._supervisor = supervisor
        self._resolver = resolver

    # ── Tag lookup ────────────────────────────────────────────────

    async def get(self, name: str) -> Tag:
        tag = await self._store.get_tag(name)
        if tag is None:
            raise TagError(
                f"Tag '{name}' not found. Run 'nvmcp list' to see available tags.",
                {"tag": name},
            )
        return tag

    async def active_tag(self) -> str | None:
        return await self._store.get_active_tag()

    async def target_tag(self, name: str | None = None) -> Tag:
        """The named tag, or the active one when no name is given."""
        if name is None:
            name = await self._store.get_active_tag()
            if name is None:
                raise TagError(
                    "No active tag. Create or switch to a tag first: nvmcp use <tag>"
                )
        return await self.get(name)

    # ── Tag lifecycle ─────────────────────────────────────────────

    async def create(self, name: str, description: str = "", use: bool = False) -> Tag:
        name = validate_tag_name(sanitize_input(name))
        description = validate_description(sanitize_input(description or ""))
        if await self._store.tag_exists(name):
            raise TagError(f"Tag '{name}' already exists", {"tag": name})

        tag = await self._store.save_tag(name, description=description, mcps={})
        if use:
            await self._store.set_active_tag(name)
        _logger.info("Created tag %s", name)
        return tag

    async def use(self, name: str, start: bool = False) -> list[StartResult]:
        """Activate a tag. Starts its MCPs when asked or configured to."""
        name = validate_tag_name(sanitize_input(name))
        tag = await self.get(name)
        await self._store.set_active_tag(name)

        auto = tag.settings.auto_start or bool(self._config.get("settings.autoStartOnUse", False))
        if (start or auto) and tag.mcps:
            return await self.start(name)
        return []

    async def list(self) -> list[TagSummary]:
        active = await self._store.get_active_tag()
        summaries = []
        for name in await self._store.list_tags():
            try:
                tag = await self._store.get_tag(name)
            except NvmcpError as e:
                _logger.warning("Skipping unreadable tag %s: %s", name, e)
                tag = None
            if tag is None:
                summaries.append(TagSummary(name=name, active=name == active, valid=False))
                continue
            summaries.append(TagSummary(
                name=name,
                active=name == active,
                mcp_count=len(tag.mcps),
                description=tag.description,
            ))
        return summaries

    async def delete(self, name: str) -> None:
        name = validate_tag_name(name)
        if not await self._store.tag_exists(name):
            raise TagError(f"Tag '{name}' not found", {"tag": name})
        await self._store.delete_tag(name)

    # ── MCP membership ────────────────────────────────────────────

    async def add(
        self,
        source: str,
        name: str | None = None,
        tag: str | None = None,
        overwrite: bool = False,
    ) -> tuple[Tag, str]:
        """Declare an MCP in a tag. Returns the saved tag and the MCP name."""
        source = sanitize_input(source)
        descriptor = classify(source)
        mcp_name = validate_mcp_name(sanitize_input(name) if name else descriptor.name)
        target = await self.target_tag(tag)

        if mcp_name in target.mcps and not overwrite:
            raise TagError(
                f"MCP '{mcp_name}' already exists in tag '{target.name}'",
                {"tag": target.name, "mcp": mcp_name},
            )
        saved = await self._store.save_tag(target.name, mcps={**target.mcps, mcp_name: source})
        return saved, mcp_name

    async def remove(self, mcp_name: str, tag: str | None = None) -> Tag:
        mcp_name = validate_mcp_name(mcp_name)
        target = await self.target_tag(tag)
        if mcp_name not in target.mcps:
            raise TagError(
                f"MCP '{mcp_name}' not found in tag '{target.name}'",
                {"tag": target.name, "mcp": mcp_name},
            )
        mcps = {k: v for k, v in target.mcps.items() if k != mcp_name}
        return await self._store.save_tag(target.name, mcps=mcps)

    # ── Processes ─────────────────────────────────────────────────

    def build_environment(self, tag: Tag) -> dict[str, str]:
        """Decrypted tag environment; undecryptable values are left out."""
        env: dict[str, str] = {}
        for key, value in tag.environment.items():
            if isinstance(value, Redacted):
                _logger.warning(
                    "Leaving %s out of the environment for tag %s: %s",
                    key, tag.name, value.reason,
                )
                continue
            if isinstance(value, (str, int, float, bool)):
                env[key] = str(value)
        return env

    async def start(self, tag: str | None = None, duplicates: bool = False) -> list[StartResult]:
        target = await self.target_tag(tag)
        env = self.build_environment(target)
        running = set()
        if not duplicates:
            running = {
                view.record.name
                for view in await self._supervisor.list()
                if view.record.tag == target.name
            }

        results = []
        for mcp_name, source in target.mcps.items():
            if mcp_name in running:
                results.append(StartResult(name=mcp_name, status="skipped"))
                continue
            results.append(await self._start_one(target.name, mcp_name, source, env))
        return results

    async def start_mcp(self, mcp_name: str, tag: str | None = None) -> StartResult:
        target = await self.target_tag(tag)
        if mcp_name not in target.mcps:
            raise TagError(
                f"MCP '{mcp_name}' not found in tag '{target.name}'",
                {"tag": target.name, "mcp": mcp_name},
            )
        env = self.build_environment(target)
        return await self._start_one(target.name, mcp_name, target.mcps[mcp_name], env)

    async def _start_one(
        self, tag_name: str, mcp_name: str, source: str, env: dict[str, str]
    ) -> StartResult:
        try:
            process_id = await self._supervisor.start(mcp_name, source, env, tag=tag_name)
        except NvmcpError as e:
            _logger.debug("Start of %s failed", mcp_name, exc_info=True)
            return StartResult(name=mcp_name, status="failed", error=str(e))
        return StartResult(name=mcp_name, status="started", process_id=process_id)

    async def stop(self, tag: str | None = None) -> list[ProcessRecord]:
        """Stop the processes a tag started, or everything when no tag is given or active."""
        target_name = None
        if tag is not None or await self._store.get_active_tag() is not None:
            target_name = (await self.target_tag(tag)).name

        stopped = []
        for view in await self._supervisor.list():
            if target_name is not None and view.record.tag != target_name:
                continue
            try:
                stopped.append(await self._supervisor.stop(view.id))
            except NvmcpError as e:
                _logger.warning("Failed to stop %s: %s", view.record.name, e)
        return stopped

    async def ps(self) -> list[ProcessView]:
        return await self._supervisor.list()

    async def kill(self, process_id: str) -> ProcessRecord:
        return await self._supervisor.stop(validate_process_id(process_id))

    # ── Environment ───────────────────────────────────────────────

    async def set_env(self, key: str, value: str, tag: str | None = None) -> Tag:
        key = validate_env_key(key)
        target = await self.target_tag(tag)
        return await self._store.save_tag(
            target.name, environment={**target.environment, key: value}
        )

    async def unset_env(self, key: str, tag: str | None = None) -> Tag:
        key = validate_env_key(key)
        target = await self.target_tag(tag)
        if key not in target.environment:
            raise TagError(
                f"Variable '{key}' is not set in tag '{target.name}'",
                {"tag": target.name, "key": key},
            )
        environment = {k: v for k, v in target.environment.items() if k != key}
        return await self._store.save_tag(target.name, environment=environment)

    async def list_env(self, tag: str | None = None, reveal: bool = False) -> dict[str, str]:
        """Environment for display. Sensitive values are masked unless ``reveal``."""
        target = await self.target_tag(tag)
        shown = {}
        for key, value in sorted(target.environment.items()):
            if isinstance(value, Redacted):
                shown[key] = str(value)
            elif is_sensitive_field_name(key) and not reveal:
                shown[key] = MASK
            else:
                shown[key] = str(value)
        return shown

    # ── Export ────────────────────────────────────────────────────

    async def export(self, tool: str, tag: str | None = None) -> Path:
        """Write the tag's MCPs into ``tool``'s config file."""
        if tool not in EXPORT_TARGETS:
            raise ValidationError(
                f"Unknown export target '{tool}'. Choose from: {', '.join(EXPORT_TARGETS)}",
                {"field": "tool", "value": tool},
            )
        config_path = self._config.get(f"integrations.{tool}.configPath")
        if not config_path:
            raise TagError(f"No configuration path defined for {tool}", {"tool": tool})
        if self._config.get(f"integrations.{tool}.enabled", True) is False:
            raise TagError(f"Integration '{tool}' is disabled", {"tool": tool})

        target = await self.target_tag(tag)
        env = self.build_environment(target)
        servers = {}
        for mcp_name, source in target.mcps.items():
            spec = await self._resolver.resolve(classify(source))
            servers[mcp_name] = server_entry(spec, env)
        return merge_servers(Path(config_path), servers)
