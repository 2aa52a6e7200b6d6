"""Doctor — health checks for the installation, launch tools, tags and integrations.

Nothing here mutates state: repositories are never cloned and servers are
never started. Each finding is a ``Check`` with one of four severities;
only ``error`` makes the report fail.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from nvmcp.config import NvmcpSettings
from nvmcp.crypto import CryptoVault, Redacted
from nvmcp.exceptions import NvmcpError
from nvmcp.export import EXPORT_TARGETS
from nvmcp.sources import Repository, SourceResolver, VcsUrl, classify, find_entry_point
from nvmcp.store import ConfigStore, TagStore
from nvmcp.store.documents import read_document

_logger = logging.getLogger(__name__)

VERSION_TIMEOUT_S = 5.0

CheckStatus = Literal["ok", "info", "warning", "error"]

# (label, settings attribute, severity when missing, what it is needed for)
LAUNCH_TOOLS = (
    ("Node.js", "node_command", "error", "repositories with a JavaScript entry point"),
    ("npx", "npx_command", "error", "npm packages and remote endpoints"),
    ("git", "git_command", "warning", "github: and git+ sources"),
    ("Python", "python_command", "warning", "repositories with a Python entry point"),
)


class Check(BaseModel):
    section: str
    subject: str
    status: CheckStatus
    detail: str = ""


class DoctorReport(BaseModel):
    checks: list[Check] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(c.status == "error" for c in self.checks)

    @property
    def has_warnings(self) -> bool:
        return any(c.status == "warning" for c in self.checks)

    def sections(self) -> dict[str, list[Check]]:
        grouped: dict[str, list[Check]] = {}
        for check in self.checks:
            grouped.setdefault(check.section, []).append(check)
        return grouped


async def command_version(command: str, timeout: float = VERSION_TIMEOUT_S) -> str | None:
    """First line of ``<command> --version``; None when the command is not on PATH."""
    path = shutil.which(command)
    if path is None:
        return None
    proc = await asyncio.create_subprocess_exec(
        path, "--version",
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    try:
        out, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()
        return "installed (no version within timeout)"
    lines = out.decode("utf-8", errors="replace").strip().splitlines()
    return lines[0] if lines else "installed"


class Doctor:
    def __init__(
        self,
        config: NvmcpSettings,
        config_store: ConfigStore,
        tag_store: TagStore,
        resolver: SourceResolver,
    ) -> None:
        self._config = config
        self._config_store = config_store
        self._tag_store = tag_store
        self._resolver = resolver

    async def run(self, tag: str | None = None) -> DoctorReport:
        """Every check, or only ``tag`` for the tag section."""
        report = DoctorReport()
        report.checks.extend(self.check_installation())
        report.checks.extend(await self.check_launch_tools())
        report.checks.extend(await self.check_tags(tag))
        report.checks.extend(self.check_integrations())
        return report

    # ── Installation ──────────────────────────────────────────────

    def check_installation(self) -> list[Check]:
        cfg = self._config
        section = "installation"
        if not cfg.home_dir.exists():
            return [Check(
                section=section, subject=str(cfg.home_dir), status="warning",
                detail="not initialized; run 'nvmcp create <tag>'",
            )]

        checks = [Check(section=section, subject=str(cfg.home_dir), status="ok")]
        for directory in (cfg.configs_dir, cfg.cache_dir, cfg.logs_dir):
            if not directory.exists():
                checks.append(Check(
                    section=section, subject=directory.name, status="info",
                    detail="not created yet",
                ))

        key_file = cfg.master_key_file
        if key_file.exists():
            mode = key_file.stat().st_mode & 0o777
            try:
                CryptoVault(key_file).master_secret()
            except NvmcpError as e:
                checks.append(Check(section=section, subject="master key", status="error", detail=str(e)))
            else:
                if mode & 0o077:
                    checks.append(Check(
                        section=section, subject="master key", status="warning",
                        detail=f"permissions are {mode:o}, expected 600",
                    ))
                else:
                    checks.append(Check(section=section, subject="master key", status="ok"))
        return checks

    # ── Launch tools ──────────────────────────────────────────────

    async def check_launch_tools(self) -> list[Check]:
        checks = []
        for label, attr, missing, needed_for in LAUNCH_TOOLS:
            command = getattr(self._config, attr)
            try:
                version = await command_version(command)
            except OSError as e:
                _logger.debug("Could not run %s --version", command, exc_info=True)
                checks.append(Check(section="dependencies", subject=label, status=missing, detail=str(e)))
                continue
            if version is None:
                checks.append(Check(
                    section="dependencies", subject=label, status=missing,
                    detail=f"'{command}' not found (needed for {needed_for})",
                ))
            else:
                checks.append(Check(section="dependencies", subject=label, status="ok", detail=version))
        return checks

    # ── Tags ──────────────────────────────────────────────────────

    async def check_tags(self, tag: str | None = None) -> list[Check]:
        names = [tag] if tag else await self._tag_store.list_tags()
        if not names:
            return [Check(section="tags", subject="tags", status="warning", detail="no tags created")]
        checks = []
        for name in names:
            checks.extend(await self.check_tag(name))
        return checks

    async def check_tag(self, name: str) -> list[Check]:
        section = f"tag {name}"
        try:
            tag = await self._tag_store.get_tag(name)
        except NvmcpError as e:
            return [Check(section=section, subject=name, status="error", detail=str(e))]
        if tag is None:
            return [Check(section=section, subject=name, status="error", detail="tag not found")]
        if not tag.mcps:
            return [Check(section=section, subject=name, status="warning", detail="no MCPs configured")]

        checks = [self._check_source(section, mcp_name, source) for mcp_name, source in tag.mcps.items()]
        redacted = sorted(k for k, v in tag.environment.items() if isinstance(v, Redacted))
        if redacted:
            checks.append(Check(
                section=section, subject="environment", status="warning",
                detail=f"cannot decrypt {', '.join(redacted)}; these are left out when starting",
            ))
        return checks

    def _check_source(self, section: str, mcp_name: str, source: str) -> Check:
        try:
            descriptor = classify(source)
        except NvmcpError as e:
            return Check(section=section, subject=mcp_name, status="error", detail=str(e))

        if not isinstance(descriptor, (Repository, VcsUrl)):
            return Check(
                section=section, subject=mcp_name, status="ok",
                detail=f"{descriptor.kind} source, runs via {self._config.npx_command}",
            )

        cache = self._resolver.cache_path(descriptor)
        if not cache.exists():
            return Check(
                section=section, subject=mcp_name, status="info",
                detail="not cloned yet; cloned on first start",
            )
        try:
            spec = find_entry_point(cache, self._config.node_command, self._config.python_command)
        except NvmcpError as e:
            return Check(section=section, subject=mcp_name, status="error", detail=str(e))
        return Check(
            section=section, subject=mcp_name, status="ok",
            detail=" ".join(spec.argv()),
        )

    # ── Integrations ──────────────────────────────────────────────

    def check_integrations(self) -> list[Check]:
        checks = []
        for tool in EXPORT_TARGETS:
            enabled = self._config_store.get(f"integrations.{tool}.enabled", True)
            config_path = self._config_store.get(f"integrations.{tool}.configPath")
            if enabled is False:
                checks.append(Check(section="integrations", subject=tool, status="info", detail="disabled"))
                continue
            if not config_path:
                checks.append(Check(
                    section="integrations", subject=tool, status="warning",
                    detail="no configPath set",
                ))
                continue

            path = Path(config_path).expanduser()
            if not path.exists():
                checks.append(Check(
                    section="integrations", subject=tool, status="info",
                    detail=f"not found at {path}",
                ))
                continue
            try:
                data = read_document(path) or {}
            except NvmcpError as e:
                checks.append(Check(section="integrations", subject=tool, status="warning", detail=str(e)))
                continue
            servers = data.get("mcpServers")
            count = len(servers) if isinstance(servers, dict) else 0
            checks.append(Check(
                section="integrations", subject=tool, status="ok",
                detail=f"{count} MCP server(s) configured in {path}",
            ))
        return checks
