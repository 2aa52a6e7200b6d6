"""CLI runtime context — wires the subsystems for one invocation.

Built fresh per command by the root callback and handed down through
``typer.Context.obj``; tests construct it directly around fakes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Coroutine

import typer
from rich.console import Console

from nvmcp.config import NvmcpSettings
from nvmcp.crypto import CryptoVault
from nvmcp.events.bus import EventBus, log_transitions
from nvmcp.exceptions import NvmcpError
from nvmcp.processes import ProcessRegistry, ProcessSupervisor
from nvmcp.sources import SourceResolver
from nvmcp.sources.metadata import RegistryClient
from nvmcp.store import ConfigStore, TagStore
from nvmcp.tags import TagManager

_logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)


@dataclass
class NvmcpContext:
    config: NvmcpSettings
    vault: CryptoVault
    config_store: ConfigStore
    tag_store: TagStore
    event_bus: EventBus
    resolver: SourceResolver
    supervisor: ProcessSupervisor
    manager: TagManager
    registry_client: RegistryClient

    @property
    def debug(self) -> bool:
        return self.config.debug

    @classmethod
    def create(cls, config: NvmcpSettings | None = None) -> NvmcpContext:
        config = config or NvmcpSettings()
        vault = CryptoVault(config.master_key_file)
        config_store = ConfigStore(config.config_file)
        tag_store = TagStore(config.configs_dir, config.active_tag_file, vault)
        event_bus = EventBus()
        log_transitions(event_bus)
        resolver = SourceResolver(config.cache_dir, config)
        supervisor = ProcessSupervisor(
            registry=ProcessRegistry(config.running_file),
            resolver=resolver,
            event_bus=event_bus,
            config=config,
        )
        return cls(
            config=config,
            vault=vault,
            config_store=config_store,
            tag_store=tag_store,
            event_bus=event_bus,
            resolver=resolver,
            supervisor=supervisor,
            manager=TagManager(tag_store, config_store, supervisor, resolver),
            registry_client=RegistryClient(config),
        )


def run_async(coro: Coroutine) -> Any:
    """Run an async coroutine from sync CLI code."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)


def get_context(ctx: typer.Context) -> NvmcpContext:
    if not isinstance(ctx.obj, NvmcpContext):
        ctx.obj = NvmcpContext.create()
    return ctx.obj


def run_command(nctx: NvmcpContext, coro: Coroutine) -> Any:
    """run_async with the CLI error contract: one ``Error:`` line, exit 1.

    Tracebacks are shown only in debug mode.
    """
    try:
        return run_async(coro)
    except NvmcpError as e:
        if nctx.debug:
            err_console.print_exception()
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    except Exception as e:
        if nctx.debug:
            err_console.print_exception()
        else:
            _logger.debug("Unexpected error", exc_info=True)
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
