"""Shared fixtures — an isolated nvmcp home and a resolver that never touches the network."""

from __future__ import annotations

import sys

import pytest
import pytest_asyncio

from nvmcp.cli.context import NvmcpContext
from nvmcp.config import NvmcpSettings
from nvmcp.crypto import CryptoVault
from nvmcp.events.bus import EventBus
from nvmcp.exceptions import ResolutionError
from nvmcp.processes import ProcessRegistry, ProcessSupervisor
from nvmcp.sources import SourceResolver
from nvmcp.sources.metadata import RegistryClient
from nvmcp.store import ConfigStore, TagStore
from nvmcp.tags import TagManager
from nvmcp.types import LaunchSpec

SLEEPER = LaunchSpec(command=sys.executable, args=["-c", "import time; time.sleep(60)"])


class FakeResolver(SourceResolver):
    """Resolves every source to a sleeping Python child.

    Sources whose derived name starts with ``broken`` fail to resolve;
    ``specs`` overrides the launch spec per derived name.
    """

    def __init__(self, cache_dir, config, specs: dict[str, LaunchSpec] | None = None):
        super().__init__(cache_dir, config)
        self.specs = specs or {}
        self.resolved = []

    async def resolve(self, descriptor):
        self.resolved.append(descriptor)
        if descriptor.name.startswith("broken"):
            raise ResolutionError(f"Could not determine how to run {descriptor.name}")
        return self.specs.get(descriptor.name, SLEEPER)


@pytest.fixture
def config(tmp_path):
    return NvmcpSettings(
        home_dir=tmp_path / "nvmcp",
        kill_timeout_s=1.0,
        start_timeout_s=30.0,
        poll_interval_s=0.05,
        python_command=sys.executable,
    )


@pytest.fixture
def vault(config):
    return CryptoVault(config.master_key_file)


@pytest.fixture
def tag_store(config, vault):
    return TagStore(config.configs_dir, config.active_tag_file, vault)


@pytest.fixture
def config_store(config):
    return ConfigStore(config.config_file)


@pytest.fixture
def resolver(config):
    return FakeResolver(config.cache_dir, config)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest_asyncio.fixture
async def supervisor(config, resolver, event_bus):
    sup = ProcessSupervisor(
        registry=ProcessRegistry(config.running_file),
        resolver=resolver,
        event_bus=event_bus,
        config=config,
    )
    yield sup
    await sup.stop_all()
    await sup.drain()
    await sup.wait()


@pytest.fixture
def manager(tag_store, config_store, supervisor, resolver):
    return TagManager(tag_store, config_store, supervisor, resolver)


@pytest.fixture
def nctx(config, vault, config_store, tag_store, event_bus, resolver, supervisor, manager):
    return NvmcpContext(
        config=config,
        vault=vault,
        config_store=config_store,
        tag_store=tag_store,
        event_bus=event_bus,
        resolver=resolver,
        supervisor=supervisor,
        manager=manager,
        registry_client=RegistryClient(config),
    )
