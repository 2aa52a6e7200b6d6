"""Tests for the nvmcp CLI surface."""

import asyncio
import sys
import time
from unittest.mock import AsyncMock, MagicMock, patch

import orjson
import psutil
import pytest
from typer.testing import CliRunner

from nvmcp.cli.context import NvmcpContext
from nvmcp.cli.main import app
from nvmcp.processes import ProcessRegistry, ProcessSupervisor
from nvmcp.sources.metadata import RegistryClient
from nvmcp.tags import TagManager
from nvmcp.types import LaunchSpec

runner = CliRunner()


@pytest.fixture
def cli_ctx(config, vault, config_store, tag_store, event_bus, resolver):
    # Tests that leave processes running clean them up themselves.
    supervisor = ProcessSupervisor(
        registry=ProcessRegistry(config.running_file),
        resolver=resolver,
        event_bus=event_bus,
        config=config,
    )
    return NvmcpContext(
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


def invoke(cli_ctx, *args, input=None):
    return runner.invoke(app, list(args), obj=cli_ctx, input=input)


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "nvmcp v" in result.output


def test_create_and_list(cli_ctx):
    result = invoke(cli_ctx, "create", "work", "-d", "Work tools", "--use")
    assert result.exit_code == 0
    assert "Created tag 'work'" in result.output

    result = invoke(cli_ctx, "list")
    assert result.exit_code == 0
    assert "work" in result.output
    assert "active" in result.output


def test_list_empty(cli_ctx):
    result = invoke(cli_ctx, "list")
    assert result.exit_code == 0
    assert "No tags found" in result.output


def test_invalid_tag_name_exits_1(cli_ctx):
    result = invoke(cli_ctx, "create", "help")
    assert result.exit_code == 1
    assert "Error:" in result.output
    assert "Traceback" not in result.output


def test_use_missing_tag_exits_1(cli_ctx):
    result = invoke(cli_ctx, "use", "ghost")
    assert result.exit_code == 1
    assert "not found" in result.output


def test_add_and_remove(cli_ctx):
    invoke(cli_ctx, "create", "work", "--use")

    result = invoke(cli_ctx, "add", "github:modelcontextprotocol/servers")
    assert result.exit_code == 0
    assert "servers" in result.output

    result = invoke(cli_ctx, "remove", "servers")
    assert result.exit_code == 0
    assert (cli_ctx.config.configs_dir / "work.json").exists()


def test_add_existing_declined_keeps_source(cli_ctx):
    invoke(cli_ctx, "create", "work", "--use")
    invoke(cli_ctx, "add", "npm:alpha")

    result = invoke(cli_ctx, "add", "npm:other/alpha", input="n\n")
    assert result.exit_code == 0
    assert "Cancelled" in result.output
    assert orjson.loads((cli_ctx.config.configs_dir / "work.json").read_bytes())["mcps"] == {
        "alpha": "npm:alpha"
    }


def test_add_existing_with_force(cli_ctx):
    invoke(cli_ctx, "create", "work", "--use")
    invoke(cli_ctx, "add", "npm:alpha")

    result = invoke(cli_ctx, "add", "npm:other/alpha", "--force")
    assert result.exit_code == 0
    assert "npm:other/alpha" in result.output


def test_add_without_active_tag_exits_1(cli_ctx):
    result = invoke(cli_ctx, "add", "npm:alpha")
    assert result.exit_code == 1
    assert "No active tag" in result.output


def test_delete_requires_confirmation(cli_ctx):
    invoke(cli_ctx, "create", "old")
    result = invoke(cli_ctx, "delete", "old", input="n\n")
    assert "Cancelled" in result.output
    assert (cli_ctx.config.configs_dir / "old.json").exists()

    result = invoke(cli_ctx, "delete", "old", "--yes")
    assert result.exit_code == 0
    assert not (cli_ctx.config.configs_dir / "old.json").exists()


def test_env_masks_sensitive_values(cli_ctx):
    invoke(cli_ctx, "create", "work", "--use")
    assert invoke(cli_ctx, "env", "set", "API_KEY", "sk-live-123").exit_code == 0
    assert invoke(cli_ctx, "env", "set", "PORT", "8080").exit_code == 0

    result = invoke(cli_ctx, "env", "list")
    assert "********" in result.output
    assert "sk-live-123" not in result.output
    assert "8080" in result.output

    result = invoke(cli_ctx, "env", "list", "--reveal")
    assert "sk-live-123" in result.output

    raw = (cli_ctx.config.configs_dir / "work.json").read_text()
    assert "sk-live-123" not in raw


def test_env_unset_missing_exits_1(cli_ctx):
    invoke(cli_ctx, "create", "work", "--use")
    result = invoke(cli_ctx, "env", "unset", "NOPE")
    assert result.exit_code == 1


def test_ps_with_nothing_running(cli_ctx):
    result = invoke(cli_ctx, "ps")
    assert result.exit_code == 0
    assert "No MCP processes running" in result.output


def test_kill_unknown_process_exits_1(cli_ctx):
    result = invoke(cli_ctx, "kill", "ghost-123")
    assert result.exit_code == 1
    assert "not found" in result.output


def test_config_set_and_get(cli_ctx):
    result = invoke(cli_ctx, "config", "set", "settings.autoStartOnUse", "true")
    assert result.exit_code == 0

    result = invoke(cli_ctx, "config", "get", "settings.autoStartOnUse")
    assert result.exit_code == 0
    assert result.output.strip() == "true"

    result = invoke(cli_ctx, "config", "get", "settings.nope")
    assert result.exit_code == 1


def test_export_to_cursor(cli_ctx, tmp_path):
    target = tmp_path / "cursor.json"
    invoke(cli_ctx, "config", "set", "integrations.cursor.configPath", str(target))
    invoke(cli_ctx, "create", "work", "--use")
    invoke(cli_ctx, "add", "npm:alpha")

    result = invoke(cli_ctx, "export", "cursor")
    assert result.exit_code == 0
    assert "alpha" in orjson.loads(target.read_bytes())["mcpServers"]


def test_info_npm_package(cli_ctx):
    mock_resp = MagicMock()
    mock_resp.status_code = 200
    mock_resp.json.return_value = {
        "name": "mcp-thing",
        "dist-tags": {"latest": "2.0.1"},
        "versions": {"2.0.1": {"description": "A thing"}},
    }
    mock_client = AsyncMock()
    mock_client.get = AsyncMock(return_value=mock_resp)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)

    with patch("nvmcp.sources.metadata.httpx.AsyncClient", return_value=mock_client):
        result = invoke(cli_ctx, "info", "npm:mcp-thing")

    assert result.exit_code == 0
    assert "mcp-thing@2.0.1" in result.output


def test_info_remote_url(cli_ctx):
    result = invoke(cli_ctx, "info", "https://mcp.example.com/sse")
    assert result.exit_code == 0
    assert "remote" in result.output
    assert "https://mcp.example.com/sse" in result.output


def test_info_unclassifiable_exits_1(cli_ctx):
    result = invoke(cli_ctx, "info", "not a source")
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_use_start_failure_still_reports_exports(cli_ctx, tmp_path):
    target = tmp_path / "cursor.json"
    invoke(cli_ctx, "config", "set", "integrations.cursor.configPath", str(target))
    invoke(cli_ctx, "create", "work")
    invoke(cli_ctx, "add", "npm:alpha", "--tag", "work")
    asyncio.run(cli_ctx.manager.set_env("BROKEN_VALUE", "a\x00b", "work"))

    result = invoke(cli_ctx, "use", "work", "--start", "--cursor")

    assert result.exit_code == 1
    assert "Exported to cursor" in result.output
    assert "alpha" in orjson.loads(target.read_bytes())["mcpServers"]


def test_started_stdio_server_outlives_the_command(cli_ctx, resolver):
    resolver.specs["stdiosrv"] = LaunchSpec(
        command=sys.executable, args=["-c", "import sys; sys.stdin.read()"]
    )
    invoke(cli_ctx, "create", "work", "--use")
    invoke(cli_ctx, "add", "npm:stdiosrv")

    result = invoke(cli_ctx, "start")
    try:
        assert result.exit_code == 0
        time.sleep(1.0)

        result = invoke(cli_ctx, "ps")
        assert "stdiosrv" in result.output
    finally:
        running = cli_ctx.config.running_file
        records = orjson.loads(running.read_bytes()) if running.exists() else {}
        for record in records.values():
            try:
                proc = psutil.Process(record["pid"])
                proc.kill()
                proc.wait(timeout=5)
            except (KeyError, psutil.NoSuchProcess):
                pass


def test_doctor_exit_code_follows_errors(cli_ctx):
    for attr in ("node_command", "npx_command", "git_command"):
        setattr(cli_ctx.config, attr, sys.executable)
    invoke(cli_ctx, "create", "work", "--use")
    invoke(cli_ctx, "add", "npm:alpha")

    result = invoke(cli_ctx, "doctor")
    assert result.exit_code == 0
    assert "tag work" in result.output
    assert "Summary:" in result.output

    (cli_ctx.config.cache_dir / "hollow").mkdir(parents=True)
    asyncio.run(cli_ctx.tag_store.save_tag(
        "work", mcps={"alpha": "npm:alpha", "hollow": "git+https://example.com/hollow.git"}
    ))
    result = invoke(cli_ctx, "doctor", "work")
    assert result.exit_code == 1
    assert "no entry point" in result.output
    assert "Some issues need attention" in result.output
