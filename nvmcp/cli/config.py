"""Global settings commands — nvmcp config get / set."""

from __future__ import annotations

from typing import Any

import orjson
import typer

from nvmcp.cli.context import console, get_context, run_command

app = typer.Typer(help="Read and change global settings", no_args_is_help=True)


def parse_value(raw: str) -> Any:
    """JSON literals (true, 42, {"a": 1}) are parsed; anything else stays a string."""
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError:
        return raw


@app.command("get")
def get(
    ctx: typer.Context,
    key: str = typer.Argument("", help="Dot-delimited key, e.g. settings.debugMode"),
):
    """Show a setting (or everything when no key is given)."""
    nctx = get_context(ctx)

    async def _get():
        if key and not nctx.config_store.has(key):
            return None, False
        return nctx.config_store.get(key), True

    value, found = run_command(nctx, _get())
    if not found:
        console.print(f"[yellow]{key} is not set[/yellow]")
        raise typer.Exit(1)
    if isinstance(value, (dict, list)):
        console.print_json(orjson.dumps(value).decode())
    else:
        console.print(orjson.dumps(value).decode() if value is None or isinstance(value, bool) else str(value))


@app.command("set")
def set_value(
    ctx: typer.Context,
    key: str = typer.Argument(help="Dot-delimited key"),
    value: str = typer.Argument(help="Value (JSON literals are parsed)"),
):
    """Change a setting."""
    nctx = get_context(ctx)
    parsed = parse_value(value)

    async def _set():
        nctx.config_store.set(key, parsed)

    run_command(nctx, _set())
    console.print(f"[green]Set {key} = {orjson.dumps(parsed).decode()}[/green]")
