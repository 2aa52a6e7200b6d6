"""Environment commands — nvmcp env set / unset / list."""

from __future__ import annotations

import typer
from rich.table import Table

from nvmcp.cli.context import console, get_context, run_command
from nvmcp.crypto import is_sensitive_field_name

app = typer.Typer(help="Manage a tag's environment variables", no_args_is_help=True)

_TAG_OPTION = typer.Option(None, "--tag", "-t", help="Tag (defaults to the active tag)")


@app.command("set")
def set_var(
    ctx: typer.Context,
    key: str = typer.Argument(help="Variable name"),
    value: str = typer.Argument(help="Variable value"),
    tag: str = _TAG_OPTION,
):
    """Set a variable. Sensitive names are encrypted at rest."""
    nctx = get_context(ctx)
    saved = run_command(nctx, nctx.manager.set_env(key, value, tag))
    note = " [dim](encrypted)[/dim]" if is_sensitive_field_name(key) else ""
    console.print(f"[green]Set {key} in tag '{saved.name}'[/green]{note}")


@app.command("unset")
def unset_var(
    ctx: typer.Context,
    key: str = typer.Argument(help="Variable name"),
    tag: str = _TAG_OPTION,
):
    """Remove a variable."""
    nctx = get_context(ctx)
    saved = run_command(nctx, nctx.manager.unset_env(key, tag))
    console.print(f"[green]Removed {key} from tag '{saved.name}'[/green]")


@app.command("list")
def list_vars(
    ctx: typer.Context,
    tag: str = _TAG_OPTION,
    reveal: bool = typer.Option(False, "--reveal", help="Show sensitive values"),
):
    """List variables. Sensitive values are masked."""
    nctx = get_context(ctx)
    env = run_command(nctx, nctx.manager.list_env(tag, reveal=reveal))

    if not env:
        console.print("[dim]No environment variables set.[/dim]")
        return

    table = Table(title="Environment")
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    for key, value in env.items():
        table.add_row(key, value)
    console.print(table)
