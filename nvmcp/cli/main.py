"""nvmcp CLI — manage tags of MCP servers and their processes.

    nvmcp create work --use
    nvmcp add github:modelcontextprotocol/servers
    nvmcp start
    nvmcp ps
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from nvmcp.cli import config as config_cmd
from nvmcp.cli import env as env_cmd
from nvmcp.cli import processes, tags
from nvmcp.cli.context import (
    NvmcpContext,
    console,
    err_console,
    get_context,
    run_command,
)
from nvmcp.config import NvmcpSettings
from nvmcp.doctor import Doctor
from nvmcp.sources import RegistryPackage, Repository, classify

app = typer.Typer(
    name="nvmcp",
    help="nvmcp -- tag-based environments for MCP servers.",
    no_args_is_help=True,
)

app.add_typer(env_cmd.app, name="env")
app.add_typer(config_cmd.app, name="config")

app.command("create")(tags.create)
app.command("use")(tags.use)
app.command("list")(tags.list_tags)
app.command("delete")(tags.delete)
app.command("add")(tags.add)
app.command("remove")(tags.remove)

app.command("start")(processes.start)
app.command("stop")(processes.stop)
app.command("ps")(processes.ps)
app.command("kill")(processes.kill)


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False, rich_tracebacks=debug)],
        force=True,
    )


@app.callback()
def root(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", help="Debug logging and full tracebacks"),
):
    config = NvmcpSettings()
    if debug:
        config.debug = True
    setup_logging(config.debug)
    if not isinstance(ctx.obj, NvmcpContext):
        ctx.obj = NvmcpContext.create(config)


@app.command("info")
def info(
    ctx: typer.Context,
    source: str = typer.Argument(help="Source string to inspect"),
):
    """Show how a source is classified, plus registry metadata."""
    nctx = get_context(ctx)

    async def _classify():
        return classify(source)

    descriptor = run_command(nctx, _classify())
    console.print(f"[bold]Type:[/bold] {descriptor.kind}")
    console.print(f"[bold]Name:[/bold] {descriptor.name}")

    if isinstance(descriptor, RegistryPackage):
        meta = run_command(nctx, nctx.registry_client.fetch_npm_package(descriptor.package))
        console.print(f"[bold]Package:[/bold] {meta.name}@{meta.version}")
        if meta.description:
            console.print(f"[bold]Description:[/bold] {meta.description}")
        if meta.homepage:
            console.print(f"[bold]Homepage:[/bold] {meta.homepage}")
    elif isinstance(descriptor, Repository):
        meta = run_command(
            nctx, nctx.registry_client.fetch_github_repo(descriptor.owner, descriptor.repo)
        )
        console.print(f"[bold]Repository:[/bold] {meta.full_name}")
        if meta.description:
            console.print(f"[bold]Description:[/bold] {meta.description}")
        console.print(f"[bold]Clone URL:[/bold] {meta.clone_url or descriptor.clone_url}")
        if meta.default_branch:
            console.print(f"[bold]Default branch:[/bold] {meta.default_branch}")
    else:
        console.print(f"[bold]URL:[/bold] {descriptor.url}")


@app.command("export")
def export(
    ctx: typer.Context,
    tool: str = typer.Argument(help="claude, cursor or vscode"),
    tag: str = typer.Argument(None, help="Tag to export (defaults to the active tag)"),
):
    """Write a tag's MCPs into an AI tool's config file."""
    nctx = get_context(ctx)
    path = run_command(nctx, nctx.manager.export(tool, tag))
    console.print(f"[green]Exported to {tool}[/green]")
    console.print(f"[dim]Config file: {path}[/dim]")


_CHECK_MARKS = {
    "ok": "[green]✓[/green]",
    "info": "[blue]i[/blue]",
    "warning": "[yellow]![/yellow]",
    "error": "[red]✗[/red]",
}


@app.command("doctor")
def doctor(
    ctx: typer.Context,
    tag: str = typer.Argument(None, help="Only check this tag's MCPs"),
):
    """Check the installation, launch tools, tags and tool integrations."""
    nctx = get_context(ctx)
    checker = Doctor(nctx.config, nctx.config_store, nctx.tag_store, nctx.resolver)
    report = run_command(nctx, checker.run(tag))

    console.print("[bold]nvmcp doctor[/bold]")
    for section, checks in report.sections().items():
        console.print(f"\n[cyan]{section}[/cyan]")
        for check in checks:
            detail = f" [dim]{check.detail}[/dim]" if check.detail else ""
            console.print(f"  {_CHECK_MARKS[check.status]} {check.subject}{detail}")

    console.print("\n[bold]Summary:[/bold]")
    if report.has_errors:
        console.print("[red]Some issues need attention[/red]")
        raise typer.Exit(1)
    if report.has_warnings:
        console.print("[yellow]Some warnings found, but nvmcp is usable[/yellow]")
    else:
        console.print("[green]All checks passed[/green]")


@app.command("version")
def version():
    """Show the installed version."""
    from nvmcp import __version__
    console.print(f"nvmcp v{__version__}")


def main() -> None:
    app()
