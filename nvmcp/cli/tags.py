"""Tag commands — nvmcp create, use, list, delete, add, remove."""

from __future__ import annotations

import typer
from rich.table import Table

from nvmcp.cli.context import console, get_context, run_command
from nvmcp.cli.processes import print_start_results
from nvmcp.sources import classify


def create(
    ctx: typer.Context,
    name: str = typer.Argument(help="Tag name"),
    description: str = typer.Option("", "--description", "-d", help="Tag description"),
    use: bool = typer.Option(False, "--use", help="Switch to the tag after creating it"),
):
    """Create a new tag."""
    nctx = get_context(ctx)
    tag = run_command(nctx, nctx.manager.create(name, description, use=use))

    console.print(f"[green]Created tag '{tag.name}'[/green]")
    if use:
        console.print(f"[green]Switched to tag '{tag.name}'[/green]")
    console.print("\nNext steps:")
    console.print("  [cyan]nvmcp add <source>[/cyan]     Add MCPs to this tag")
    console.print("  [cyan]nvmcp start[/cyan]            Start all MCPs")


def use(
    ctx: typer.Context,
    name: str = typer.Argument(help="Tag to activate"),
    start: bool = typer.Option(False, "--start", help="Start the tag's MCPs"),
    claude: bool = typer.Option(False, "--claude", help="Export to Claude Desktop"),
    cursor: bool = typer.Option(False, "--cursor", help="Export to Cursor"),
    vscode: bool = typer.Option(False, "--vscode", help="Export to VS Code"),
):
    """Switch the active tag."""
    nctx = get_context(ctx)
    targets = [t for t, wanted in (("claude", claude), ("cursor", cursor), ("vscode", vscode)) if wanted]

    async def _use():
        results = await nctx.manager.use(name, start=start)
        tag = await nctx.manager.get(name)
        exported = [(t, await nctx.manager.export(t, name)) for t in targets]
        return tag, results, exported

    tag, results, exported = run_command(nctx, _use())

    console.print(f"[green]Active tag: [cyan]{tag.name}[/cyan][/green]")
    if tag.description:
        console.print(f"Description: {tag.description}")
    if tag.mcps:
        console.print(f"MCPs configured: {len(tag.mcps)}")
    else:
        console.print("\nAdd MCPs to this tag:\n  [cyan]nvmcp add <source>[/cyan]")
    for tool, path in exported:
        console.print(f"[green]Exported to {tool}[/green] [dim]{path}[/dim]")
    if results:
        if print_start_results(results):
            raise typer.Exit(1)
    elif tag.mcps:
        console.print("\nTo start MCPs: [cyan]nvmcp start[/cyan]")


def list_tags(ctx: typer.Context):
    """List all tags."""
    nctx = get_context(ctx)
    summaries = run_command(nctx, nctx.manager.list())

    if not summaries:
        console.print("[dim]No tags found.[/dim]")
        console.print("\nCreate your first tag:\n  [cyan]nvmcp create <tag-name>[/cyan]")
        return

    table = Table(title="Tags")
    table.add_column("Tag", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("MCPs", justify="right")
    table.add_column("Description", style="white")

    for s in summaries:
        if not s.valid:
            status = "[red]invalid[/red]"
        elif s.active:
            status = "[bold green]active[/bold green]"
        else:
            status = "[dim]inactive[/dim]"
        table.add_row(s.name, status, str(s.mcp_count), s.description)

    console.print(table)


def delete(
    ctx: typer.Context,
    name: str = typer.Argument(help="Tag to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a tag."""
    nctx = get_context(ctx)
    if not yes and not typer.confirm(f"Delete tag '{name}'? This cannot be undone.", default=False):
        console.print("Cancelled.")
        return
    run_command(nctx, nctx.manager.delete(name))
    console.print(f"[green]Deleted tag '{name}'[/green]")


def add(
    ctx: typer.Context,
    source: str = typer.Argument(help="npm:<pkg>, github:<owner>/<repo>, URL or git+<url>"),
    name: str = typer.Option(None, "--name", "-n", help="MCP name (derived from the source by default)"),
    tag: str = typer.Option(None, "--tag", "-t", help="Tag (defaults to the active tag)"),
    start: bool = typer.Option(False, "--start", help="Start the MCP after adding it"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing MCP"),
):
    """Add an MCP to a tag."""
    nctx = get_context(ctx)

    async def _exists():
        target = await nctx.manager.target_tag(tag)
        return target.name, (name or classify(source).name) in target.mcps

    async def _add(overwrite: bool):
        saved, mcp_name = await nctx.manager.add(source, name=name, tag=tag, overwrite=overwrite)
        result = await nctx.manager.start_mcp(mcp_name, saved.name) if start else None
        return saved, mcp_name, result

    overwrite = force
    if not force:
        tag_name, exists = run_command(nctx, _exists())
        if exists:
            if not typer.confirm(f"MCP already exists in tag '{tag_name}'. Overwrite?", default=False):
                console.print("Cancelled.")
                return
            overwrite = True

    saved, mcp_name, result = run_command(nctx, _add(overwrite))

    console.print(f"[green]Added [cyan]{mcp_name}[/cyan] to tag '{saved.name}'[/green]")
    console.print(f"Source: {saved.mcps[mcp_name]}")
    if result is not None and print_start_results([result]):
        raise typer.Exit(1)


def remove(
    ctx: typer.Context,
    mcp: str = typer.Argument(help="MCP name"),
    tag: str = typer.Option(None, "--tag", "-t", help="Tag (defaults to the active tag)"),
):
    """Remove an MCP from a tag."""
    nctx = get_context(ctx)
    saved = run_command(nctx, nctx.manager.remove(mcp, tag))
    console.print(f"[green]Removed [cyan]{mcp}[/cyan] from tag '{saved.name}'[/green]")
