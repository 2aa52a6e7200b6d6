"""Process commands — nvmcp start, stop, ps, kill."""

from __future__ import annotations

import asyncio
import signal

import typer
from rich.table import Table

from nvmcp.cli.context import NvmcpContext, console, get_context, run_command
from nvmcp.tags import StartResult


def _format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {seconds % 3600 // 60}m"


def print_start_results(results: list[StartResult]) -> int:
    """Print a start summary. Returns the number of failures."""
    console.print("\nStartup summary:")
    for r in results:
        if r.status == "started":
            console.print(f"  [green]✓[/green] {r.name} [dim]{r.process_id}[/dim]")
        elif r.status == "skipped":
            console.print(f"  [yellow]-[/yellow] {r.name} [dim]already running[/dim]")
        else:
            console.print(f"  [red]✗[/red] {r.name}: {r.error}")

    started = sum(1 for r in results if r.status == "started")
    failed = sum(1 for r in results if r.status == "failed")
    if started:
        console.print(f"\n[green]Started {started} MCP(s)[/green]")
    if failed:
        console.print(f"[red]Failed to start {failed} MCP(s)[/red]")
    return failed


async def _wait_for_children(nctx: NvmcpContext) -> int:
    """Stay resident until every child exits or SIGINT/SIGTERM arrives."""
    loop = asyncio.get_running_loop()
    interrupted = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, interrupted.set)

    waiter = asyncio.create_task(nctx.supervisor.wait())
    stopper = asyncio.create_task(interrupted.wait())
    try:
        done, pending = await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        if stopper in done:
            count = await nctx.supervisor.stop_all()
            await nctx.supervisor.drain()
            return count
        return 0
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def start(
    ctx: typer.Context,
    tag: str = typer.Argument(None, help="Tag to start (defaults to the active tag)"),
    duplicates: bool = typer.Option(
        False, "--duplicates", help="Start MCPs even if an instance is already running"
    ),
    wait: bool = typer.Option(
        False, "--wait", help="Stay in the foreground; Ctrl-C stops everything"
    ),
):
    """Start every MCP in a tag."""
    nctx = get_context(ctx)

    async def _start():
        results = await nctx.manager.start(tag, duplicates=duplicates)
        if not results:
            console.print("[dim]No MCPs configured in this tag.[/dim]")
            return 0
        failed = print_start_results(results)
        if wait and any(r.status == "started" for r in results):
            console.print("\n[dim]Waiting for MCPs to exit (Ctrl-C to stop)...[/dim]")
            stopped = await _wait_for_children(nctx)
            if stopped:
                console.print(f"[green]Stopped {stopped} process(es)[/green]")
        return failed

    if run_command(nctx, _start()):
        raise typer.Exit(1)


def stop(
    ctx: typer.Context,
    tag: str = typer.Argument(None, help="Tag to stop (defaults to the active tag, else everything)"),
):
    """Stop running MCPs."""
    nctx = get_context(ctx)

    async def _stop():
        stopped = await nctx.manager.stop(tag)
        await nctx.supervisor.drain()
        return stopped

    stopped = run_command(nctx, _stop())
    if not stopped:
        console.print("[dim]No running MCPs to stop.[/dim]")
        return
    for record in stopped:
        console.print(f"[green]Stopped {record.name}[/green] [dim]{record.id}[/dim]")


def ps(ctx: typer.Context):
    """List running MCP processes."""
    nctx = get_context(ctx)
    views = run_command(nctx, nctx.manager.ps())

    if not views:
        console.print("[dim]No MCP processes running.[/dim]")
        console.print("\nStart MCPs: [cyan]nvmcp start[/cyan]")
        return

    table = Table(title="Running MCPs")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("PID", justify="right")
    table.add_column("Status", style="green")
    table.add_column("Uptime", justify="right")
    table.add_column("Tag", style="blue")
    table.add_column("Process ID", style="dim")

    for v in views:
        r = v.record
        table.add_row(
            r.name,
            str(r.pid) if r.pid else "-",
            r.status.value,
            _format_uptime(v.uptime),
            r.tag or "",
            r.id,
        )

    console.print(table)


def kill(
    ctx: typer.Context,
    process_id: str = typer.Argument(help="Process ID (see nvmcp ps)"),
):
    """Stop one process by id."""
    nctx = get_context(ctx)

    async def _kill():
        record = await nctx.manager.kill(process_id)
        await nctx.supervisor.drain()
        return record

    record = run_command(nctx, _kill())
    console.print(f"[green]Stopped {record.name}[/green] [dim]{record.id}[/dim]")
