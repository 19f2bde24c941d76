"""Staging cache commands for the psmodule CLI.

Remote modules are materialized into staging directories under the staging
root. Directories normally disappear when their module is removed; these
commands inspect and clean up what a finished process left behind.
"""

from __future__ import annotations

import contextlib
from pathlib import Path

import click
from rich.table import Table

from ..console import console
from ..paths import create_staging_area
from ..utils.error_format import escape_markup


def _get_dir_size(path: Path) -> int:
    """Get total size of a directory in bytes."""
    total = 0
    with contextlib.suppress(OSError):
        for entry in path.rglob("*"):
            if entry.is_file():
                with contextlib.suppress(OSError):
                    total += entry.stat().st_size
    return total


def _format_size(size_bytes: int) -> str:
    """Format bytes as human-readable size."""
    size_float = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB"]:
        if size_float < 1024:
            return f"{size_float:.1f} {unit}"
        size_float /= 1024
    return f"{size_float:.1f} TB"


@click.group(invoke_without_command=True)
@click.pass_context
def cache(ctx: click.Context):
    """Manage staging directories of remote modules."""
    if ctx.invoked_subcommand is None:
        click.echo("\n" + ctx.get_help())
        ctx.exit()


@cache.command(name="path")
def cache_path():
    """Show the staging root and the staging directories under it."""
    staging = create_staging_area()
    console.print(f"[cyan]{escape_markup(staging.root)}[/cyan]")

    if not staging.root.exists():
        console.print("[dim]Status: not created yet[/dim]")
        return

    directories = staging.list_directories()
    if not directories:
        console.print("[dim]No staging directories.[/dim]")
        return

    table = Table(title="Staging Directories")
    table.add_column("Directory", style="cyan")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")

    total_size = 0
    for directory in directories:
        size = _get_dir_size(directory)
        total_size += size
        file_count = sum(1 for p in directory.iterdir() if p.is_file())
        table.add_row(escape_markup(directory.name), str(file_count), _format_size(size))

    console.print(table)
    console.print(f"\n[bold]Total:[/bold] {len(directories)} directories, {_format_size(total_size)}")


@cache.command(name="clear")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
def cache_clear(yes: bool):
    """Delete every staging directory under the staging root."""
    staging = create_staging_area()
    directories = staging.list_directories()

    if not directories:
        console.print("[dim]Nothing to clear.[/dim]")
        return

    if not yes:
        click.confirm(f"Delete {len(directories)} staging directories under {staging.root}?", abort=True)

    removed = staging.clear()
    if removed == len(directories):
        console.print(f"[green]✓ Removed {removed} staging directories[/green]")
    else:
        console.print(f"[yellow]Removed {removed} of {len(directories)} staging directories[/yellow]")
