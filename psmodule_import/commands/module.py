"""Module resolution and import commands for the psmodule CLI."""

from __future__ import annotations

import fnmatch
import sys
from pathlib import Path

import click
from rich.table import Table

from ..console import console
from ..errors import ImportResult
from ..errors import MalformedInputError
from ..errors import ModuleImportError
from ..module_resolution import ModuleSpecification
from ..orchestrator import ImportOptions
from ..paths import create_orchestrator
from ..paths import create_settings_manager
from ..remote.http import HttpInventoryEndpoint
from ..remote.http import HttpRemoteSession
from ..utils.error_format import escape_markup
from ..utils.error_format import format_error_message
from ..utils.error_format import format_error_record


def version_options(f):
    """Shared --required-version/--minimum-version/--maximum-version options."""
    f = click.option("--maximum-version", default=None, help="Highest acceptable module version")(f)
    f = click.option("--minimum-version", default=None, help="Lowest acceptable module version")(f)
    f = click.option("--required-version", default=None, help="Exact module version")(f)
    return f


def _print_result(result: ImportResult) -> None:
    if result.modules:
        table = Table(title="Imported Modules", show_header=True, header_style="bold cyan")
        table.add_column("Name", style="green")
        table.add_column("Version", style="yellow")
        table.add_column("Type", style="dim")
        table.add_column("Commands", justify="right")
        table.add_column("Source", style="magenta")
        for module in result.modules:
            table.add_row(
                escape_markup(module.name),
                str(module.version or ""),
                module.module_type.value,
                str(len(module.exported_commands)),
                escape_markup(module.source_host or module.path),
            )
        console.print(table)

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape_markup(format_error_record(warning))}")
    for error in result.errors:
        console.print(f"[red]Error:[/red] {escape_markup(format_error_record(error))}")


@click.command("resolve")
@click.argument("name")
@version_options
@click.option("--force", is_flag=True, help="Bypass the already-loaded check and the resolution cache")
def resolve_cmd(
    name: str,
    required_version: str | None,
    minimum_version: str | None,
    maximum_version: str | None,
    force: bool,
):
    """Resolve NAME (a bare module name or a path) to a module file."""
    orchestrator = create_orchestrator()
    try:
        constraint = None
        if required_version or minimum_version or maximum_version:
            constraint = ModuleSpecification.create(
                name,
                required_version=required_version,
                minimum_version=minimum_version,
                maximum_version=maximum_version,
            )
        descriptor = orchestrator.resolver.resolve_or_raise(name, constraint, force=force)
    except ModuleImportError as e:
        console.print(f"[red]Error:[/red] {escape_markup(format_error_message(e, include_type=False))}")
        sys.exit(1)

    console.print(f"[bold]Name:[/bold]    {escape_markup(descriptor.name)}")
    console.print(f"[bold]Type:[/bold]    {descriptor.module_type.value}")
    if descriptor.version is not None:
        console.print(f"[bold]Version:[/bold] {descriptor.version}")
    if descriptor.guid is not None:
        console.print(f"[bold]GUID:[/bold]    {descriptor.guid}")
    console.print(f"[bold]Path:[/bold]    [cyan]{escape_markup(descriptor.key)}[/cyan]")


@click.command("import")
@click.argument("names", nargs=-1, required=True)
@version_options
@click.option("--prefix", default=None, help="Prefix inserted into imported command nouns")
@click.option("--no-clobber", is_flag=True, help="Do not replace commands that already exist")
@click.option("--force", is_flag=True, help="Reload modules that are already loaded")
@click.option("--computer", metavar="URL", default=None, help="Import over a remote session at URL")
@click.option("--inventory", metavar="URL", default=None, help="Import from an inventory endpoint at URL")
@click.option("--resource-uri", default=None, help="Inventory resource URI")
@click.option("--namespace", default=None, help="Inventory namespace")
@click.option("--workers", type=int, default=1, show_default=True, help="Parallel imports for independent names")
def import_cmd(
    names: tuple[str, ...],
    required_version: str | None,
    minimum_version: str | None,
    maximum_version: str | None,
    prefix: str | None,
    no_clobber: bool,
    force: bool,
    computer: str | None,
    inventory: str | None,
    resource_uri: str | None,
    namespace: str | None,
    workers: int,
):
    """Import one or more modules by name or path."""
    if computer and inventory:
        raise click.UsageError("--computer and --inventory are mutually exclusive")
    if (resource_uri or namespace) and not inventory:
        raise click.UsageError("--resource-uri and --namespace require --inventory")

    try:
        options = ImportOptions(
            prefix=prefix,
            no_clobber=no_clobber,
            force=force,
            required_version=required_version,
            minimum_version=minimum_version,
            maximum_version=maximum_version,
            max_workers=workers,
        )
    except MalformedInputError as e:
        console.print(f"[red]Error:[/red] {escape_markup(format_error_message(e, include_type=False))}")
        sys.exit(1)

    settings = create_settings_manager()
    orchestrator = create_orchestrator(settings)
    timeout = settings.get_import_settings().remote.timeout

    try:
        if computer:
            with HttpRemoteSession(computer, timeout=timeout) as session:
                result = orchestrator.import_from_session(session, list(names), options)
        elif inventory:
            with HttpInventoryEndpoint(inventory, timeout=timeout) as endpoint:
                result = orchestrator.import_from_inventory(
                    endpoint, list(names), options, resource_uri=resource_uri, namespace=namespace
                )
        else:
            result = orchestrator.import_names(list(names), options)
    except ModuleImportError as e:
        console.print(f"[red]Error:[/red] {escape_markup(format_error_message(e, include_type=False))}")
        sys.exit(1)

    _print_result(result)
    if not result.succeeded:
        sys.exit(1)


@click.command("list")
@click.argument("pattern", required=False)
def list_cmd(pattern: str | None):
    """List modules available on the module search path."""
    settings = create_settings_manager()
    orchestrator = create_orchestrator(settings)

    table = Table(title="Available Modules", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="green")
    table.add_column("Version", style="yellow")
    table.add_column("Type", style="dim")
    table.add_column("Path", style="magenta")

    seen: set[str] = set()
    for search_dir, _source in settings.get_search_paths():
        if not search_dir.is_dir():
            continue
        for candidate in sorted(p for p in search_dir.iterdir() if p.is_dir()):
            key = candidate.name.lower()
            if key in seen or (pattern and not fnmatch.fnmatchcase(key, pattern.lower())):
                continue
            try:
                descriptor = orchestrator.resolver.resolve(candidate.name)
            except ModuleImportError as e:
                console.print(f"[yellow]Skipping {escape_markup(candidate)}:[/yellow] {escape_markup(e)}")
                continue
            if descriptor is None:
                continue
            seen.add(key)
            table.add_row(
                escape_markup(descriptor.name),
                str(descriptor.version or ""),
                descriptor.module_type.value,
                escape_markup(descriptor.key),
            )

    if not seen:
        console.print("[dim]No modules found on the module search path.[/dim]")
        return
    console.print(table)


@click.group("search-path", invoke_without_command=True)
@click.pass_context
def search_path(ctx: click.Context):
    """Show or edit the module search path."""
    if ctx.invoked_subcommand is not None:
        return
    entries = create_settings_manager().get_search_paths()
    if not entries:
        console.print("[dim]Module search path is empty. Set PSMODULE_PATH or modules.search_paths.[/dim]")
        return

    table = Table(title="Module Search Path", show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Directory", style="cyan")
    table.add_column("Source", style="yellow")
    table.add_column("Exists", style="dim")
    for index, (path, source) in enumerate(entries, start=1):
        table.add_row(str(index), escape_markup(path), source, "yes" if Path(path).is_dir() else "no")
    console.print(table)


@search_path.command("add")
@click.argument("directory")
@click.option("--local", "scope_flag", flag_value="local", help="Add locally (just you)")
@click.option("--project", "scope_flag", flag_value="project", help="Add for project (team)")
@click.option("--global", "scope_flag", flag_value="user", help="Add globally (all projects)")
def search_path_add(directory: str, scope_flag: str | None):
    """Append DIRECTORY to the module search path."""
    scope = scope_flag or "project"
    create_settings_manager().add_search_path(directory, scope)
    console.print(f"[green]✓ Added {escape_markup(directory)} ({scope})[/green]")


@search_path.command("remove")
@click.argument("directory")
@click.option("--local", "scope_flag", flag_value="local", help="Remove from local settings")
@click.option("--project", "scope_flag", flag_value="project", help="Remove from project settings")
@click.option("--global", "scope_flag", flag_value="user", help="Remove from user settings")
def search_path_remove(directory: str, scope_flag: str | None):
    """Remove DIRECTORY from the module search path."""
    scope = scope_flag or "project"
    if create_settings_manager().remove_search_path(directory, scope):
        console.print(f"[green]✓ Removed {escape_markup(directory)} ({scope})[/green]")
    else:
        console.print(f"[yellow]{escape_markup(directory)} is not in the {scope} search path[/yellow]")
