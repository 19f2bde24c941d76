"""psmodule CLI - resolve and import modules from local paths and remote hosts."""

import logging

import click

from .commands.cache import cache as cache_group
from .commands.module import import_cmd
from .commands.module import list_cmd
from .commands.module import resolve_cmd
from .commands.module import search_path as search_path_group
from .logging_setup import init_json_logging

logger = logging.getLogger(__name__)


@click.group(invoke_without_command=True)
@click.version_option(package_name="psmodule-import")
@click.option("--log-level", default=None, help="Log level for the JSONL log (default: PSMODULE_LOG_LEVEL or INFO)")
@click.pass_context
def cli(ctx, log_level):
    """psmodule - module resolution and remote import."""
    init_json_logging(level=log_level)
    logger.debug(f"psmodule invoked with {ctx.invoked_subcommand}")

    if ctx.invoked_subcommand is None:
        click.echo("\n" + ctx.get_help())
        ctx.exit()


cli.add_command(resolve_cmd)
cli.add_command(import_cmd)
cli.add_command(list_cmd)
cli.add_command(search_path_group)
cli.add_command(cache_group)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
