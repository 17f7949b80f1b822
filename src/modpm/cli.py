"""Command-line interface for modpm."""

import sys

import click
from rich.panel import Panel
from rich.text import Text

from modpm.commands.cache import cache
from modpm.commands.deps import add, build_list, check, graph, metadata, pull, push, update, vendor
from modpm.utils.console import _get_console, _rich_error
from modpm.version import get_version


def print_version(ctx, param, value):
    """Print version and exit."""
    if not value or ctx.resilient_parsing:
        return

    version_text = Text()
    version_text.append("modpm", style="bold cyan")
    version_text.append(f" version {get_version()}", style="white")
    _get_console().print(Panel(version_text, border_style="cyan", padding=(0, 1)))
    ctx.exit()


@click.group(help="modpm: dependency manager for configuration modules")
@click.option('--version', is_flag=True, callback=print_version,
              expose_value=False, is_eager=True, help="Show version and exit.")
@click.option('--home', type=click.Path(file_okay=False),
              help="modpm home directory (defaults to $MODPM_HOME or ~/.modpm)")
@click.option('--quiet', '-q', is_flag=True, help="Only print results and errors")
@click.option('--mvs', 'enable_mvs', is_flag=True, help="Keep the greatest version seen for each dependency")
@click.option('--no-sum-check', is_flag=True, help="Skip checksum verification")
@click.option('--insecure-skip-tls-verify', is_flag=True, help="Do not verify registry TLS certificates")
@click.pass_context
def cli(ctx, home, quiet, enable_mvs, no_sum_check, insecure_skip_tls_verify):
    """Main entry point for the modpm CLI."""
    ctx.ensure_object(dict)
    ctx.obj.update({
        'home': home,
        'quiet': quiet,
        'enable_mvs': enable_mvs,
        'no_sum_check': no_sum_check,
        'insecure_skip_tls_verify': insecure_skip_tls_verify,
    })


cli.add_command(graph)
cli.add_command(update)
cli.add_command(vendor)
cli.add_command(check)
cli.add_command(build_list)
cli.add_command(metadata)
cli.add_command(add)
cli.add_command(pull)
cli.add_command(push)
cli.add_command(cache)


def main():
    """Main entry point for the CLI."""
    try:
        cli(obj={})
    except Exception as e:
        _rich_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
