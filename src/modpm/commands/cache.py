"""modpm package cache commands."""

import sys

import click

from ..utils.console import _rich_error, _rich_info
from .deps import get_client


@click.group(help="🗄 Manage the global package cache")
def cache():
    pass


@cache.command(help="Print the cache location")
@click.pass_context
def path(ctx):
    client = get_client(ctx)
    click.echo(str(client.cache.root))


@cache.command(help="Delete every cached package")
@click.option('--yes', '-y', is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def clean(ctx, yes):
    try:
        client = get_client(ctx)
        if not yes and not click.confirm(f"Delete all cached packages under {client.cache.root}?"):
            _rich_info("Cache left untouched")
            return
        with client.package_cache_lock():
            client.clear_cache()
    except Exception as e:
        _rich_error(f"Failed to clean the cache: {e}")
        sys.exit(1)
