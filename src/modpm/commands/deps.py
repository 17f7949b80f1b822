"""modpm dependency commands."""

import json
import os
import sys
from pathlib import Path
from typing import List, Tuple

import click

from ..client import ModClient
from ..config import Settings
from ..deps.dependency_graph import ModuleVersion
from ..errors import SourceError
from ..models.package import Package
from ..models.source import Local, ModSpec, Source
from ..utils.console import (
    _create_deps_table, _create_tree, _get_console, _rich_echo, _rich_error, _rich_info, _rich_success,
)


def get_client(ctx: click.Context) -> ModClient:
    """Build the client from the global options stored on the context."""
    options = ctx.obj or {}
    settings = Settings.load(home_path=options.get('home'))
    overrides = {key: value for key, value in options.items() if key != 'home' and value}
    if overrides:
        settings = settings.with_overrides(**overrides)
    return ModClient(settings)


def parse_module_versions(values: Tuple[str, ...]) -> List[ModuleVersion]:
    """Parse ``name@version`` arguments."""
    modules = []
    for value in values:
        name, sep, version = value.partition('@')
        if not name or not sep or not version:
            raise click.BadParameter(f"expected 'name@version', got '{value}'")
        modules.append(ModuleVersion(name, version))
    return modules


def parse_source_arg(value: str, relative_to: Path) -> Source:
    """Read a source given on the command line.

    Accepts a source url, an existing local path (made relative to
    ``relative_to``) or a ``name[:version]`` in the default registry.
    """
    try:
        if "://" in value:
            return Source.parse(value)
        if os.path.exists(value):
            return Source(local=Local(os.path.relpath(os.path.abspath(value), relative_to)))
        return Source(mod_spec=ModSpec.parse(value))
    except SourceError as e:
        raise click.BadParameter(str(e))


def _print_locked(package: Package, title: str) -> None:
    rows = [
        (dep.name, dep.version or '-', str(dep.source), dep.local_full_path)
        for dep in package.lock_dependencies.values()
    ]
    if not rows:
        _rich_info("No dependencies")
        return
    _get_console().print(_create_deps_table(rows, title=title))


@click.command(help="🌳 Print the dependency graph of a package")
@click.argument('path', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('--tree', 'as_tree', is_flag=True, help="Render the graph as a tree")
@click.pass_context
def graph(ctx, path, as_tree):
    """Print one ``parent child`` line per dependency edge, breadth first."""
    try:
        client = get_client(ctx)
        with client.package_cache_lock():
            package = client.load_package(path)
            dep_graph = client.graph(package)

        root = ModuleVersion(package.name, package.version)
        if not as_tree:
            click.echo(dep_graph.display_from(root), nl=False)
            return

        tree = _create_tree(str(root))

        def add_children(node, vertex, path_seen):
            for child in dep_graph.required(vertex):
                branch = node.add(str(child))
                if child not in path_seen:
                    add_children(branch, child, path_seen | {child})

        add_children(tree, root, {root})
        _get_console().print(tree)
    except Exception as e:
        _rich_error(f"Failed to build the dependency graph: {e}")
        sys.exit(1)


@click.command(help="🔒 Resolve dependencies and update modpm.lock")
@click.argument('path', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('--offline', is_flag=True, help="Only use cached and local packages")
@click.option('--no-manifest', is_flag=True, help="Leave modpm.yml untouched")
@click.pass_context
def update(ctx, path, offline, no_manifest):
    """Resolve every dependency, download what is missing and write the lock."""
    try:
        client = get_client(ctx)
        with client.package_cache_lock():
            package = client.load_package(path)
            client.update(package, offline=offline, update_manifest=not no_manifest)
        if not client.settings.quiet:
            _print_locked(package, title=f"{package.name} dependencies")
    except Exception as e:
        _rich_error(f"Failed to update dependencies: {e}")
        sys.exit(1)


@click.command(help="📦 Copy dependencies into the vendor directory")
@click.argument('path', type=click.Path(exists=True, file_okay=False), default='.')
@click.pass_context
def vendor(ctx, path):
    """Select one version per dependency and copy it into ``vendor/``."""
    try:
        client = get_client(ctx)
        with client.package_cache_lock():
            package = client.load_package(path, vendor_mode=True)
            client.vendor(package)
        if not client.settings.quiet:
            _print_locked(package, title=f"{package.name} vendored dependencies")
        _rich_success(f"Vendored dependencies into {package.vendor_path}")
    except Exception as e:
        _rich_error(f"Failed to vendor dependencies: {e}")
        sys.exit(1)


@click.command(help="✅ Check package name, version and locked checksums")
@click.argument('path', type=click.Path(exists=True, file_okay=False), default='.')
@click.pass_context
def check(ctx, path):
    try:
        client = get_client(ctx)
        package = client.load_package(path)
        client.check(package)
        _rich_success(f"{package.name} passed all checks", symbol="check")
    except Exception as e:
        _rich_error(f"Check failed: {e}")
        sys.exit(1)


@click.command(name="build-list", help="📋 Show the versions selected by MVS")
@click.argument('path', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('--upgrade', 'upgrades', multiple=True, metavar='NAME@VERSION',
              help="Require at least this version (repeatable)")
@click.option('--downgrade', 'downgrades', multiple=True, metavar='NAME@VERSION',
              help="Allow at most this version (repeatable)")
@click.pass_context
def build_list(ctx, path, upgrades, downgrades):
    """Without --upgrade every module moves to its latest compatible release."""
    try:
        upgrade_mods = parse_module_versions(upgrades)
        downgrade_mods = parse_module_versions(downgrades)
        client = get_client(ctx)
        with client.package_cache_lock():
            package = client.load_package(path)
            selected = client.build_list(package, upgrade_mods, downgrade_mods)
        for module in selected:
            _rich_echo(str(module))
    except click.BadParameter:
        raise
    except Exception as e:
        _rich_error(f"Failed to compute the build list: {e}")
        sys.exit(1)


@click.command(help="🗺 Print the import name to local path map as JSON")
@click.argument('path', type=click.Path(exists=True, file_okay=False), default='.')
@click.option('--vendor', 'vendor_mode', is_flag=True, help="Resolve into the vendor directory")
@click.pass_context
def metadata(ctx, path, vendor_mode):
    try:
        client = get_client(ctx)
        with client.package_cache_lock():
            package = client.load_package(Path(path), vendor_mode=vendor_mode)
            paths = client.resolve_deps_into_map(package)
        click.echo(json.dumps({"packages": paths}, indent=2, sort_keys=True))
    except Exception as e:
        _rich_error(f"Failed to resolve dependencies: {e}")
        sys.exit(1)


@click.command(help="➕ Add a dependency and update modpm.lock")
@click.argument('source')
@click.option('--path', 'pkg_path', type=click.Path(exists=True, file_okay=False), default='.',
              help="Package to add the dependency to")
@click.pass_context
def add(ctx, source, pkg_path):
    """SOURCE is a url, a local path or NAME[:VERSION] in the default registry."""
    try:
        client = get_client(ctx)
        with client.package_cache_lock():
            package = client.load_package(pkg_path)
            dep = client.add(package, parse_source_arg(source, package.home_path))
        _rich_success(f"Added {dep} to {package.name}")
    except click.BadParameter:
        raise
    except Exception as e:
        _rich_error(f"Failed to add '{source}': {e}")
        sys.exit(1)


@click.command(help="⬇️ Download a package into a local directory")
@click.argument('source')
@click.option('--dest', type=click.Path(file_okay=False), default='.', help="Directory to pull into")
@click.pass_context
def pull(ctx, source, dest):
    try:
        client = get_client(ctx)
        with client.package_cache_lock():
            package = client.pull(parse_source_arg(source, Path.cwd()), dest)
        _rich_success(f"Pulled {package.full_name} into {package.home_path}")
    except click.BadParameter:
        raise
    except Exception as e:
        _rich_error(f"Failed to pull '{source}': {e}")
        sys.exit(1)


@click.command(help="⬆️ Pack a package and push it to an OCI registry")
@click.argument('oci_url')
@click.argument('path', type=click.Path(exists=True, file_okay=False), default='.')
@click.pass_context
def push(ctx, oci_url, path):
    """OCI_URL is oci://REGISTRY/REPO, with ?tag=TAG to override the package version."""
    try:
        client = get_client(ctx)
        package = client.load_package(path)
        client.push(package, oci_url)
        _rich_success(f"Pushed {package.full_name} to {oci_url}")
    except Exception as e:
        _rich_error(f"Failed to push to '{oci_url}': {e}")
        sys.exit(1)
