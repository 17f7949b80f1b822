"""Copy a package's dependencies into its ``vendor`` directory."""

import os
from dataclasses import replace
from pathlib import Path
from typing import Dict, Optional

from ..config import Settings
from ..errors import DependencyConflictError
from ..models.package import Dependency, Package, find_package
from ..models.source import Source
from ..utils.console import _rich_info
from ..utils.fs import copy_dir
from ..utils.semver import compare_versions
from .cache import PackageCache
from .downloader import Downloader
from .resolver import DepsResolver


class Vendorer:
    """Selects one version per dependency name and materializes it under ``vendor/``.

    Selection runs over every dependency declared anywhere below the package.
    The greatest version of a name wins; git dependencies are not comparable,
    so the first one seen is kept. Remote sources are always visited through
    the package cache so each winner is downloaded at most once.
    """

    def __init__(self, settings: Optional[Settings] = None, downloader: Optional[Downloader] = None,
                 cache: Optional[PackageCache] = None):
        self.settings = settings or Settings()
        self.resolver = DepsResolver(self.settings, downloader=downloader, cache=cache, enable_cache=True)

    def _origin(self, source: Source) -> str:
        source = source.with_defaults(self.settings.default_oci_registry, self.settings.default_oci_repo)
        if source.oci_source is not None:
            return source.oci_source.reference
        if source.is_local_path():
            return os.path.normpath(source.local.path)
        return source.to_string()

    def _pick(self, existing: Optional[Dependency], dep: Dependency) -> Dependency:
        if existing is None:
            return dep
        if existing.is_from_git() or dep.is_from_git():
            return existing
        if not existing.version or not dep.version:
            return existing if existing.version else dep
        order = compare_versions(dep.version, existing.version)
        if order == 0:
            if self._origin(existing.source) != self._origin(dep.source):
                raise DependencyConflictError(dep.name, str(existing.source), str(dep.source))
            return existing
        return dep if order > 0 else existing

    def _load_vendored(self, root: Path, dep: Dependency) -> Package:
        if dep.source.mod_spec is not None and dep.source.mod_spec.name:
            root = find_package(root, dep.source.mod_spec.name)
        return Package.load(root, vendor_mode=True, no_sum_check=self.settings.no_sum_check)

    def _select(self, package: Package, vendor_path: Path, selected: Dict[str, Dependency]) -> None:
        for name, declared in package.dependencies.items():
            dep = replace(declared, source=declared.source.rebase(package.home_path))
            existing = selected.get(name)
            winner = self._pick(existing, dep)
            if winner is existing:
                continue
            selected[name] = winner

            vendored = vendor_path / winner.full_name
            if not winner.is_from_local() and vendored.is_dir():
                self._select(self._load_vendored(vendored, winner), vendor_path, selected)
                continue

            def on_child(child: Package, winner: Dependency = winner) -> None:
                if not winner.version and child.version and not child.virtual:
                    updated = winner.with_version(child.version)
                    selected[name] = updated
                self._select(child, vendor_path, selected)

            self.resolver.visitor_for(winner.source).visit(winner.source, on_child)

    def _materialize(self, dep: Dependency, vendor_path: Path) -> Dependency:
        if dep.is_from_local():
            root = dep.source.find_root_path()
            return replace(dep, local_full_path=str(Path(root).absolute()))

        target = vendor_path / dep.full_name
        if target.is_dir():
            if not self.settings.quiet:
                _rich_info(f"'{dep.full_name}' is already vendored")
        else:
            def copy_child(child: Package) -> None:
                copy_dir(child.home_path, target)

            self.resolver.visitor_for(dep.source).visit(dep.source, copy_child)
            if not self.settings.quiet:
                _rich_info(f"vendored '{dep.full_name}'", symbol="download")
        return replace(dep, local_full_path=str(target))

    def vendor_deps(self, package: Package) -> Dict[str, Dependency]:
        """Vendor every selected dependency of ``package`` and update its lock map.

        Raises:
            DependencyConflictError: If one name and version comes from two origins
            ModpmError: The first error from visiting or copying a dependency
        """
        vendor_path = package.vendor_path
        vendor_path.mkdir(parents=True, exist_ok=True)

        selected: Dict[str, Dependency] = {}
        self._select(package, vendor_path, selected)

        for name, dep in selected.items():
            vendored = self._materialize(dep, vendor_path)
            locked = package.lock_dependencies.get(name)
            if locked is not None and locked.version == vendored.version and locked.sum and not vendored.sum:
                vendored = replace(vendored, sum=locked.sum)
            package.lock_dependencies[name] = vendored
        return package.lock_dependencies
