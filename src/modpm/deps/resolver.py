"""Recursive dependency resolution."""

from pathlib import Path
from typing import Callable, List, Optional, Union

from ..config import Settings
from ..errors import DependencyCycleError
from ..models.package import Dependency, Package
from ..models.source import Source
from .cache import PackageCache
from .downloader import Downloader, DepDownloader
from .visitor import Visitor, select_visitor


ResolveFunc = Callable[[Dependency, Package], None]


def _package_id(package: Package) -> str:
    return f"{package.name}@{package.version}" if package.version else package.name


class DepsResolver:
    """Walks a package's dependencies depth first, in manifest order.

    For every dependency edge the registered resolve functions are called as
    ``func(dependency, parent_package)`` in registration order, before the
    resolver descends into that dependency's own dependencies. Graph building,
    lock population and version arbitration are all resolve functions, so they
    share one traversal.

    The first error raised anywhere aborts the whole resolution.
    """

    def __init__(self, settings: Optional[Settings] = None, downloader: Optional[Downloader] = None,
                 cache: Optional[PackageCache] = None, enable_cache: Optional[bool] = None,
                 resolve_funcs: Optional[List[ResolveFunc]] = None,
                 visited_space: Optional[Union[str, Path]] = None):
        self.settings = settings or Settings()
        self.downloader = downloader or DepDownloader()
        self.enable_cache = self.settings.enable_cache if enable_cache is None else enable_cache
        self.cache = cache if cache is not None else PackageCache(self.settings.cache_path)
        self.resolve_funcs: List[ResolveFunc] = list(resolve_funcs or [])
        self.visited_space = visited_space

    def add_resolve_func(self, func: ResolveFunc) -> None:
        self.resolve_funcs.append(func)

    def visitor_for(self, source: Source) -> Visitor:
        return select_visitor(
            source,
            self.settings,
            downloader=self.downloader,
            cache=self.cache,
            enable_cache=self.enable_cache,
            visited_space=self.visited_space,
        )

    def resolve(self, package: Package) -> None:
        """Resolve every transitive dependency of ``package``.

        Raises:
            DependencyCycleError: If a package depends on itself through its dependencies
            ModpmError: The first error from any visitor or resolve function
        """
        self._resolve_package(package, [_package_id(package)])

    def resolve_source(self, source: Source) -> None:
        """Load the package at ``source`` and resolve its dependencies."""
        self.visitor_for(source).visit(source, self.resolve)

    def _resolve_package(self, package: Package, stack: List[str]) -> None:
        for dep in list(package.dependencies.values()):
            source = dep.source.rebase(package.home_path)
            visitor = self.visitor_for(source)

            def on_child(child: Package, dep: Dependency = dep) -> None:
                dep.local_full_path = str(child.home_path)
                # the loaded package names the version, not the declared ref
                if child.version and not child.virtual:
                    dep.version = child.version
                    dep.full_name = dep.gen_full_name()

                for resolve_func in self.resolve_funcs:
                    resolve_func(dep, package)

                child_id = _package_id(child)
                if child_id in stack:
                    raise DependencyCycleError(stack[-1], child_id)
                self._resolve_package(child, stack + [child_id])

            visitor.visit(source, on_child)
