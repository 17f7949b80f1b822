"""High-level client tying resolution, locking, vendoring and checks together."""

import os
import tempfile
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .config import Settings
from .constants import MANIFEST_FILE, OCI_SUM_ANNOTATION, TAR_EXT
from .deps.cache import PackageCache
from .deps.cache_lock import CacheLock
from .deps.checker import Checker, default_checker, fetch_dep_sum
from .deps.dependency_graph import DepGraph, ModuleVersion
from .deps.downloader import DepDownloader, DownloadOptions, Downloader, OfflineDownloader, default_oci_client
from .deps.mvs import ReleaseLister, ReqsGraph, oci_release_lister, update_build_list
from .deps.resolver import DepsResolver, ResolveFunc
from .deps.vendor import Vendorer
from .errors import SourceError
from .models.package import Dependency, Package
from .models.source import Local, Oci, Source, SourceKind
from .registry.credentials import CredentialManager
from .registry.oci_client import OciClient
from .utils.archive import create_archive
from .utils.console import _rich_info
from .utils.fs import copy_dir, hash_dir


def source_at_version(source: Source, version: str) -> Source:
    """Copy of a registry-backed source pointing at ``version``."""
    kind = source.kind
    if kind == SourceKind.SPEC_ONLY:
        return replace(source, mod_spec=replace(source.mod_spec, version=version))
    if kind == SourceKind.REGISTRY:
        registry = replace(source.registry, version=version, oci=replace(source.registry.oci, tag=version))
        return replace(source, registry=registry)
    if kind == SourceKind.OCI:
        return replace(source, oci=replace(source.oci, tag=version))
    return source


class ModClient:
    """Entry point for everything modpm does with a package.

    The client owns no global state: settings, downloader, cache and checker
    are all passed in or derived from ``settings``.
    """

    def __init__(self, settings: Optional[Settings] = None, downloader: Optional[Downloader] = None,
                 cache: Optional[PackageCache] = None, checker: Optional[Checker] = None,
                 release_lister: Optional[ReleaseLister] = None,
                 oci_client_factory: Callable[[Oci, DownloadOptions], OciClient] = default_oci_client):
        self.settings = settings or Settings()
        self.downloader = downloader or DepDownloader()
        self.cache = cache if cache is not None else PackageCache(self.settings.cache_path)
        self.checker = checker if checker is not None else default_checker(self.settings)
        self.release_lister = release_lister if release_lister is not None else oci_release_lister(self.settings)
        self.oci_client_factory = oci_client_factory

    def _report(self, message: str, symbol: str = "info") -> None:
        if not self.settings.quiet:
            _rich_info(message, symbol=symbol)

    def _resolver(self, resolve_funcs: Sequence[ResolveFunc] = (), offline: bool = False,
                  enable_cache: Optional[bool] = None) -> DepsResolver:
        return DepsResolver(
            self.settings,
            downloader=OfflineDownloader() if offline else self.downloader,
            cache=self.cache,
            enable_cache=True if offline else enable_cache,
            resolve_funcs=list(resolve_funcs),
        )

    def load_package(self, path: Union[str, Path], vendor_mode: bool = False) -> Package:
        return Package.load(path, vendor_mode=vendor_mode, no_sum_check=self.settings.no_sum_check)

    def package_cache_lock(self) -> CacheLock:
        """Lock to hold around any command that mutates the package cache."""
        self.settings.config_dir.mkdir(parents=True, exist_ok=True)
        return CacheLock(self.settings.package_cache_lock_file)

    def acquire_dep_sum(self, dep: Dependency) -> str:
        """Checksum published for ``dep`` by its registry, or ``""``.

        Git dependencies have no registry; their checked out tree is hashed.
        """
        if dep.is_from_git():
            return hash_dir(dep.local_full_path) if dep.local_full_path else ""
        return fetch_dep_sum(dep, self.settings)

    def check(self, package: Package) -> None:
        """Run the configured checkers on ``package``.

        Raises:
            InvalidManifestError: If the package name or version is invalid
            ChecksumMismatchError: If a locked checksum does not match the registry
        """
        self.checker.check(package)

    def _locate(self, dep: Dependency, offline: bool = False) -> str:
        """Directory the cache keeps ``dep`` in, or ``""`` when it is not kept."""
        if not dep.source.is_remote():
            return ""
        resolver = self._resolver(offline=offline)
        if not resolver.enable_cache:
            return ""
        found: List[str] = []
        resolver.visitor_for(dep.source).visit(dep.source, lambda child: found.append(str(child.home_path)))
        return found[0] if found else ""

    def update(self, package: Package, offline: bool = False, update_manifest: bool = True) -> Package:
        """Resolve every dependency of ``package`` and refresh its lock.

        Dependencies declared by the package itself are written back to the
        manifest with the version they resolved to; indirect dependencies only
        go to the lock. With MVS enabled the greater of the resolved and the
        already recorded version is kept.
        """
        package.no_sum_check = package.no_sum_check or self.settings.no_sum_check
        mod_deps = package.manifest.dependencies
        lock_deps = package.lock_dependencies
        enable_mvs = self.settings.enable_mvs

        def lock_dep(dep: Dependency, parent: Package) -> None:
            if dep.name in mod_deps:
                existing = mod_deps[dep.name]
                if parent is package or (enable_mvs and existing.version_less_than(dep)):
                    mod_deps[dep.name] = dep

            selected = dep
            existing = lock_deps.get(dep.name)
            if existing is not None and enable_mvs and dep.version_less_than(existing):
                selected = existing
            sum_value = selected.sum
            if existing is not None and existing.version == selected.version:
                sum_value = existing.sum

            local_full_path = dep.local_full_path
            if selected is not dep:
                local_full_path = self._locate(selected, offline) or local_full_path
            locked = replace(selected, sum=sum_value, local_full_path=local_full_path)
            if not locked.sum and not offline and not package.no_sum_check:
                locked.sum = self.acquire_dep_sum(locked)
            lock_deps[dep.name] = locked

        self._resolver([lock_dep], offline=offline).resolve(package)

        if not package.virtual and package.manifest_path.is_file():
            if update_manifest:
                package.store_manifest()
            package.store_lock()
        self._report(f"'{package.name}' dependencies are up to date", symbol="check")
        return package

    def _graph_func(self, graph: DepGraph) -> ResolveFunc:
        def add_to_graph(dep: Dependency, parent: Package) -> None:
            child = graph.add_vertex(dep.name, dep.version, dep.source.to_string())
            graph.add_edge(ModuleVersion(parent.name, parent.version), child)

        return add_to_graph

    def graph(self, package: Package) -> DepGraph:
        """Dependency graph of ``package``, rooted at ``name@version``.

        Raises:
            DependencyCycleError: Naming the edge that closed a cycle
        """
        graph = DepGraph()
        graph.add_vertex(package.name, package.version, str(package.home_path))
        self._resolver([self._graph_func(graph)]).resolve(package)
        return graph

    def _module_loader(self, graph: DepGraph):
        def load(module: ModuleVersion, source_str: Optional[str]) -> None:
            if not source_str:
                return
            source = source_at_version(Source.parse(source_str), module.version)
            if source.kind not in (SourceKind.SPEC_ONLY, SourceKind.REGISTRY, SourceKind.OCI):
                return
            self._resolver([self._graph_func(graph)]).resolve_source(source)

        return load

    def build_list(self, package: Package, upgrades: Sequence[ModuleVersion] = (),
                   downgrades: Sequence[ModuleVersion] = ()) -> List[ModuleVersion]:
        """Minimal version selection over the graph of ``package``.

        Returns:
            List[ModuleVersion]: The package first, then one version per module
        """
        graph = self.graph(package)
        reqs = ReqsGraph(graph, self.release_lister, loader=self._module_loader(graph))
        target = ModuleVersion(package.name, package.version)
        return update_build_list(target, reqs, upgrades, downgrades)

    def vendor(self, package: Package) -> Dict[str, Dependency]:
        """Copy every dependency into ``vendor/`` and record the result in the lock."""
        locked = Vendorer(self.settings, downloader=self.downloader, cache=self.cache).vendor_deps(package)
        if not package.virtual and package.manifest_path.is_file():
            package.store_lock()
        return locked

    def resolve_deps_into_map(self, package: Package) -> Dict[str, str]:
        """Map each dependency's import name to its local directory."""
        if package.vendor_mode:
            deps = self.vendor(package)
        else:
            deps = self.update(package, update_manifest=False).lock_dependencies
        return {dep.alias_name: dep.local_full_path for dep in deps.values()}

    def clear_cache(self) -> None:
        """Delete every cached package."""
        self.cache.remove_all()
        self._report(f"cleared the package cache at '{self.cache.root}'", symbol="check")

    def add(self, package: Package, source: Union[str, Source], offline: bool = False) -> Dependency:
        """Add the package at ``source`` to the dependencies of ``package``.

        The source is visited once to learn the added package's name and
        version, and a source without a ref is pinned to that version. The
        manifest and lock are then refreshed by :meth:`update`. Local paths
        are relative to the package's home directory.

        Raises:
            SourceError: If the source holds no manifest
        """
        if isinstance(source, str):
            source = Source.parse(source)
        visiting = source.rebase(package.home_path)
        found: List[Package] = []
        self._resolver(offline=offline).visitor_for(visiting).visit(visiting, found.append)
        added = found[0]
        if added.virtual:
            raise SourceError(f"'{source}' holds no {MANIFEST_FILE}", source.to_string())

        if source.no_ref() or (source.spec_only() and not source.mod_spec.version):
            source = source_at_version(source, added.version)
        dep = Dependency(name=added.name, source=source, version=added.version)
        self._report(f"adding '{dep}' to dependencies")
        package.manifest.dependencies[dep.name] = dep
        self.update(package, offline=offline)
        return package.manifest.dependencies[dep.name]

    def pull(self, source: Union[str, Source], dest: Union[str, Path], offline: bool = False) -> Package:
        """Fetch the package at ``source`` into a directory below ``dest``.

        Remote packages land under their source file path, e.g.
        ``dest/oci/ghcr.io/org/helloworld/0.1.2``; local ones under their
        directory or archive name.
        """
        if isinstance(source, str):
            source = Source.parse(source)
        source = source.with_defaults(self.settings.default_oci_registry, self.settings.default_oci_repo)
        if source.is_local_path():
            source = replace(source, local=Local(os.path.abspath(source.local.path)))
            if source.is_local_tar_path() or source.is_local_tgz_path():
                relative = Path(source.local.path).stem
            else:
                relative = Path(source.find_root_path()).name
        else:
            relative = source.to_file_path()
        target = Path(dest) / relative
        self._report(f"pulling '{source}'")

        def copy(pulled: Package) -> None:
            copy_dir(pulled.home_path, target)

        self._resolver(offline=offline).visitor_for(source).visit(source, copy)
        if (target / MANIFEST_FILE).is_file():
            pulled = self.load_package(target)
            self._report(f"pulled '{pulled.full_name}' into '{target}'", symbol="check")
            return pulled
        return Package.new_virtual(target)

    def push(self, package: Package, oci_url: str) -> Dict[str, Any]:
        """Pack ``package`` and push it to ``oci_url`` as a single-layer artifact.

        The tag defaults to the package version. The manifest is annotated
        with the checksum of the package tree, which is what :meth:`update`
        later records in locks.

        Raises:
            SourceError: If neither the url nor the package gives a tag
            RegistryError: If the registry rejects the upload
        """
        oci = Oci.parse(oci_url)
        tag = oci.tag or package.version
        if not tag:
            raise SourceError(f"no tag given for '{oci_url}' and '{package.name}' has no version", oci_url)
        oci = replace(oci, tag=tag)
        opts = DownloadOptions(
            source=Source(oci=oci),
            settings=self.settings,
            credentials=CredentialManager(self.settings.credentials_file),
            insecure_skip_tls_verify=self.settings.insecure_skip_tls_verify,
        )
        client = self.oci_client_factory(oci, opts)

        self._report(f"pushing '{package.full_name}' to '{oci.reference}:{tag}'")
        with tempfile.TemporaryDirectory(prefix="modpm-push-") as tmp:
            archive = create_archive(package.home_path, Path(tmp) / f"{package.name}_{tag}{TAR_EXT}")
            manifest = client.push(archive, tag, annotations={OCI_SUM_ANNOTATION: hash_dir(package.home_path)})
        self._report(f"pushed '{package.full_name}'", symbol="check")
        return manifest
