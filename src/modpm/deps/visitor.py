"""Visitors turn a source into a loaded package and hand it to a callback.

Each visitor owns whatever temporary resources it needs (extracted archives,
throwaway download directories) and releases them when the callback returns
or raises. The callback is never invoked for a source of the wrong kind.
"""

import tempfile
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Callable, Optional, Union

from ..config import Settings
from ..constants import MANIFEST_FILE
from ..errors import CacheNotFoundError, SourceError, VersionMismatchError
from ..models.package import Package, find_package
from ..models.source import ModSpec, Source, SourceKind
from ..registry.credentials import CredentialManager
from ..utils.archive import extract_archive
from ..utils.console import _rich_info
from .cache import PackageCache
from .downloader import DepDownloader, DownloadOptions, Downloader


VisitFunc = Callable[[Package], None]


class Visitor(ABC):
    """Loads the package a source points at and calls back with it."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    @abstractmethod
    def visit(self, source: Source, visit_func: VisitFunc) -> None:
        pass

    def _load(self, path: Union[str, Path]) -> Package:
        return Package.load(path, no_sum_check=self.settings.no_sum_check)


class PkgVisitor(Visitor):
    """Visits a package that already exists on local disk."""

    def visit(self, source: Source, visit_func: VisitFunc) -> None:
        if not source.is_local_path():
            raise SourceError(f"source '{source}' is not local", source.to_string())

        root = Path(source.find_root_path())
        if source.mod_spec is not None and source.mod_spec.name:
            root = find_package(root, source.mod_spec.name)

        visit_func(self._load(root))


class VirtualPkgVisitor(Visitor):
    """Visits a directory of source files that has no manifest.

    The package handed to the callback is built in memory with a fresh unique
    name; nothing is written to disk.
    """

    def visit(self, source: Source, visit_func: VisitFunc) -> None:
        if not source.is_local_path():
            raise SourceError(f"source '{source}' is not local", source.to_string())

        visit_func(Package.new_virtual(source.find_root_path()))


class ArchiveVisitor(Visitor):
    """Visits a package packed in a local ``.tar``/``.tgz`` file."""

    def visit(self, source: Source, visit_func: VisitFunc) -> None:
        if not (source.is_local_tar_path() or source.is_local_tgz_path()):
            raise SourceError(f"source '{source}' is not a local tar or tgz path", source.to_string())

        with tempfile.TemporaryDirectory(prefix="modpm-archive-") as tmp:
            try:
                extract_archive(source.local.path, tmp)
            except ValueError as e:
                raise SourceError(str(e), source.to_string()) from e
            root = Path(tmp)
            if source.mod_spec is not None and source.mod_spec.name:
                root = find_package(root, source.mod_spec.name)
            visit_func(self._load(root))


class RemoteVisitor(Visitor):
    """Visits a git, OCI, registry or spec-only source.

    With the cache enabled the package is served from the cache when present
    and downloaded into it otherwise. Without the cache it is downloaded into
    ``visited_space`` (under the source's file path) or into a temporary
    directory that is removed after the callback.
    """

    def __init__(self, settings: Optional[Settings] = None, downloader: Optional[Downloader] = None,
                 cache: Optional[PackageCache] = None, enable_cache: bool = True,
                 visited_space: Optional[Union[str, Path]] = None,
                 credentials: Optional[CredentialManager] = None):
        super().__init__(settings)
        self.downloader = downloader or DepDownloader()
        self.cache = cache
        self.enable_cache = enable_cache and cache is not None
        self.visited_space = Path(visited_space) if visited_space else None
        self.credentials = credentials or CredentialManager(self.settings.credentials_file)

    def _options(self, source: Source, local_path: Optional[Path] = None,
                 artifact_path: Optional[Path] = None) -> DownloadOptions:
        return DownloadOptions(
            source=source,
            local_path=local_path,
            settings=self.settings,
            credentials=self.credentials,
            platform=self.settings.platform,
            artifact_path=artifact_path,
            insecure_skip_tls_verify=self.settings.insecure_skip_tls_verify,
        )

    def _pin_latest(self, source: Source) -> Source:
        latest = self.downloader.latest_version(self._options(source))
        if not self.settings.quiet:
            _rich_info(f"the latest version '{latest}' will be downloaded")
        pinned = source.with_ref(latest)
        if pinned.mod_spec is not None and not pinned.mod_spec.version and pinned.kind != SourceKind.GIT:
            pinned = replace(pinned, mod_spec=replace(pinned.mod_spec, version=latest))
        return pinned

    def _download_into_cache(self, source: Source) -> Path:
        try:
            return self.cache.find(source)
        except CacheNotFoundError:
            pass
        artifact_path = self.cache.artifact_path(source) if source.oci_source is not None else None
        return self.cache.update(
            source,
            lambda path: self.downloader.download(self._options(source, path, artifact_path)),
        )

    def _pinned_spec(self, source: Source) -> Optional[ModSpec]:
        if source.mod_spec is not None and not source.mod_spec.is_nil():
            return source.mod_spec
        if source.kind == SourceKind.REGISTRY and source.registry.version:
            return ModSpec(source.registry.name, source.registry.version)
        return None

    def _load_checked(self, root: Path, source: Source) -> Package:
        spec = self._pinned_spec(source)
        if source.mod_spec is not None and source.mod_spec.name:
            root = find_package(root, source.mod_spec.name)
        package = self._load(root)
        if spec is not None and spec.version and package.version != spec.version:
            raise VersionMismatchError(spec.name or package.name, spec.version, package.version)
        return package

    def visit(self, source: Source, visit_func: VisitFunc) -> None:
        if not source.is_remote():
            raise SourceError(f"source '{source}' is not remote", source.to_string())

        source = source.with_defaults(self.settings.default_oci_registry, self.settings.default_oci_repo)
        if source.no_ref():
            source = self._pin_latest(source)

        if self.enable_cache:
            root = self._download_into_cache(source)
            visit_func(self._load_checked(root, source))
            return

        if self.visited_space is not None:
            root = self.visited_space / source.to_file_path()
            root.mkdir(parents=True, exist_ok=True)
            self.downloader.download(self._options(source, root))
            visit_func(self._load_checked(root, source))
            return

        with tempfile.TemporaryDirectory(prefix="modpm-remote-") as tmp:
            root = Path(tmp) / "pkg"
            self.downloader.download(self._options(source, root))
            visit_func(self._load_checked(root, source))


def select_visitor(source: Source, settings: Settings, downloader: Optional[Downloader] = None,
                   cache: Optional[PackageCache] = None, enable_cache: bool = True,
                   visited_space: Optional[Union[str, Path]] = None) -> Visitor:
    """Pick the visitor for a source.

    remote → RemoteVisitor; local tar/tgz → ArchiveVisitor; local directory
    with a manifest → PkgVisitor; any other local path → VirtualPkgVisitor.
    """
    kind = source.kind
    if kind in (SourceKind.GIT, SourceKind.OCI, SourceKind.REGISTRY, SourceKind.SPEC_ONLY):
        return RemoteVisitor(
            settings=settings,
            downloader=downloader,
            cache=cache,
            enable_cache=enable_cache,
            visited_space=visited_space,
        )
    if kind == SourceKind.LOCAL:
        if source.is_local_tar_path() or source.is_local_tgz_path():
            return ArchiveVisitor(settings)
        if source.is_local_pkg() or source.mod_spec is not None:
            return PkgVisitor(settings)
        if Path(source.find_root_path(), MANIFEST_FILE).is_file():
            return PkgVisitor(settings)
        return VirtualPkgVisitor(settings)
    raise SourceError(f"unsupported source '{source}'", source.to_string())
