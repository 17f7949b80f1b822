"""On-disk package cache keyed by source identity.

Layout under the cache root::

    <root>/<scheme>/src/<bucket>/<name>_<ref>     extracted, usable tree
    <root>/<scheme>/cache/<bucket>/<name>_<ref>   raw downloaded artifact

``<scheme>`` is ``oci`` or ``git`` and ``<bucket>`` is a short hash of the
registry host (or git host) plus the repository's parent path, which bounds the
fan-out of any one directory. Paths are computed from the source alone, so the
cache never touches the network. The cache does no locking of its own; callers
hold :class:`~modpm.deps.cache_lock.CacheLock` while mutating it.
"""

import shutil
from pathlib import Path
from typing import Callable, Union

from ..constants import CACHE_ARTIFACT_DIR, CACHE_SRC_DIR, GIT_SCHEME, OCI_SCHEME
from ..errors import CacheNotFoundError
from ..models.source import Source
from ..utils.archive import find_archives
from ..utils.fs import dir_is_empty


class PackageCache:
    """Maps sources to cached artifact and source-tree paths."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def source_path(self, source: Source) -> Path:
        """Where the extracted tree of ``source`` lives (whether or not it exists yet)."""
        return self.root / source.cache_scheme() / CACHE_SRC_DIR / source.cache_key()

    def artifact_path(self, source: Source) -> Path:
        """Where the raw artifact of ``source`` lives (whether or not it exists yet)."""
        return self.root / source.cache_scheme() / CACHE_ARTIFACT_DIR / source.cache_key()

    def find(self, source: Source) -> Path:
        """Get the extracted tree of a cached source.

        Raises:
            CacheNotFoundError: If the source has not been cached
            SourceError: If the source kind cannot be cached
        """
        path = self.source_path(source)
        if not path.is_dir() or dir_is_empty(path):
            raise CacheNotFoundError(source.to_string(), str(path))
        return path

    def find_artifact(self, source: Source) -> Path:
        """Get the single cached ``.tar``/``.tgz`` artifact of a source.

        Raises:
            CacheNotFoundError: Unless exactly one archive is cached for the source
        """
        path = self.artifact_path(source)
        archives = find_archives(path)
        if len(archives) != 1:
            raise CacheNotFoundError(source.to_string(), str(path))
        return archives[0]

    def update(self, source: Source, update_func: Callable[[Path], None]) -> Path:
        """Populate the cache entry of ``source`` by calling ``update_func(path)``.

        The cache decides where the entry lives; ``update_func`` decides how to
        fill it (download, extract, copy).

        Returns:
            Path: The populated source-tree path
        """
        path = self.source_path(source)
        path.parent.mkdir(parents=True, exist_ok=True)
        update_func(path)
        return path

    def remove(self, source: Source) -> None:
        """Delete both cache entries of ``source``."""
        for path in (self.source_path(source), self.artifact_path(source)):
            if path.exists():
                shutil.rmtree(path)

    def remove_all(self) -> None:
        """Delete every cached package."""
        for scheme in (OCI_SCHEME, GIT_SCHEME):
            scheme_dir = self.root / scheme
            if scheme_dir.exists():
                shutil.rmtree(scheme_dir)
