"""Exception types raised by modpm.

Input problems derive from ``ValueError``, missing things from
``FileNotFoundError`` and transport failures from ``RuntimeError`` so callers
that only know the builtin hierarchy still catch them.
"""

from typing import Optional


class ModpmError(Exception):
    """Base class for all modpm errors."""


class SourceError(ModpmError, ValueError):
    """A source string or source value is malformed or unsupported."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class NotFoundError(ModpmError, FileNotFoundError):
    """Something expected on disk or in the graph does not exist."""


class CacheNotFoundError(NotFoundError):
    """The cache has no entry for a source.

    Callers branch on this to trigger a download instead of aborting.
    """

    def __init__(self, source: str, path: Optional[str] = None):
        message = f"package '{source}' not found in cache"
        if path:
            message += f" (looked in '{path}')"
        super().__init__(message)
        self.source = source
        self.path = path


class ManifestNotFoundError(NotFoundError):
    """No manifest at a location that must hold a package."""

    def __init__(self, path: str):
        super().__init__(f"could not load 'modpm.yml' in '{path}'")
        self.path = path


class PackageNotFoundError(NotFoundError):
    """A named package was not found below a root directory."""

    def __init__(self, name: str, root: str):
        super().__init__(f"package '{name}' not found in '{root}'")
        self.name = name
        self.root = root


class VertexNotFoundError(NotFoundError):
    """A module version is not a vertex of the dependency graph."""

    def __init__(self, vertex: str):
        super().__init__(f"module '{vertex}' not found in the dependency graph")
        self.vertex = vertex


class InvalidManifestError(ModpmError, ValueError):
    """A manifest or lock file has invalid content."""


class ChecksumMismatchError(ModpmError, ValueError):
    """A recorded checksum disagrees with the trusted one."""

    def __init__(self, name: str, expected: str, actual: str):
        super().__init__(
            f"checksum verification failed for '{name}': "
            f"expected '{expected}', got '{actual}'"
        )
        self.name = name
        self.expected = expected
        self.actual = actual


class DependencyCycleError(ModpmError, ValueError):
    """Adding an edge would close a cycle in the dependency graph."""

    def __init__(self, parent: str, child: str):
        super().__init__(f"adding {child} as a dependency of {parent} results in a cycle")
        self.parent = parent
        self.child = child


class DependencyConflictError(ModpmError, ValueError):
    """Two declarations of one dependency disagree on where it comes from."""

    def __init__(self, name: str, first: str, second: str):
        super().__init__(
            f"dependency '{name}' is declared from two different sources: "
            f"'{first}' and '{second}'"
        )
        self.name = name
        self.first = first
        self.second = second


class VersionMismatchError(ModpmError, ValueError):
    """A downloaded package does not have the pinned version."""

    def __init__(self, name: str, expected: str, actual: str):
        super().__init__(
            f"version mismatch for '{name}': {actual} != {expected}, "
            f"version {expected} not found"
        )
        self.name = name
        self.expected = expected
        self.actual = actual


class DownloadError(ModpmError, RuntimeError):
    """Fetching a source failed."""

    def __init__(self, message: str, source: Optional[str] = None, local_path: Optional[str] = None):
        if source and local_path:
            message = f"failed to download '{source}' into '{local_path}': {message}"
        elif source:
            message = f"failed to download '{source}': {message}"
        super().__init__(message)
        self.source = source
        self.local_path = local_path


class RegistryError(DownloadError):
    """An OCI registry request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url
