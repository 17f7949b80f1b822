"""Dependency source model.

A :class:`Source` says where a dependency comes from. It is a tagged union:
exactly one of ``local``, ``git``, ``oci`` or ``registry`` is set, or only a
``mod_spec`` is set (a *spec-only* source whose registry and repository are
filled from the configured defaults later). A ``mod_spec`` attached to any other
variant selects one package inside a multi-package artifact.

Every source has a canonical string form which :meth:`Source.parse` reads back::

    ../path/to/pkg                           local path
    git://github.com/org/repo?tag=v0.1.0     git (stored as https)
    ssh://git@github.com/org/repo?commit=C   git over ssh
    oci://ghcr.io/org/pkg?tag=0.1.0          OCI artifact
    default-oci://ghcr.io/org/pkg?tag=0.1.0&name=pkg&version=0.1.0
    default-oci://?mod=pkg:0.1.0             spec only
"""

import os
import posixpath
import urllib.parse
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from packaging.version import InvalidVersion, Version

from ..constants import (
    BRANCH_KEY, COMMIT_KEY, DEFAULT_OCI_SCHEME, GIT_EXT, GIT_SCHEME, HTTP_SCHEME,
    HTTPS_SCHEME, LOCAL_SCHEME, MANIFEST_FILE, MOD_KEY, NAME_KEY, OCI_SCHEME,
    SSH_SCHEME, TAG_KEY, TAR_EXT, TGZ_EXT, VERSION_KEY,
)
from ..errors import SourceError
from ..utils.fs import short_hash


class SourceKind(Enum):
    """Kinds of dependency sources."""
    LOCAL = "local"
    GIT = "git"
    OCI = "oci"
    REGISTRY = "registry"
    SPEC_ONLY = "spec_only"


def _encode_query(params: Dict[str, str]) -> str:
    return urllib.parse.urlencode({k: v for k, v in params.items() if v}, safe=":/")


def _query_value(query: Dict[str, list], key: str) -> str:
    values = query.get(key)
    return values[0] if values else ""


@dataclass(frozen=True)
class ModSpec:
    """A package identity inside a source: ``name`` or ``name:version``."""
    name: str
    version: str = ""

    def __post_init__(self):
        if not self.version:
            return
        try:
            Version(self.version)
        except InvalidVersion:
            raise SourceError(
                f"invalid package reference '{self.name}:{self.version}': "
                f"'{self.version}' is not a valid version",
                f"{self.name}:{self.version}",
            )

    @classmethod
    def parse(cls, spec: str) -> "ModSpec":
        """Parse ``name`` or ``name:version``.

        Raises:
            SourceError: If the reference is malformed or the version is not a valid version
        """
        parts = spec.split(":")
        if len(parts) > 2 or not parts[0]:
            raise SourceError(f"invalid package reference '{spec}'", spec)
        if len(parts) == 1:
            return cls(name=parts[0])
        if not parts[1]:
            raise SourceError(f"invalid package reference '{spec}': empty version", spec)
        return cls(name=parts[0], version=parts[1])

    def is_nil(self) -> bool:
        return not self.name and not self.version

    def __str__(self) -> str:
        if self.version:
            return f"{self.name}:{self.version}"
        return self.name


@dataclass(frozen=True)
class Local:
    """A package or source file on the local filesystem."""
    path: str

    def is_tar(self) -> bool:
        return self.path.endswith(TAR_EXT)

    def is_tgz(self) -> bool:
        return self.path.endswith(TGZ_EXT)

    def is_dir(self) -> bool:
        return os.path.isdir(self.path)

    def find_root_path(self) -> str:
        """Locate the package root for this path.

        A directory holding a manifest is its own root. Otherwise the search
        walks upward from the path's parent directory; if no manifest is found
        the parent directory of a file (or the directory itself) is returned.
        """
        if os.path.isfile(os.path.join(self.path, MANIFEST_FILE)):
            return os.path.abspath(self.path)

        directory = os.path.dirname(os.path.abspath(self.path))
        while True:
            if os.path.isfile(os.path.join(directory, MANIFEST_FILE)):
                return directory
            parent = os.path.dirname(directory)
            if parent == directory:
                break
            directory = parent

        if self.is_dir():
            return os.path.abspath(self.path)
        return os.path.dirname(os.path.abspath(self.path))


@dataclass(frozen=True)
class Git:
    """A git repository at exactly one of a branch, commit or tag."""
    url: str
    branch: str = ""
    commit: str = ""
    tag: str = ""

    @classmethod
    def parse(cls, git_str: str) -> "Git":
        parsed = urllib.parse.urlsplit(git_str)
        if parsed.scheme not in (GIT_SCHEME, SSH_SCHEME, HTTPS_SCHEME, HTTP_SCHEME):
            raise SourceError(f"invalid git url with scheme '{parsed.scheme}'", git_str)
        if not parsed.netloc:
            raise SourceError(f"invalid git url '{git_str}': missing host", git_str)

        scheme = HTTPS_SCHEME if parsed.scheme == GIT_SCHEME else parsed.scheme
        query = urllib.parse.parse_qs(parsed.query)
        url = urllib.parse.urlunsplit((scheme, parsed.netloc, parsed.path, "", ""))
        return cls(
            url=url,
            branch=_query_value(query, BRANCH_KEY),
            commit=_query_value(query, COMMIT_KEY),
            tag=_query_value(query, TAG_KEY),
        )

    def no_ref(self) -> bool:
        return not (self.tag or self.branch or self.commit)

    @property
    def ref(self) -> str:
        return self.tag or self.branch or self.commit

    def valid_reference(self) -> str:
        """Get the single git reference of this source.

        Raises:
            SourceError: Unless exactly one of branch, commit or tag is set
        """
        refs = [r for r in (self.tag, self.commit, self.branch) if r]
        if len(refs) != 1:
            raise SourceError("only one of branch, tag or commit is allowed", self.to_string())
        return refs[0]

    @property
    def repo_name(self) -> str:
        path = urllib.parse.urlsplit(self.url).path.rstrip("/")
        if path.endswith(GIT_EXT):
            path = path[:-len(GIT_EXT)]
        return posixpath.basename(path)

    def to_string(self) -> str:
        parsed = urllib.parse.urlsplit(self.url)
        scheme = GIT_SCHEME if parsed.scheme == HTTPS_SCHEME else parsed.scheme
        query = _encode_query({BRANCH_KEY: self.branch, COMMIT_KEY: self.commit, TAG_KEY: self.tag})
        return urllib.parse.urlunsplit((scheme, parsed.netloc, parsed.path, query, ""))

    def to_file_path(self) -> str:
        parsed = urllib.parse.urlsplit(self.url)
        parts = [GIT_SCHEME, parsed.netloc, parsed.path.strip("/"), self.tag, self.commit, self.branch]
        return posixpath.join(*[p for p in parts if p])

    def cache_key(self) -> str:
        parsed = urllib.parse.urlsplit(self.url)
        path = parsed.path.rstrip("/")
        if path.endswith(GIT_EXT):
            path = path[:-len(GIT_EXT)]
        bucket = short_hash(f"{parsed.netloc}{posixpath.dirname(path)}")
        name = posixpath.basename(path)
        return posixpath.join(bucket, f"{name}_{self.ref}" if self.ref else name)


@dataclass(frozen=True)
class Oci:
    """An artifact in an OCI registry."""
    reg: str
    repo: str
    tag: str = ""

    @classmethod
    def parse(cls, oci_str: str) -> "Oci":
        parsed = urllib.parse.urlsplit(oci_str)
        if parsed.scheme not in (OCI_SCHEME, DEFAULT_OCI_SCHEME):
            raise SourceError(f"invalid oci url with scheme '{parsed.scheme}'", oci_str)
        repo = parsed.path.strip("/")
        if not parsed.netloc or not repo:
            raise SourceError(f"invalid oci url '{oci_str}': registry and repository are required", oci_str)
        query = urllib.parse.parse_qs(parsed.query)
        return cls(reg=parsed.netloc, repo=repo, tag=_query_value(query, TAG_KEY))

    def no_ref(self) -> bool:
        return not self.tag

    @property
    def ref(self) -> str:
        return self.tag

    @property
    def repo_name(self) -> str:
        return posixpath.basename(self.repo)

    @property
    def reference(self) -> str:
        """``reg/repo`` as used by the OCI client."""
        return f"{self.reg}/{self.repo}"

    def to_string(self, scheme: str = OCI_SCHEME) -> str:
        query = _encode_query({TAG_KEY: self.tag})
        return urllib.parse.urlunsplit((scheme, self.reg, f"/{self.repo}", query, ""))

    def to_file_path(self) -> str:
        return posixpath.join(*[p for p in (OCI_SCHEME, self.reg, self.repo, self.tag) if p])

    def cache_key(self) -> str:
        bucket = short_hash(f"{self.reg}/{posixpath.dirname(self.repo)}")
        name = self.repo_name
        return posixpath.join(bucket, f"{name}_{self.tag}" if self.tag else name)


@dataclass(frozen=True)
class Registry:
    """An OCI artifact in the default registry, named by package name and version."""
    name: str
    version: str
    oci: Oci

    @classmethod
    def parse(cls, registry_str: str) -> "Registry":
        oci = Oci.parse(registry_str)
        query = urllib.parse.parse_qs(urllib.parse.urlsplit(registry_str).query)
        name = _query_value(query, NAME_KEY) or oci.repo_name
        version = _query_value(query, VERSION_KEY) or oci.tag
        return cls(name=name, version=version, oci=oci)

    def to_string(self) -> str:
        query = _encode_query({TAG_KEY: self.oci.tag, NAME_KEY: self.name, VERSION_KEY: self.version})
        return urllib.parse.urlunsplit((DEFAULT_OCI_SCHEME, self.oci.reg, f"/{self.oci.repo}", query, ""))


@dataclass(frozen=True)
class Source:
    """Where a dependency comes from. See the module docstring."""
    local: Optional[Local] = None
    git: Optional[Git] = None
    oci: Optional[Oci] = None
    registry: Optional[Registry] = None
    mod_spec: Optional[ModSpec] = None

    def __post_init__(self):
        variants = [v for v in (self.local, self.git, self.oci, self.registry) if v is not None]
        if len(variants) > 1:
            raise SourceError("a source must have exactly one of local, git, oci or registry")
        if not variants and (self.mod_spec is None or self.mod_spec.is_nil()):
            raise SourceError("a source must have one of local, git, oci, registry or a package spec")

    @property
    def kind(self) -> SourceKind:
        if self.local is not None:
            return SourceKind.LOCAL
        if self.git is not None:
            return SourceKind.GIT
        if self.oci is not None:
            return SourceKind.OCI
        if self.registry is not None:
            return SourceKind.REGISTRY
        return SourceKind.SPEC_ONLY

    @classmethod
    def parse(cls, source_str: str) -> "Source":
        """Parse the canonical string form of a source.

        Args:
            source_str: Source string, e.g. ``oci://ghcr.io/org/pkg?tag=0.1.0``

        Returns:
            Source: The parsed source

        Raises:
            SourceError: On an unknown scheme or a malformed source string
        """
        if not source_str:
            raise SourceError("empty source string", source_str)

        if "://" not in source_str:
            path, mod_spec = source_str, None
            if "?" in source_str:
                head, _, query_str = source_str.rpartition("?")
                query = urllib.parse.parse_qs(query_str)
                if MOD_KEY in query:
                    path, mod_spec = head, ModSpec.parse(_query_value(query, MOD_KEY))
            return cls(local=Local(path), mod_spec=mod_spec)

        parsed = urllib.parse.urlsplit(source_str)
        query = urllib.parse.parse_qs(parsed.query)
        mod_spec = ModSpec.parse(_query_value(query, MOD_KEY)) if MOD_KEY in query else None
        rest = {k: v for k, v in query.items() if k != MOD_KEY}
        stripped = urllib.parse.urlunsplit(
            (parsed.scheme, parsed.netloc, parsed.path, urllib.parse.urlencode(rest, doseq=True), "")
        )

        scheme = parsed.scheme
        if scheme in (GIT_SCHEME, SSH_SCHEME, HTTPS_SCHEME, HTTP_SCHEME):
            return cls(git=Git.parse(stripped), mod_spec=mod_spec)
        if scheme == OCI_SCHEME:
            return cls(oci=Oci.parse(stripped), mod_spec=mod_spec)
        if scheme == DEFAULT_OCI_SCHEME:
            if not parsed.netloc:
                if mod_spec is None:
                    raise SourceError(f"invalid source '{source_str}': a package spec is required", source_str)
                return cls(mod_spec=mod_spec)
            return cls(registry=Registry.parse(stripped), mod_spec=mod_spec)
        if scheme == LOCAL_SCHEME:
            return cls(local=Local(parsed.path), mod_spec=mod_spec)

        raise SourceError(f"unsupported source scheme '{scheme}' in '{source_str}'", source_str)

    def to_string(self) -> str:
        kind = self.kind
        if kind == SourceKind.LOCAL:
            base = self.local.path
        elif kind == SourceKind.GIT:
            base = self.git.to_string()
        elif kind == SourceKind.OCI:
            base = self.oci.to_string()
        elif kind == SourceKind.REGISTRY:
            base = self.registry.to_string()
        elif kind == SourceKind.SPEC_ONLY:
            base = f"{DEFAULT_OCI_SCHEME}://"
        else:
            raise SourceError(f"unsupported source kind {kind}")

        if self.mod_spec is None or self.mod_spec.is_nil():
            return base
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}{_encode_query({MOD_KEY: str(self.mod_spec)})}"

    def __str__(self) -> str:
        return self.to_string()

    def to_file_path(self) -> str:
        """Relative path separating this source's artifacts by scheme, location and ref."""
        kind = self.kind
        if kind == SourceKind.LOCAL:
            path = self.local.path
        elif kind == SourceKind.GIT:
            path = self.git.to_file_path()
        elif kind == SourceKind.OCI:
            path = self.oci.to_file_path()
        elif kind == SourceKind.REGISTRY:
            path = self.registry.oci.to_file_path()
        elif kind == SourceKind.SPEC_ONLY:
            path = ""
        else:
            raise SourceError(f"unsupported source kind {kind}")

        if self.mod_spec is not None and not self.mod_spec.is_nil():
            parts = [p for p in (path, self.mod_spec.name, self.mod_spec.version) if p]
            path = posixpath.join(*parts)
        return path

    def find_root_path(self) -> str:
        """Package root for local sources; the relative file path for remote ones."""
        kind = self.kind
        if kind == SourceKind.LOCAL:
            return self.local.find_root_path()
        if kind == SourceKind.GIT:
            return self.git.to_file_path()
        if kind == SourceKind.OCI:
            return self.oci.to_file_path()
        if kind == SourceKind.REGISTRY:
            return self.registry.oci.to_file_path()
        raise SourceError(f"cannot find the root path of source '{self}'", self.to_string())

    def cache_scheme(self) -> str:
        kind = self.kind
        if kind == SourceKind.GIT:
            return GIT_SCHEME
        if kind in (SourceKind.OCI, SourceKind.REGISTRY):
            return OCI_SCHEME
        raise SourceError(f"source '{self}' is not cacheable", self.to_string())

    def cache_key(self) -> str:
        """``<bucket hash>/<name>_<ref>`` identifying this source in the cache.

        A pure function of the identity fields, computed without network access.
        """
        kind = self.kind
        if kind == SourceKind.GIT:
            return self.git.cache_key()
        if kind == SourceKind.OCI:
            return self.oci.cache_key()
        if kind == SourceKind.REGISTRY:
            return self.registry.oci.cache_key()
        raise SourceError(f"source '{self}' is not cacheable", self.to_string())

    @property
    def oci_source(self) -> Optional[Oci]:
        """The OCI part of an ``oci`` or ``registry`` source."""
        if self.oci is not None:
            return self.oci
        if self.registry is not None:
            return self.registry.oci
        return None

    def with_defaults(self, default_registry: str, default_repo: str) -> "Source":
        """Turn a spec-only source into a registry source in the default registry.

        The package ``name`` lives at ``<default_registry>/<default_repo>/<name>``
        and its version is used as the tag. Other sources are returned as is.
        """
        if not self.spec_only():
            return self
        spec = self.mod_spec
        oci = Oci(reg=default_registry, repo=posixpath.join(default_repo, spec.name), tag=spec.version)
        return Source(registry=Registry(name=spec.name, version=spec.version, oci=oci))

    def no_ref(self) -> bool:
        kind = self.kind
        if kind == SourceKind.GIT:
            return self.git.no_ref()
        if kind in (SourceKind.OCI, SourceKind.REGISTRY):
            return self.oci_source.no_ref()
        return False

    def with_ref(self, ref: str) -> "Source":
        """Copy of a remote source pinned to ``ref`` (tag or commit)."""
        kind = self.kind
        if kind == SourceKind.GIT:
            return replace(self, git=replace(self.git, commit=ref))
        if kind == SourceKind.OCI:
            return replace(self, oci=replace(self.oci, tag=ref))
        if kind == SourceKind.REGISTRY:
            registry = replace(self.registry, version=self.registry.version or ref,
                               oci=replace(self.registry.oci, tag=ref))
            return replace(self, registry=registry)
        raise SourceError(f"cannot set a reference on source '{self}'", self.to_string())

    def is_nil(self) -> bool:
        return self.kind == SourceKind.SPEC_ONLY and (self.mod_spec is None or self.mod_spec.is_nil())

    def spec_only(self) -> bool:
        return self.kind == SourceKind.SPEC_ONLY

    def is_remote(self) -> bool:
        return self.kind in (SourceKind.GIT, SourceKind.OCI, SourceKind.REGISTRY, SourceKind.SPEC_ONLY)

    def is_local_path(self) -> bool:
        return self.kind == SourceKind.LOCAL

    def is_local_tar_path(self) -> bool:
        return self.is_local_path() and self.local.is_tar()

    def is_local_tgz_path(self) -> bool:
        return self.is_local_path() and self.local.is_tgz()

    def is_local_pkg(self) -> bool:
        """A local directory holding a manifest."""
        return self.is_local_path() and os.path.isfile(os.path.join(self.local.path, MANIFEST_FILE))

    def rebase(self, home_path: Path) -> "Source":
        """Resolve a relative local path against ``home_path``; other sources are returned as is."""
        if not self.is_local_path() or os.path.isabs(self.local.path):
            return self
        return replace(self, local=Local(os.path.normpath(os.path.join(str(home_path), self.local.path))))
