"""Package data models: manifest, lock file and dependencies."""

import os
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..constants import (
    LOCK_FILE, MANIFEST_FILE, VENDOR_DIR, VIRTUAL_PACKAGE_PREFIX,
)
from ..errors import (
    InvalidManifestError, ManifestNotFoundError, PackageNotFoundError, SourceError,
)
from ..utils.semver import compare_versions, is_valid_version
from .source import Git, Local, ModSpec, Oci, Source, SourceKind


@dataclass
class Dependency:
    """A declared or resolved dependency of a package."""
    name: str
    source: Source
    version: str = ""
    full_name: str = ""
    sum: str = ""
    local_full_path: str = ""

    def __post_init__(self):
        if not self.full_name:
            self.full_name = self.gen_full_name()

    def gen_full_name(self) -> str:
        """``<name>_<version>``; local dependencies and unversioned ones use the bare name."""
        if self.is_from_local() or not self.version:
            return self.name
        return f"{self.name}_{self.version}"

    def is_from_local(self) -> bool:
        return self.source.is_local_path()

    def is_from_git(self) -> bool:
        return self.source.kind == SourceKind.GIT

    @property
    def alias_name(self) -> str:
        """Import name of the dependency (dashes are not valid in identifiers)."""
        return self.name.replace("-", "_")

    def version_less_than(self, other: "Dependency") -> bool:
        return compare_versions(self.version, other.version) < 0

    def with_version(self, version: str) -> "Dependency":
        """Copy of this dependency at ``version`` with a regenerated full name."""
        return replace(self, version=version, full_name="")

    def to_manifest_entry(self) -> Union[str, Dict[str, Any]]:
        """Render the dependency as it is declared in ``modpm.yml``."""
        source = self.source
        kind = source.kind
        if kind == SourceKind.SPEC_ONLY:
            return self.version or source.mod_spec.version
        if kind == SourceKind.LOCAL:
            entry = {"path": source.local.path}
        elif kind == SourceKind.GIT:
            entry = {"git": source.git.url}
            for key in ("tag", "commit", "branch"):
                value = getattr(source.git, key)
                if value:
                    entry[key] = value
        elif kind == SourceKind.OCI:
            entry = {"oci": f"oci://{source.oci.reference}"}
            if source.oci.tag:
                entry["tag"] = source.oci.tag
        elif kind == SourceKind.REGISTRY:
            if source.registry.version:
                return source.registry.version
            entry = {"oci": f"oci://{source.registry.oci.reference}", "tag": source.registry.oci.tag}
        else:
            raise SourceError(f"unsupported source kind {kind}")

        if source.mod_spec is not None and not source.mod_spec.is_nil():
            # only an explicit version pins the package; the ref is not one
            entry["package"] = source.mod_spec.name
            if source.mod_spec.version:
                entry["version"] = source.mod_spec.version
        elif self.version and kind != SourceKind.LOCAL and self.version != entry.get("tag"):
            entry["version"] = self.version
        return entry

    @classmethod
    def from_manifest_entry(cls, name: str, value: Union[str, Dict[str, Any]]) -> "Dependency":
        """Parse one ``dependencies`` entry of ``modpm.yml``.

        Supported forms::

            name: "0.1.2"                                  # default registry
            name: {oci: "oci://reg/repo", tag: "0.1.2"}
            name: {git: "https://host/org/repo.git", tag: "v0.1.0"}
            name: {path: "../local"}
            name: {git: "...", commit: "abc", package: "sub", version: "0.1.0"}

        Only an explicit ``version`` pins the package selected by ``package``;
        a git or OCI tag is a reference, not a package version.

        Raises:
            InvalidManifestError: If the entry has an unknown shape
        """
        if isinstance(value, (int, float)):
            value = str(value)

        if isinstance(value, str):
            if is_valid_version(value):
                return cls(name=name, version=value, source=Source(mod_spec=ModSpec(name, value)))
            try:
                source = Source.parse(value)
            except SourceError as e:
                raise InvalidManifestError(f"Invalid dependency '{name}': {e}")
            return cls(name=name, source=source, version=_source_version(source))

        if not isinstance(value, dict):
            raise InvalidManifestError(f"Invalid dependency '{name}': expected a version string or a mapping")

        pinned = str(value.get("version") or "")
        version = pinned
        package = value.get("package")
        try:
            if "path" in value:
                source = Source(local=Local(str(value["path"])))
            elif "git" in value:
                git = Git.parse(str(value["git"]))
                git = replace(
                    git,
                    tag=str(value.get("tag") or git.tag),
                    commit=str(value.get("commit") or git.commit),
                    branch=str(value.get("branch") or git.branch),
                )
                source = Source(git=git)
                version = version or git.tag
            elif "oci" in value:
                oci = Oci.parse(str(value["oci"]))
                oci = replace(oci, tag=str(value.get("tag") or oci.tag))
                source = Source(oci=oci)
                version = version or oci.tag
            else:
                raise InvalidManifestError(
                    f"Invalid dependency '{name}': one of 'path', 'git' or 'oci' is required"
                )
            if package:
                source = replace(source, mod_spec=ModSpec(str(package), pinned))
        except SourceError as e:
            raise InvalidManifestError(f"Invalid dependency '{name}': {e}")

        return cls(name=name, source=source, version=version)

    def to_lock_entry(self) -> Dict[str, Any]:
        entry = {
            "name": self.name,
            "full_name": self.full_name,
            "version": self.version,
            "source": self.source.to_string(),
        }
        if self.sum:
            entry["sum"] = self.sum
        return entry

    @classmethod
    def from_lock_entry(cls, key: str, entry: Dict[str, Any]) -> "Dependency":
        if not isinstance(entry, dict) or "source" not in entry:
            raise InvalidManifestError(f"Invalid lock entry '{key}': a 'source' is required")
        try:
            source = Source.parse(str(entry["source"]))
        except SourceError as e:
            raise InvalidManifestError(f"Invalid lock entry '{key}': {e}")
        return cls(
            name=str(entry.get("name") or key),
            source=source,
            version=str(entry.get("version") or ""),
            full_name=str(entry.get("full_name") or ""),
            sum=str(entry.get("sum") or ""),
        )

    def __str__(self) -> str:
        return f"{self.name}@{self.version}" if self.version else self.name


def _source_version(source: Source) -> str:
    kind = source.kind
    if source.mod_spec is not None and source.mod_spec.version:
        return source.mod_spec.version
    if kind == SourceKind.GIT:
        return source.git.tag
    if kind == SourceKind.OCI:
        return source.oci.tag
    if kind == SourceKind.REGISTRY:
        return source.registry.version
    return ""


@dataclass
class Profile:
    """Compile options of a package, passed through to the compiler."""
    entries: List[str] = field(default_factory=list)
    disable_none: Optional[bool] = None
    sort_keys: Optional[bool] = None
    selectors: List[str] = field(default_factory=list)
    overrides: List[str] = field(default_factory=list)
    options: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        return cls(
            entries=list(data.get("entries") or []),
            disable_none=data.get("disable_none"),
            sort_keys=data.get("sort_keys"),
            selectors=list(data.get("selectors") or []),
            overrides=list(data.get("overrides") or []),
            options=list(data.get("arguments") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for key, value in (("entries", self.entries), ("disable_none", self.disable_none),
                           ("sort_keys", self.sort_keys), ("selectors", self.selectors),
                           ("overrides", self.overrides), ("arguments", self.options)):
            if value not in (None, []):
                data[key] = value
        return data


@dataclass
class Manifest:
    """Contents of ``modpm.yml``."""
    name: str
    version: str = ""
    edition: str = ""
    description: Optional[str] = None
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    dependencies: Dict[str, Dependency] = field(default_factory=dict)
    profile: Optional[Profile] = None

    @classmethod
    def from_yaml(cls, manifest_path: Path) -> "Manifest":
        """Load a manifest from a ``modpm.yml`` file.

        Args:
            manifest_path: Path to the manifest file

        Returns:
            Manifest: Loaded manifest

        Raises:
            ManifestNotFoundError: If the file doesn't exist
            InvalidManifestError: If the file is invalid or missing required fields
        """
        if not manifest_path.exists():
            raise ManifestNotFoundError(str(manifest_path.parent))

        try:
            with open(manifest_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidManifestError(f"Invalid YAML format in {manifest_path}: {e}")

        if not isinstance(data, dict):
            raise InvalidManifestError(f"{MANIFEST_FILE} must contain a YAML object, got {type(data).__name__}")

        if not data.get('name'):
            raise InvalidManifestError(f"Missing required field 'name' in {manifest_path}")

        dependencies = {}
        raw_deps = data.get('dependencies') or {}
        if not isinstance(raw_deps, dict):
            raise InvalidManifestError(f"'dependencies' in {manifest_path} must be a mapping")
        for dep_name, value in raw_deps.items():
            dependencies[str(dep_name)] = Dependency.from_manifest_entry(str(dep_name), value)

        profile = data.get('profile')
        return cls(
            name=str(data['name']),
            version=str(data.get('version') or ""),
            edition=str(data.get('edition') or ""),
            description=data.get('description'),
            include=list(data.get('include') or []),
            exclude=list(data.get('exclude') or []),
            dependencies=dependencies,
            profile=Profile.from_dict(profile) if isinstance(profile, dict) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.version:
            data["version"] = self.version
        if self.edition:
            data["edition"] = self.edition
        if self.description:
            data["description"] = self.description
        if self.include:
            data["include"] = self.include
        if self.exclude:
            data["exclude"] = self.exclude
        if self.dependencies:
            data["dependencies"] = {name: dep.to_manifest_entry() for name, dep in self.dependencies.items()}
        if self.profile is not None and self.profile.to_dict():
            data["profile"] = self.profile.to_dict()
        return data


def load_lock_file(lock_path: Path) -> Dict[str, Dependency]:
    """Read ``modpm.lock``; a missing file means no locked dependencies."""
    if not lock_path.exists():
        return {}
    try:
        with open(lock_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise InvalidManifestError(f"Invalid YAML format in {lock_path}: {e}")

    if not isinstance(data, dict):
        raise InvalidManifestError(f"{LOCK_FILE} must contain a YAML object")
    entries = data.get("dependencies") or {}
    return {str(key): Dependency.from_lock_entry(str(key), entry) for key, entry in entries.items()}


@dataclass
class Package:
    """A loaded package: its manifest, lock state and location on disk."""
    manifest: Manifest
    home_path: Path
    lock_dependencies: Dict[str, Dependency] = field(default_factory=dict)
    vendor_mode: bool = False
    no_sum_check: bool = False
    virtual: bool = False

    @property
    def name(self) -> str:
        return self.manifest.name

    @property
    def version(self) -> str:
        return self.manifest.version

    @property
    def full_name(self) -> str:
        return f"{self.name}_{self.version}" if self.version else self.name

    @property
    def dependencies(self) -> Dict[str, Dependency]:
        """Declared dependencies, in manifest order."""
        return self.manifest.dependencies

    @property
    def manifest_path(self) -> Path:
        return self.home_path / MANIFEST_FILE

    @property
    def lock_path(self) -> Path:
        return self.home_path / LOCK_FILE

    @property
    def vendor_path(self) -> Path:
        return self.home_path / VENDOR_DIR

    @classmethod
    def load(cls, path: Union[str, Path], vendor_mode: bool = False, no_sum_check: bool = False) -> "Package":
        """Load the package rooted at ``path`` (manifest required, lock optional)."""
        home_path = Path(path).absolute()
        manifest = Manifest.from_yaml(home_path / MANIFEST_FILE)
        return cls(
            manifest=manifest,
            home_path=home_path,
            lock_dependencies=load_lock_file(home_path / LOCK_FILE),
            vendor_mode=vendor_mode,
            no_sum_check=no_sum_check,
        )

    @classmethod
    def new_virtual(cls, path: Union[str, Path]) -> "Package":
        """An in-memory package for a directory of source files without a manifest."""
        name = f"{VIRTUAL_PACKAGE_PREFIX}{uuid.uuid4().hex}"
        return cls(
            manifest=Manifest(name=name, version="0.0.1"),
            home_path=Path(path).absolute(),
            virtual=True,
        )

    def store_manifest(self) -> None:
        with open(self.manifest_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.manifest.to_dict(), f, sort_keys=False, default_flow_style=False)

    def store_lock(self) -> None:
        data = {"dependencies": {name: dep.to_lock_entry() for name, dep in self.lock_dependencies.items()}}
        with open(self.lock_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(data, f, sort_keys=False, default_flow_style=False)


def find_package(root: Union[str, Path], name: str) -> Path:
    """Find the directory below ``root`` whose manifest declares package ``name``.

    Raises:
        PackageNotFoundError: If no manifest below ``root`` has that name
    """
    root = Path(root)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in (".git", VENDOR_DIR))
        if MANIFEST_FILE not in filenames:
            continue
        try:
            manifest = Manifest.from_yaml(Path(dirpath) / MANIFEST_FILE)
        except InvalidManifestError:
            continue
        if manifest.name == name:
            return Path(dirpath)
    raise PackageNotFoundError(name, str(root))


class ValidationResult:
    """Result of package validation."""
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    package: Optional[Package] = None

    def __init__(self):
        self.is_valid = True
        self.errors = []
        self.warnings = []
        self.package = None

    def add_error(self, error: str) -> None:
        """Add a validation error."""
        self.errors.append(error)
        self.is_valid = False

    def add_warning(self, warning: str) -> None:
        """Add a validation warning."""
        self.warnings.append(warning)

    def has_issues(self) -> bool:
        return bool(self.errors or self.warnings)

    def summary(self) -> str:
        if self.is_valid and not self.warnings:
            return "✅ Package is valid"
        elif self.is_valid and self.warnings:
            return f"⚠️ Package is valid with {len(self.warnings)} warning(s)"
        else:
            return f"❌ Package is invalid with {len(self.errors)} error(s)"


def validate_package(package_path: Path) -> ValidationResult:
    """Validate that a directory contains a loadable package.

    Args:
        package_path: Path to the directory to validate

    Returns:
        ValidationResult: Validation results with any errors/warnings
    """
    result = ValidationResult()

    if not package_path.exists():
        result.add_error(f"Package directory does not exist: {package_path}")
        return result

    if not package_path.is_dir():
        result.add_error(f"Package path is not a directory: {package_path}")
        return result

    if not (package_path / MANIFEST_FILE).exists():
        result.add_error(f"Missing required file: {MANIFEST_FILE}")
        return result

    try:
        package = Package.load(package_path)
        result.package = package
    except (InvalidManifestError, ManifestNotFoundError) as e:
        result.add_error(f"Invalid {MANIFEST_FILE}: {e}")
        return result

    if not package.version:
        result.add_warning(f"Package '{package.name}' has no version")
    elif not is_valid_version(package.version):
        result.add_warning(f"Version '{package.version}' is not a valid version")

    for name, dep in package.lock_dependencies.items():
        if not dep.is_from_local() and not dep.sum:
            result.add_warning(f"Locked dependency '{name}' has no checksum")

    return result
