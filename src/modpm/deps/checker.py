"""Package checks run before dependencies are trusted."""

import re
from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional

from ..config import Settings
from ..constants import OCI_SUM_ANNOTATION
from ..errors import ChecksumMismatchError, InvalidManifestError, RegistryError
from ..models.package import Dependency, Package
from ..registry.credentials import CredentialManager
from ..registry.oci_client import OciClient
from ..utils.semver import is_valid_version


VALID_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(?:-[a-z0-9_]+)*$")

TrustedSumFunc = Callable[[Dependency], str]


class Checker(ABC):
    @abstractmethod
    def check(self, package: Package) -> None:
        """Raise if ``package`` fails the check."""
        pass


class ModChecker(Checker):
    """Runs a list of checkers in order, stopping at the first failure."""

    def __init__(self, checkers: Optional[Iterable[Checker]] = None):
        self.checkers: List[Checker] = list(checkers or [])

    def add_checker(self, checker: Checker) -> None:
        self.checkers.append(checker)

    def __len__(self) -> int:
        return len(self.checkers)

    def check(self, package: Package) -> None:
        for checker in self.checkers:
            checker.check(package)


class IdentChecker(Checker):
    def check(self, package: Package) -> None:
        if not VALID_NAME_PATTERN.match(package.name or ""):
            raise InvalidManifestError(f"invalid name: {package.name}")


class VersionChecker(Checker):
    def check(self, package: Package) -> None:
        if not is_valid_version(package.version):
            raise InvalidManifestError(f"invalid version: {package.version} for {package.name}")


def check_dependency_sum(dep: Dependency, trusted_sum: str, no_sum_check: bool = False) -> None:
    """Compare a locked checksum against the trusted one.

    Raises:
        ChecksumMismatchError: If the sums differ and checking is enabled
    """
    if no_sum_check:
        return
    if dep.sum != trusted_sum:
        raise ChecksumMismatchError(dep.name, trusted_sum, dep.sum)


def fetch_dep_sum(dep: Dependency, settings: Settings,
                  credentials: Optional[CredentialManager] = None) -> str:
    """Checksum recorded in the OCI manifest of ``dep``.

    Returns an empty string for dependencies that do not come from an OCI
    registry or whose manifest carries no checksum annotation.

    Raises:
        RegistryError: If the manifest cannot be fetched
    """
    source = dep.source.with_defaults(settings.default_oci_registry, settings.default_oci_repo)
    oci = source.oci_source
    if oci is None:
        return ""
    credentials = credentials or CredentialManager(settings.credentials_file)
    client = OciClient(
        oci.reg,
        oci.repo,
        credentials=credentials.credentials_for(oci.reg),
        plain_http=settings.oci_plain_http,
        insecure_skip_tls_verify=settings.insecure_skip_tls_verify,
    )
    manifest = client.fetch_manifest(oci.tag or dep.version)
    annotations = manifest.get("annotations") or {}
    return annotations.get(OCI_SUM_ANNOTATION, "")


def registry_sum_func(settings: Settings) -> TrustedSumFunc:
    """Read a dependency's trusted checksum from its OCI manifest annotation."""
    credentials = CredentialManager(settings.credentials_file)

    def trusted_sum(dep: Dependency) -> str:
        value = fetch_dep_sum(dep, settings, credentials)
        if not value:
            raise RegistryError(f"failed to get the checksum of '{dep.name}' from a trusted source")
        return value

    return trusted_sum


class SumChecker(Checker):
    """Verifies locked checksums of registry dependencies against the registry.

    Local and git dependencies have no trusted source and are skipped, as is
    every dependency when the package disables sum checking.
    """

    def __init__(self, trusted_sum_func: TrustedSumFunc):
        self.trusted_sum_func = trusted_sum_func

    def check(self, package: Package) -> None:
        if package.no_sum_check:
            return
        for dep in package.lock_dependencies.values():
            if dep.is_from_local() or dep.is_from_git():
                continue
            check_dependency_sum(dep, self.trusted_sum_func(dep))


def default_checker(settings: Settings) -> ModChecker:
    return ModChecker([IdentChecker(), VersionChecker(), SumChecker(registry_sum_func(settings))])
