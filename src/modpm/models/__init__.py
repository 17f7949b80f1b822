"""Models for modpm data structures."""

from .source import Source, SourceKind, Local, Git, Oci, Registry, ModSpec
from .package import (
    Package,
    Manifest,
    Profile,
    Dependency,
    ValidationResult,
    find_package,
    validate_package,
)

__all__ = [
    "Source",
    "SourceKind",
    "Local",
    "Git",
    "Oci",
    "Registry",
    "ModSpec",
    "Package",
    "Manifest",
    "Profile",
    "Dependency",
    "ValidationResult",
    "find_package",
    "validate_package",
]
