"""Tests for manifest and lock file handling."""

import pytest

from modpm.errors import InvalidManifestError, ManifestNotFoundError, PackageNotFoundError
from modpm.models.package import (
    Dependency, Manifest, Package, find_package, load_lock_file, validate_package,
)
from modpm.models.source import ModSpec, SourceKind


class TestManifest:
    """modpm.yml parsing accepts every dependency form."""

    def test_dependency_forms(self, tmp_path, write_manifest):
        """Version strings, oci, git and path entries all parse."""
        root = write_manifest(tmp_path / "root", "root", dependencies={
            "helloworld": "0.1.2",
            "oci_dep": {"oci": "oci://ghcr.io/org/oci_dep", "tag": "1.0.0"},
            "git_dep": {"git": "https://github.com/org/git_dep.git", "tag": "v0.1.0"},
            "local_dep": {"path": "../local_dep"},
        })
        deps = Manifest.from_yaml(root / "modpm.yml").dependencies

        assert deps["helloworld"].source.kind == SourceKind.SPEC_ONLY
        assert deps["helloworld"].full_name == "helloworld_0.1.2"
        assert deps["oci_dep"].version == "1.0.0"
        assert deps["git_dep"].source.git.tag == "v0.1.0"
        assert deps["local_dep"].is_from_local()
        assert deps["local_dep"].full_name == "local_dep"

    def test_dependency_order_preserved(self, tmp_path, write_manifest):
        """Dependencies keep their declaration order."""
        root = write_manifest(tmp_path / "root", "root", dependencies={
            "zeta": "1.0.0", "alpha": "1.0.0", "mid": "1.0.0",
        })
        assert list(Package.load(root).dependencies) == ["zeta", "alpha", "mid"]

    def test_missing_manifest(self, tmp_path):
        """A directory without modpm.yml is not a package."""
        with pytest.raises(ManifestNotFoundError):
            Package.load(tmp_path)

    def test_missing_name(self, tmp_path):
        """The name field is required."""
        (tmp_path / "modpm.yml").write_text("version: 0.0.1\n")
        with pytest.raises(InvalidManifestError, match="name"):
            Package.load(tmp_path)

    def test_unknown_dependency_shape(self):
        """A mapping without path, git or oci is rejected."""
        with pytest.raises(InvalidManifestError):
            Dependency.from_manifest_entry("bad", {"tag": "1.0.0"})

    def test_git_tag_does_not_pin_the_package(self, tmp_path, write_manifest):
        """A tag selects the commit; only an explicit version pins the package."""
        root = write_manifest(tmp_path / "root", "root", dependencies={
            "sub": {"git": "https://github.com/org/mono.git", "tag": "v0.1.0", "package": "sub"},
            "pinned": {"git": "https://github.com/org/mono.git", "tag": "v0.1.0", "package": "pinned",
                       "version": "0.1.0"},
        })
        deps = Manifest.from_yaml(root / "modpm.yml").dependencies

        assert deps["sub"].source.mod_spec == ModSpec("sub")
        assert deps["sub"].version == "v0.1.0"
        assert deps["pinned"].source.mod_spec == ModSpec("pinned", "0.1.0")

    def test_invalid_pinned_version(self, tmp_path, write_manifest):
        """A pinned package version must be a version."""
        root = write_manifest(tmp_path / "root", "root", dependencies={
            "sub": {"git": "https://github.com/org/mono.git", "tag": "v0.1.0", "package": "sub",
                    "version": "release-1"},
        })
        with pytest.raises(InvalidManifestError, match="release-1"):
            Package.load(root)

    def test_store_round_trip(self, tmp_path, write_manifest):
        """Storing a loaded manifest and loading it again gives the same dependencies."""
        root = write_manifest(tmp_path / "root", "root", dependencies={
            "helloworld": "0.1.2",
            "oci_dep": {"oci": "oci://ghcr.io/org/oci_dep", "tag": "1.0.0"},
            "local_dep": {"path": "../local_dep"},
        })
        package = Package.load(root)
        package.store_manifest()

        reloaded = Package.load(root)
        assert reloaded.dependencies == package.dependencies


class TestLockFile:
    def test_missing_lock_is_empty(self, tmp_path):
        """No lock file means nothing is locked yet."""
        assert load_lock_file(tmp_path / "modpm.lock") == {}

    def test_lock_round_trip(self, tmp_path, write_manifest):
        """Locked name, version, source and sum survive a store and load."""
        root = write_manifest(tmp_path / "root", "root", dependencies={"helloworld": "0.1.2"})
        package = Package.load(root)
        dep = package.dependencies["helloworld"]
        dep.sum = "abc="
        package.lock_dependencies["helloworld"] = dep
        package.store_lock()

        locked = load_lock_file(root / "modpm.lock")["helloworld"]
        assert locked.version == "0.1.2"
        assert locked.full_name == "helloworld_0.1.2"
        assert locked.sum == "abc="
        assert locked.source == dep.source

    def test_lock_entry_without_source(self, tmp_path):
        """Every lock entry needs a source."""
        (tmp_path / "modpm.lock").write_text("dependencies:\n  a:\n    version: 1.0.0\n")
        with pytest.raises(InvalidManifestError, match="source"):
            load_lock_file(tmp_path / "modpm.lock")

    def test_git_package_with_non_version_tag_round_trip(self, tmp_path, write_manifest):
        """A package in a git repo tagged with a non-version survives storing and loading."""
        root = write_manifest(tmp_path / "root", "root", dependencies={
            "sub": {"git": "https://github.com/org/mono.git", "tag": "release-1", "package": "sub"},
        })
        package = Package.load(root)
        package.lock_dependencies = dict(package.dependencies)
        package.store_manifest()
        package.store_lock()

        reloaded = Package.load(root)
        assert reloaded.lock_dependencies["sub"].source == package.dependencies["sub"].source
        assert reloaded.dependencies["sub"].source.git.tag == "release-1"
        assert reloaded.dependencies["sub"].source.mod_spec == ModSpec("sub")


class TestFindPackage:
    def test_finds_nested_package(self, tmp_path, write_manifest):
        """A package named in a subdirectory is found by name."""
        write_manifest(tmp_path / "mono" / "pkgs" / "sub", "sub")
        assert find_package(tmp_path / "mono", "sub") == tmp_path / "mono" / "pkgs" / "sub"

    def test_missing_package(self, tmp_path):
        """An unknown name fails."""
        with pytest.raises(PackageNotFoundError):
            find_package(tmp_path, "nothing")


class TestValidatePackage:
    def test_valid_package(self, tmp_path, write_manifest):
        """A package with a name and version passes without warnings."""
        result = validate_package(write_manifest(tmp_path / "pkg", "pkg"))
        assert result.is_valid
        assert not result.has_issues()

    def test_missing_manifest_is_an_error(self, tmp_path):
        """A directory without modpm.yml fails validation."""
        result = validate_package(tmp_path)
        assert not result.is_valid
        assert "modpm.yml" in result.errors[0]

    def test_unchecksummed_lock_warns(self, tmp_path, write_manifest):
        """Locked remote dependencies without a checksum are flagged."""
        root = write_manifest(tmp_path / "pkg", "pkg", dependencies={"helloworld": "0.1.2"})
        package = Package.load(root)
        package.lock_dependencies = dict(package.dependencies)
        package.store_lock()

        result = validate_package(root)
        assert result.is_valid
        assert any("checksum" in warning for warning in result.warnings)

    def test_summary(self, tmp_path, write_manifest):
        """The summary line reflects errors and warnings."""
        assert "valid" in validate_package(write_manifest(tmp_path / "pkg", "pkg")).summary()
        assert "invalid" in validate_package(tmp_path / "missing").summary()
