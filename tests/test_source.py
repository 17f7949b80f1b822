"""Tests for the dependency source model."""

import pytest

from modpm.errors import SourceError
from modpm.models.source import Git, Local, ModSpec, Oci, Registry, Source, SourceKind


class TestSourceRoundTrip:
    """Canonical strings parse back to the same source."""

    @pytest.mark.parametrize("source", [
        Source(local=Local("../pkgs/helloworld")),
        Source(git=Git(url="https://github.com/org/repo", tag="v0.1.0")),
        Source(git=Git(url="ssh://git@github.com/org/repo.git", commit="abc123")),
        Source(oci=Oci(reg="ghcr.io", repo="org/helloworld", tag="0.1.2")),
        Source(registry=Registry(name="helloworld", version="0.1.2",
                                 oci=Oci(reg="ghcr.io", repo="kcl-lang/helloworld", tag="0.1.2"))),
        Source(mod_spec=ModSpec("helloworld", "0.1.2")),
        Source(oci=Oci(reg="ghcr.io", repo="org/mono", tag="1.0.0"), mod_spec=ModSpec("sub", "1.0.0")),
    ])
    def test_parse_to_string(self, source):
        """Parsing the string form rebuilds an equal source."""
        assert Source.parse(source.to_string()) == source

    def test_git_scheme_is_stored_as_https(self):
        """git:// urls are cloned over https."""
        source = Source.parse("git://github.com/org/repo?tag=v0.1.0")
        assert source.kind == SourceKind.GIT
        assert source.git.url == "https://github.com/org/repo"
        assert source.to_string() == "git://github.com/org/repo?tag=v0.1.0"

    def test_spec_only_source(self):
        """A bare package spec becomes a spec-only source."""
        source = Source.parse("default-oci://?mod=helloworld:0.1.2")
        assert source.spec_only()
        assert source.mod_spec == ModSpec("helloworld", "0.1.2")


class TestSourceValidation:
    """Malformed sources are rejected when built or parsed."""

    def test_two_variants_rejected(self):
        """A source cannot be both local and OCI."""
        with pytest.raises(SourceError):
            Source(local=Local("."), oci=Oci(reg="ghcr.io", repo="org/pkg"))

    def test_empty_source_rejected(self):
        """A source needs a variant or a package spec."""
        with pytest.raises(SourceError):
            Source()

    def test_unknown_scheme(self):
        """Unsupported schemes raise SourceError."""
        with pytest.raises(SourceError, match="unsupported source scheme"):
            Source.parse("ftp://example.com/pkg")

    @pytest.mark.parametrize("spec", ["a:b:c", ":1.0.0", "pkg:", "pkg:not-a-version"])
    def test_bad_mod_spec(self, spec):
        """Package references need a name and at most one valid version."""
        with pytest.raises(SourceError):
            ModSpec.parse(spec)

    def test_oci_requires_repo(self):
        """OCI urls need both registry and repository."""
        with pytest.raises(SourceError):
            Oci.parse("oci://ghcr.io")


class TestGitReference:
    """Exactly one of branch, tag or commit is allowed."""

    def test_single_reference(self):
        """A lone tag is the reference."""
        assert Git(url="https://github.com/org/repo", tag="v1").valid_reference() == "v1"

    def test_two_references_rejected(self):
        """Tag and commit together are ambiguous."""
        git = Git(url="https://github.com/org/repo", tag="v1", commit="abc")
        with pytest.raises(SourceError, match="only one of branch, tag or commit"):
            git.valid_reference()

    def test_no_reference_rejected(self):
        """A clone needs some reference."""
        with pytest.raises(SourceError):
            Git(url="https://github.com/org/repo").valid_reference()


class TestSourceHelpers:
    def test_with_defaults_fills_registry(self):
        """Spec-only sources point into the default registry and repository."""
        source = Source(mod_spec=ModSpec("helloworld", "0.1.2")).with_defaults("ghcr.io", "kcl-lang")
        assert source.kind == SourceKind.REGISTRY
        assert source.registry.oci == Oci(reg="ghcr.io", repo="kcl-lang/helloworld", tag="0.1.2")

    def test_with_ref_pins_oci_tag(self):
        """Pinning an OCI source sets its tag."""
        source = Source(oci=Oci(reg="ghcr.io", repo="org/pkg")).with_ref("0.2.0")
        assert source.oci.tag == "0.2.0"
        assert not source.no_ref()

    def test_cache_key_is_stable(self):
        """The cache key depends only on the identity fields."""
        a = Source(oci=Oci(reg="ghcr.io", repo="org/helloworld", tag="0.1.2"))
        b = Source.parse(a.to_string())
        assert a.cache_key() == b.cache_key()
        assert a.cache_key().endswith("/helloworld_0.1.2")

    def test_cache_key_differs_by_tag(self):
        """Two tags of one repository are cached separately."""
        a = Source(oci=Oci(reg="ghcr.io", repo="org/helloworld", tag="0.1.1"))
        b = Source(oci=Oci(reg="ghcr.io", repo="org/helloworld", tag="0.1.2"))
        assert a.cache_key() != b.cache_key()

    def test_local_source_not_cacheable(self):
        """Local paths have no cache entry."""
        with pytest.raises(SourceError):
            Source(local=Local(".")).cache_key()

    def test_rebase_relative_local_path(self, tmp_path):
        """Relative local paths resolve against the declaring package."""
        source = Source(local=Local("../dep")).rebase(tmp_path / "root")
        assert source.local.path == str(tmp_path / "dep")

    def test_mod_spec_version_validated_on_construction(self):
        """A package spec never holds a version that its string form could not carry."""
        with pytest.raises(SourceError, match="release-1"):
            ModSpec("sub", "release-1")

    def test_non_version_git_tag_round_trips(self):
        """A git tag that is not a version travels as a ref, beside an unpinned package."""
        source = Source(git=Git(url="https://github.com/org/mono", tag="release-1"), mod_spec=ModSpec("sub"))
        assert source.to_string() == "git://github.com/org/mono?tag=release-1&mod=sub"
        assert Source.parse(source.to_string()) == source


class TestFindRootPath:
    def test_package_directory_is_its_own_root(self, tmp_path, write_manifest):
        """A directory holding a manifest is returned as is."""
        pkg = write_manifest(tmp_path / "pkg", "pkg")
        assert Local(str(pkg)).find_root_path() == str(pkg)

    def test_file_walks_up_to_nearest_manifest(self, tmp_path, write_manifest):
        """A file below a package resolves to the closest directory with a manifest."""
        pkg = write_manifest(tmp_path / "pkg", "pkg")
        nested = pkg / "sub" / "deeper"
        nested.mkdir(parents=True)
        (nested / "main.k").write_text("a = 1\n")
        assert Local(str(nested / "main.k")).find_root_path() == str(pkg)

    def test_file_without_manifest_returns_its_parent(self, tmp_path):
        """With no manifest anywhere above, a file's own directory is the root."""
        src = tmp_path / "src"
        src.mkdir()
        (src / "main.k").write_text("a = 1\n")
        assert Local(str(src / "main.k")).find_root_path() == str(src)
