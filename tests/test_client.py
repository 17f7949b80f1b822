"""Tests for the high-level client."""

import tarfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml

from modpm.client import ModClient, source_at_version
from modpm.constants import OCI_SUM_ANNOTATION
from modpm.deps.cache import PackageCache
from modpm.deps.checker import IdentChecker, ModChecker
from modpm.deps.dependency_graph import ModuleVersion
from modpm.errors import DownloadError, SourceError
from modpm.models.package import Dependency
from modpm.models.source import Git, Local, ModSpec, Oci, Source
from modpm.utils.archive import create_archive
from modpm.utils.fs import hash_dir


HELLOWORLD = {"oci": "oci://ghcr.io/org/helloworld", "tag": "0.1.2"}


@pytest.fixture
def make_client(tmp_path, fake_downloader):
    def make(settings):
        return ModClient(
            settings,
            downloader=fake_downloader,
            cache=PackageCache(tmp_path / "cache"),
            checker=ModChecker([IdentChecker()]),
            release_lister=lambda source: None,
        )
    return make


@pytest.fixture
def client(settings, make_client):
    return make_client(settings)


@pytest.fixture
def local_tree(tmp_path, write_manifest):
    write_manifest(tmp_path / "c", "c")
    write_manifest(tmp_path / "a", "a", dependencies={"c": {"path": "../c"}})
    write_manifest(tmp_path / "b", "b")
    return write_manifest(tmp_path / "root", "root", dependencies={
        "a": {"path": "../a"},
        "b": {"path": "../b"},
    })


class TestUpdate:
    """update() resolves everything and writes modpm.lock."""

    def test_writes_lock(self, tmp_path, client, write_manifest, fake_downloader):
        """Remote dependencies are locked with version, full name and source."""
        fake_downloader.publish("helloworld", "0.1.2")
        root = write_manifest(tmp_path / "root", "root", dependencies={"helloworld": HELLOWORLD})

        client.update(client.load_package(root))

        lock = yaml.safe_load((root / "modpm.lock").read_text())
        entry = lock["dependencies"]["helloworld"]
        assert entry["version"] == "0.1.2"
        assert entry["full_name"] == "helloworld_0.1.2"
        assert entry["source"] == "oci://ghcr.io/org/helloworld?tag=0.1.2"
        assert "sum" not in entry

    def test_no_manifest_leaves_modpm_yml(self, tmp_path, client, write_manifest, fake_downloader):
        """With update_manifest off only the lock is written."""
        fake_downloader.publish("helloworld", "0.1.2")
        root = write_manifest(tmp_path / "root", "root", dependencies={"helloworld": HELLOWORLD})
        before = (root / "modpm.yml").read_text()

        client.update(client.load_package(root), update_manifest=False)

        assert (root / "modpm.yml").read_text() == before
        assert (root / "modpm.lock").is_file()

    def test_indirect_dependencies_locked(self, local_tree, client):
        """The lock records every transitive dependency."""
        package = client.update(client.load_package(local_tree))
        assert sorted(package.lock_dependencies) == ["a", "b", "c"]
        assert sorted(package.manifest.dependencies) == ["a", "b"]

    @pytest.mark.parametrize("enable_mvs,expected", [(True, "0.1.2"), (False, "0.1.1")])
    def test_conflicting_versions(self, tmp_path, settings, make_client, write_manifest, fake_downloader,
                                  enable_mvs, expected):
        """MVS keeps the greater version; otherwise the last one resolved wins."""
        fake_downloader.publish("helloworld", "0.1.1")
        fake_downloader.publish("helloworld", "0.1.2")
        write_manifest(tmp_path / "a", "a", dependencies={"helloworld": HELLOWORLD})
        write_manifest(tmp_path / "b", "b", dependencies={
            "helloworld": {"oci": "oci://ghcr.io/org/helloworld", "tag": "0.1.1"},
        })
        root = write_manifest(tmp_path / "root", "root", dependencies={
            "a": {"path": "../a"},
            "b": {"path": "../b"},
        })
        client = make_client(settings.with_overrides(enable_mvs=enable_mvs))

        package = client.update(client.load_package(root))

        assert package.lock_dependencies["helloworld"].version == expected

    def test_offline_uses_cache_only(self, tmp_path, client, write_manifest, fake_downloader):
        """Offline updates succeed from the cache and fail for anything missing."""
        fake_downloader.publish("helloworld", "0.1.2")
        root = write_manifest(tmp_path / "root", "root", dependencies={"helloworld": HELLOWORLD})
        client.update(client.load_package(root))
        fake_downloader.calls.clear()

        client.update(client.load_package(root), offline=True)
        assert fake_downloader.calls == []

        other = write_manifest(tmp_path / "other", "other", dependencies={
            "base": {"oci": "oci://ghcr.io/org/base", "tag": "1.0.0"},
        })
        with pytest.raises(DownloadError):
            client.update(client.load_package(other), offline=True)

    def test_resolve_deps_into_map(self, tmp_path, local_tree, client):
        """Import names map to the directories packages live in."""
        paths = client.resolve_deps_into_map(client.load_package(local_tree))
        assert paths == {"a": str(tmp_path / "a"), "b": str(tmp_path / "b"), "c": str(tmp_path / "c")}


class TestGraph:
    def test_display(self, local_tree, client):
        """Edges print breadth first from the root package."""
        graph = client.graph(client.load_package(local_tree))
        assert graph.display_from(ModuleVersion("root", "0.0.1")) == (
            "root@0.0.1 a@0.0.1\n"
            "root@0.0.1 b@0.0.1\n"
            "a@0.0.1 c@0.0.1\n"
        )

    def test_build_list_with_local_dependencies(self, local_tree, client):
        """Local modules have no releases and keep their versions."""
        result = client.build_list(client.load_package(local_tree))
        assert [str(m) for m in result] == ["root@0.0.1", "a@0.0.1", "b@0.0.1", "c@0.0.1"]

    def test_check_runs_configured_checkers(self, tmp_path, client, write_manifest):
        """Only the checkers the client was built with run."""
        client.check(client.load_package(write_manifest(tmp_path / "root", "root")))


class TestSourceAtVersion:
    def test_oci_tag_replaced(self):
        """OCI sources move to the given tag."""
        source = Source(oci=Oci(reg="ghcr.io", repo="org/pkg", tag="1.0.0"))
        assert source_at_version(source, "1.2.0").oci.tag == "1.2.0"

    def test_spec_only_version_replaced(self):
        """Package specs move to the given version."""
        source = Source(mod_spec=ModSpec("pkg", "1.0.0"))
        assert source_at_version(source, "1.2.0").mod_spec.version == "1.2.0"


class TestAcquireDepSum:
    def test_git_checkout_is_hashed(self, tmp_path, client, write_manifest):
        """Git dependencies get the checksum of their checked out tree."""
        checkout = write_manifest(tmp_path / "checkout", "gitdep")
        dep = Dependency(
            name="gitdep",
            source=Source(git=Git(url="https://github.com/org/gitdep", tag="v0.1.0")),
            local_full_path=str(checkout),
        )
        assert client.acquire_dep_sum(dep) == hash_dir(checkout)

    def test_local_dependency_has_no_sum(self, tmp_path, client):
        """Local dependencies have nothing to look up."""
        dep = Dependency(name="local_dep", source=Source(local=Local(str(tmp_path))))
        assert client.acquire_dep_sum(dep) == ""


class TestLoadedVersion:
    """The version a package declares in its manifest names it in the graph."""

    @pytest.fixture
    def konfig_root(self, tmp_path, write_manifest, fake_downloader):
        fake_downloader.publish("konfig", "v0.1.2", version="0.1.2", dependencies={
            "base": {"oci": "oci://ghcr.io/org/base", "tag": "1.0.0"},
        })
        fake_downloader.publish("base", "1.0.0")
        return write_manifest(tmp_path / "root", "root", dependencies={
            "konfig": {"oci": "oci://ghcr.io/org/konfig", "tag": "v0.1.2"},
        })

    def test_graph_is_connected(self, konfig_root, client):
        """Edges into and out of a package use the same version."""
        graph = client.graph(client.load_package(konfig_root))
        assert graph.display_from(ModuleVersion("root", "0.0.1")) == (
            "root@0.0.1 konfig@0.1.2\n"
            "konfig@0.1.2 base@1.0.0\n"
        )

    def test_build_list_keeps_indirect_dependencies(self, konfig_root, client):
        """Requirements of a package reached through a tag are part of the build list."""
        result = client.build_list(client.load_package(konfig_root))
        assert [str(m) for m in result] == ["root@0.0.1", "base@1.0.0", "konfig@0.1.2"]


class TestLockedPath:
    def test_greater_locked_version_keeps_its_own_tree(self, tmp_path, settings, make_client,
                                                       write_manifest, fake_downloader):
        """With MVS keeping a locked version, the lock points at that version's tree."""
        fake_downloader.publish("helloworld", "0.1.1")
        fake_downloader.publish("helloworld", "0.1.2")
        client = make_client(settings.with_overrides(enable_mvs=True))
        root = write_manifest(tmp_path / "root", "root", dependencies={"helloworld": HELLOWORLD})
        client.update(client.load_package(root))

        write_manifest(tmp_path / "root", "root", dependencies={
            "helloworld": {"oci": "oci://ghcr.io/org/helloworld", "tag": "0.1.1"},
        })
        package = client.update(client.load_package(root))

        locked = package.lock_dependencies["helloworld"]
        newer = Source(oci=Oci(reg="ghcr.io", repo="org/helloworld", tag="0.1.2"))
        assert locked.version == "0.1.2"
        assert locked.local_full_path == str(client.cache.source_path(newer))


class TestAdd:
    def test_add_local_package(self, tmp_path, client, write_manifest):
        """The added package is declared under its own name and locked."""
        write_manifest(tmp_path / "extra", "extra", version="0.2.0")
        root = write_manifest(tmp_path / "root", "root")
        package = client.load_package(root)

        dep = client.add(package, "../extra")

        assert dep.name == "extra"
        manifest = yaml.safe_load((root / "modpm.yml").read_text())
        assert manifest["dependencies"] == {"extra": {"path": "../extra"}}
        assert package.lock_dependencies["extra"].local_full_path == str(tmp_path / "extra")

    def test_add_pins_latest_release(self, tmp_path, client, write_manifest, fake_downloader):
        """A package added without a version is pinned to the one found."""
        fake_downloader.publish("helloworld", "0.1.1")
        fake_downloader.publish("helloworld", "0.1.2")
        root = write_manifest(tmp_path / "root", "root")
        package = client.load_package(root)

        dep = client.add(package, "default-oci://?mod=helloworld")

        assert dep.version == "0.1.2"
        assert yaml.safe_load((root / "modpm.yml").read_text())["dependencies"] == {"helloworld": "0.1.2"}
        assert package.lock_dependencies["helloworld"].version == "0.1.2"

    def test_add_directory_without_manifest(self, tmp_path, client, write_manifest):
        """Source files without a manifest cannot be added."""
        plain = tmp_path / "plain"
        plain.mkdir()
        (plain / "main.k").write_text("a = 1\n")
        package = client.load_package(write_manifest(tmp_path / "root", "root"))

        with pytest.raises(SourceError, match="modpm.yml"):
            client.add(package, "../plain")
        assert package.dependencies == {}


class TestPull:
    def test_pull_remote_package(self, tmp_path, client, fake_downloader):
        """Remote packages land under their source file path."""
        fake_downloader.publish("helloworld", "0.1.2")

        pulled = client.pull("oci://ghcr.io/org/helloworld?tag=0.1.2", tmp_path / "out")

        expected = tmp_path / "out" / "oci" / "ghcr.io" / "org" / "helloworld" / "0.1.2"
        assert pulled.home_path == expected
        assert pulled.full_name == "helloworld_0.1.2"

    def test_pull_local_archive(self, tmp_path, client, write_manifest):
        """Archives are unpacked into a directory named after them."""
        archive = create_archive(write_manifest(tmp_path / "pkg", "packed"), tmp_path / "packed.tgz")

        pulled = client.pull(str(archive), tmp_path / "out")

        assert pulled.home_path == tmp_path / "out" / "packed"
        assert pulled.name == "packed"


class TestPush:
    @pytest.fixture
    def oci_client(self):
        oci_client = MagicMock()
        pushed = {}

        def push(archive, tag, annotations=None):
            with tarfile.open(archive) as tar:
                pushed["members"] = sorted(tar.getnames())
            pushed["archive"] = Path(archive).name
            pushed["tag"] = tag
            return {"annotations": annotations}

        oci_client.push.side_effect = push
        oci_client.pushed = pushed
        return oci_client

    @pytest.fixture
    def push_client(self, tmp_path, settings, fake_downloader, oci_client):
        return ModClient(
            settings,
            downloader=fake_downloader,
            cache=PackageCache(tmp_path / "cache"),
            checker=ModChecker([]),
            release_lister=lambda source: None,
            oci_client_factory=lambda oci, opts: oci_client,
        )

    def test_push_packs_and_annotates(self, tmp_path, push_client, oci_client, write_manifest):
        """The package tree is packed, tagged with its version and annotated with its checksum."""
        pkg = write_manifest(tmp_path / "pkg", "helloworld", version="0.1.2")

        manifest = push_client.push(push_client.load_package(pkg), "oci://ghcr.io/org/helloworld")

        assert oci_client.pushed == {
            "members": ["main.k", "modpm.yml"],
            "archive": "helloworld_0.1.2.tar",
            "tag": "0.1.2",
        }
        assert manifest["annotations"] == {OCI_SUM_ANNOTATION: hash_dir(pkg)}

    def test_push_needs_a_tag(self, tmp_path, push_client, write_manifest):
        """Without a tag in the url or a package version there is nothing to push to."""
        pkg = write_manifest(tmp_path / "pkg", "helloworld", version="")
        with pytest.raises(SourceError):
            push_client.push(push_client.load_package(pkg), "oci://ghcr.io/org/helloworld")
