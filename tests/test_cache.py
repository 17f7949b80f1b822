"""Tests for the package cache and its file lock."""

import pytest

from modpm.deps.cache import PackageCache
from modpm.deps.cache_lock import CacheLock
from modpm.errors import CacheNotFoundError
from modpm.models.source import Git, Oci, Source


@pytest.fixture
def oci_source():
    return Source(oci=Oci(reg="ghcr.io", repo="org/helloworld", tag="0.1.2"))


class TestPackageCache:
    """Cache paths are computed from the source alone."""

    def test_paths_are_idempotent(self, tmp_path, oci_source):
        """Computing a path twice gives the same answer and touches nothing."""
        cache = PackageCache(tmp_path)
        assert cache.source_path(oci_source) == cache.source_path(oci_source)
        assert not cache.source_path(oci_source).exists()

    def test_layout(self, tmp_path, oci_source):
        """Trees live under src/ and artifacts under cache/."""
        cache = PackageCache(tmp_path)
        key = oci_source.cache_key()
        assert cache.source_path(oci_source) == tmp_path / "oci" / "src" / key
        assert cache.artifact_path(oci_source) == tmp_path / "oci" / "cache" / key

    def test_git_scheme_partition(self, tmp_path):
        """Git sources are cached under git/."""
        source = Source(git=Git(url="https://github.com/org/repo", tag="v0.1.0"))
        assert PackageCache(tmp_path).source_path(source).relative_to(tmp_path).parts[0] == "git"

    def test_find_missing_entry(self, tmp_path, oci_source):
        """A miss raises the not-found sentinel, not a generic error."""
        with pytest.raises(CacheNotFoundError):
            PackageCache(tmp_path).find(oci_source)

    def test_empty_entry_is_a_miss(self, tmp_path, oci_source):
        """An interrupted download leaving an empty directory is not a hit."""
        cache = PackageCache(tmp_path)
        cache.source_path(oci_source).mkdir(parents=True)
        with pytest.raises(CacheNotFoundError):
            cache.find(oci_source)

    def test_update_then_find(self, tmp_path, oci_source):
        """update() fills the entry through the callback; find() then hits."""
        cache = PackageCache(tmp_path)

        def fill(path):
            path.mkdir()
            (path / "main.k").write_text("a = 1\n")

        path = cache.update(oci_source, fill)
        assert cache.find(oci_source) == path
        assert (path / "main.k").is_file()

    def test_remove_all(self, tmp_path, oci_source):
        """Clearing the cache drops every scheme directory."""
        cache = PackageCache(tmp_path)
        cache.update(oci_source, lambda path: (path.mkdir(), (path / "x").write_text("1")))
        cache.remove_all()
        assert not (tmp_path / "oci").exists()


class TestCacheLock:
    """The advisory lock excludes a second holder until released."""

    def test_second_holder_blocked(self, tmp_path):
        """While one lock is held another cannot be taken."""
        lock_file = tmp_path / "config" / "package-cache"
        first = CacheLock(lock_file)
        second = CacheLock(lock_file)
        with first:
            assert first.locked
            assert not second.try_lock()
        assert not first.locked
        assert second.try_lock()
        second.release()

    def test_released_on_exception(self, tmp_path):
        """An error inside the block still releases the lock."""
        lock = CacheLock(tmp_path / "package-cache")
        with pytest.raises(RuntimeError):
            with lock:
                raise RuntimeError("boom")
        assert not lock.locked


class TestCachedArtifacts:
    def test_single_artifact_found(self, tmp_path, oci_source):
        """The raw archive kept next to the tree can be looked up."""
        cache = PackageCache(tmp_path)
        artifact_dir = cache.artifact_path(oci_source)
        artifact_dir.mkdir(parents=True)
        (artifact_dir / "helloworld_0.1.2.tar").write_bytes(b"")
        assert cache.find_artifact(oci_source) == artifact_dir / "helloworld_0.1.2.tar"

    def test_missing_artifact(self, tmp_path, oci_source):
        """No archive is a cache miss."""
        with pytest.raises(CacheNotFoundError):
            PackageCache(tmp_path).find_artifact(oci_source)

    def test_remove_single_source(self, tmp_path, oci_source):
        """Removing one source leaves nothing behind for it."""
        cache = PackageCache(tmp_path)
        cache.update(oci_source, lambda path: (path.mkdir(), (path / "x").write_text("1")))
        cache.remove(oci_source)
        assert not cache.source_path(oci_source).exists()
