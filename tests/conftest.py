"""Shared fixtures: package trees on disk and a downloader that needs no network."""

from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
import yaml

from modpm.config import Settings
from modpm.constants import MANIFEST_FILE
from modpm.deps.downloader import DownloadOptions, Downloader
from modpm.models.source import Source, SourceKind


def _write_manifest(path: Path, name: str, version: str = "0.0.1",
                    dependencies: Optional[Dict] = None) -> Path:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    data = {"name": name, "version": version}
    if dependencies:
        data["dependencies"] = dependencies
    (path / MANIFEST_FILE).write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    (path / "main.k").write_text(f"{name} = 1\n", encoding="utf-8")
    return path


class FakeDownloader(Downloader):
    """Writes a package for ``(repo name, ref)`` instead of pulling or cloning it.

    ``version`` overrides the manifest version (the ref by default) and
    ``subdir`` places the package below the download root, as in a repository
    holding several packages.
    """

    def __init__(self):
        self.packages: Dict[Tuple[str, str], Dict] = {}
        self.latest: Dict[str, str] = {}
        self.calls: List[str] = []

    def publish(self, repo_name: str, tag: str, name: Optional[str] = None,
                dependencies: Optional[Dict] = None, version: Optional[str] = None,
                subdir: str = "") -> None:
        self.packages[(repo_name, tag)] = {
            "name": name or repo_name,
            "dependencies": dependencies,
            "version": version or tag,
            "subdir": subdir,
        }
        current = self.latest.get(repo_name)
        if current is None or tag > current:
            self.latest[repo_name] = tag

    @staticmethod
    def _key(source: Source) -> Tuple[str, str]:
        if source.kind == SourceKind.GIT:
            return source.git.repo_name, source.git.ref
        return source.oci_source.repo_name, source.oci_source.tag

    def latest_version(self, opts: DownloadOptions) -> str:
        return self.latest[self._key(opts.source)[0]]

    def download(self, opts: DownloadOptions) -> None:
        self.calls.append(opts.source.to_string())
        spec = self.packages[self._key(opts.source)]
        _write_manifest(Path(opts.local_path) / spec["subdir"], spec["name"], spec["version"], spec["dependencies"])


@pytest.fixture
def write_manifest():
    return _write_manifest


@pytest.fixture
def fake_downloader():
    return FakeDownloader()


@pytest.fixture
def settings(tmp_path):
    return Settings(home_path=tmp_path / "home", quiet=True, no_sum_check=True)
