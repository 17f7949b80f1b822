"""Minimal version selection over a resolved dependency graph.

The build list of a target holds one version per module path: the greatest
version required anywhere in the part of the graph still reachable once the
selected versions are substituted in. Upgrades add requirements on newer
versions; downgrades exclude every module version that needs something above
the requested limit and step those modules back through their releases.
"""

from collections import defaultdict, deque
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from packaging import version as pkg_version

from ..config import Settings
from ..constants import LATEST_TAG, NONE_VERSION
from ..models.source import Source
from ..registry.credentials import CredentialManager
from ..registry.oci_client import OciClient
from ..utils.semver import compare_versions, parse_version
from .dependency_graph import DepGraph, ModuleVersion


ReleaseLister = Callable[[str], Optional[List[str]]]
ModuleLoader = Callable[[ModuleVersion, Optional[str]], None]


def oci_release_lister(settings: Settings) -> ReleaseLister:
    """List the tags of OCI-backed sources; other sources have no releases."""
    credentials = CredentialManager(settings.credentials_file)

    def list_releases(source_str: str) -> Optional[List[str]]:
        source = Source.parse(source_str).with_defaults(settings.default_oci_registry, settings.default_oci_repo)
        oci = source.oci_source
        if oci is None:
            return None
        client = OciClient(
            oci.reg,
            oci.repo,
            credentials=credentials.credentials_for(oci.reg),
            plain_http=settings.oci_plain_http,
            insecure_skip_tls_verify=settings.insecure_skip_tls_verify,
        )
        return client.list_tags()

    return list_releases


class ReqsGraph:
    """Requirement queries MVS needs, answered from a ``DepGraph``.

    Releases come from ``release_lister``, called with the source string
    recorded on the vertex. Modules whose source has no release list (local
    paths, git) never move on upgrade or downgrade.

    When an upgrade or downgrade lands on a version the graph has not seen,
    the vertex is added and ``loader`` is asked to fill in its requirements;
    without a loader the new version is treated as having none.
    """

    def __init__(self, graph: DepGraph, release_lister: Optional[ReleaseLister] = None,
                 loader: Optional[ModuleLoader] = None):
        self.graph = graph
        self.release_lister = release_lister
        self.loader = loader
        self._releases_cache: Dict[str, Optional[List[str]]] = {}

    def max(self, path: str, v1: str, v2: str) -> str:
        """The greater of two versions of ``path``.

        ``none`` loses to the empty version, which loses to any concrete one.
        Concrete versions that do not parse rank below those that do.
        """
        if v1 == v2:
            return v1
        if v1 == NONE_VERSION:
            return v2
        if v2 == NONE_VERSION:
            return v1
        if v1 == "":
            return v2
        if v2 == "":
            return v1
        order = compare_versions(v1, v2)
        if order == 0:
            return max(v1, v2)
        return v1 if order > 0 else v2

    def required(self, m: ModuleVersion) -> List[ModuleVersion]:
        if m.version == NONE_VERSION:
            return []
        if m not in self.graph and self.loader is not None:
            self._track(m, self._source_for(m))
        return self.graph.required(m)

    def _source_for(self, m: ModuleVersion) -> Optional[str]:
        if m in self.graph and self.graph.source_of(m):
            return self.graph.source_of(m)
        for vertex in self.graph.vertices():
            if vertex.path == m.path:
                source = self.graph.source_of(vertex)
                if source:
                    return source
        return None

    def _releases(self, m: ModuleVersion) -> Optional[List[str]]:
        if self.release_lister is None:
            return None
        source = self._source_for(m)
        if not source:
            return None
        if source not in self._releases_cache:
            self._releases_cache[source] = self.release_lister(source)
        return self._releases_cache[source]

    def _track(self, m: ModuleVersion, source: Optional[str]) -> ModuleVersion:
        if m in self.graph:
            return m
        self.graph.add_vertex(m.path, m.version, source)
        if self.loader is not None:
            self.loader(m, source)
        return m

    def _parsed(self, releases: Sequence[str]) -> List[Tuple[pkg_version.Version, str]]:
        candidates = []
        for release in releases:
            if release == LATEST_TAG:
                continue
            parsed = parse_version(release)
            if parsed is not None:
                candidates.append((parsed, release))
        return candidates

    def _compatible(self, m: ModuleVersion, releases: Sequence[str]) -> List[Tuple[pkg_version.Version, str]]:
        current = parse_version(m.version)
        if current is None:
            return self._parsed(releases)
        return [(parsed, release) for parsed, release in self._parsed(releases) if parsed.major == current.major]

    def upgrade(self, m: ModuleVersion) -> ModuleVersion:
        """Latest release of ``m`` with the same major version, or ``m`` itself."""
        releases = self._releases(m)
        if not releases:
            return m
        current = parse_version(m.version)
        newer = [(parsed, release) for parsed, release in self._compatible(m, releases)
                 if current is None or parsed > current]
        if not newer:
            return m
        _, release = max(newer, key=lambda item: item[0])
        return self._track(ModuleVersion(m.path, release), self._source_for(m))

    def previous(self, m: ModuleVersion) -> ModuleVersion:
        """Release just below ``m``, or ``m@none`` when there is none.

        Modules without a release list are returned unchanged.
        """
        releases = self._releases(m)
        if releases is None:
            return m
        current = parse_version(m.version)
        if current is None:
            return ModuleVersion(m.path, NONE_VERSION)
        older = [(parsed, release) for parsed, release in self._parsed(releases) if parsed < current]
        if not older:
            return ModuleVersion(m.path, NONE_VERSION)
        _, release = max(older, key=lambda item: item[0])
        return self._track(ModuleVersion(m.path, release), self._source_for(m))


class _Override:
    """Wraps reqs so the target requires a given list instead of its own."""

    def __init__(self, target: ModuleVersion, target_reqs: Sequence[ModuleVersion], reqs):
        self.target = target
        self.target_reqs = list(target_reqs)
        self.reqs = reqs

    def max(self, path: str, v1: str, v2: str) -> str:
        return self.reqs.max(path, v1, v2)

    def required(self, m: ModuleVersion) -> List[ModuleVersion]:
        if m == self.target:
            return list(self.target_reqs)
        return self.reqs.required(m)

    def upgrade(self, m: ModuleVersion) -> ModuleVersion:
        return self.reqs.upgrade(m)

    def previous(self, m: ModuleVersion) -> ModuleVersion:
        return self.reqs.previous(m)


def build_list(target: ModuleVersion, reqs) -> List[ModuleVersion]:
    """Target first, then one selected version per module path, sorted by path.

    Raises:
        VertexNotFoundError: If a required module cannot be looked up
    """
    selected: Dict[str, str] = {}
    seen = {target}
    queue = deque([target])
    while queue:
        m = queue.popleft()
        for r in reqs.required(m):
            if r.path == target.path:
                continue
            selected[r.path] = reqs.max(r.path, selected.get(r.path, NONE_VERSION), r.version)
            if r not in seen:
                seen.add(r)
                queue.append(r)

    result: List[ModuleVersion] = []
    reached = {target.path}
    queue = deque([target])
    while queue:
        m = queue.popleft()
        for r in reqs.required(m):
            if r.path in reached:
                continue
            reached.add(r.path)
            chosen = ModuleVersion(r.path, selected[r.path])
            if chosen.version == NONE_VERSION:
                continue
            result.append(chosen)
            queue.append(chosen)

    return [target] + sorted(result, key=lambda m: m.path)


def upgrade_all(target: ModuleVersion, reqs) -> List[ModuleVersion]:
    """Build list with every module moved to its latest compatible release."""
    current = build_list(target, reqs)
    upgraded = [reqs.upgrade(m) for m in current[1:]]
    return build_list(target, _Override(target, upgraded, reqs))


def upgrade(target: ModuleVersion, reqs, *mods: ModuleVersion) -> List[ModuleVersion]:
    """Build list with the target additionally requiring ``mods``."""
    target_reqs = reqs.required(target) + list(mods)
    return build_list(target, _Override(target, target_reqs, reqs))


def downgrade(target: ModuleVersion, reqs, *mods: ModuleVersion) -> List[ModuleVersion]:
    """Build list with each of ``mods`` at or below its given version.

    A ``none`` version removes the module. Any module version that needs
    something above a limit is replaced by its closest older release that does
    not, or dropped when no such release exists.
    """
    current = build_list(target, reqs)
    limit = {m.path: m.version for m in current[1:]}
    for d in mods:
        limit[d.path] = d.version

    added = set()
    excluded = set()
    rdeps: Dict[ModuleVersion, List[ModuleVersion]] = defaultdict(list)

    def exclude(m: ModuleVersion) -> None:
        if m in excluded:
            return
        excluded.add(m)
        for parent in rdeps[m]:
            exclude(parent)

    def add(m: ModuleVersion) -> None:
        if m in added:
            return
        added.add(m)
        v = limit.get(m.path)
        if v is not None and reqs.max(m.path, m.version, v) != v:
            exclude(m)
            return
        for r in reqs.required(m):
            add(r)
            if r in excluded:
                exclude(m)
                return
            rdeps[r].append(m)

    for m in current[1:]:
        add(m)

    downgraded: List[ModuleVersion] = []
    for r in reqs.required(target):
        add(r)
        while r in excluded:
            p = reqs.previous(r)
            if p == r or p.version == NONE_VERSION:
                r = None
                break
            add(p)
            r = p
        if r is not None and r not in downgraded:
            downgraded.append(r)

    return build_list(target, _Override(target, downgraded, reqs))


def update_build_list(target: ModuleVersion, reqs, upgrades: Sequence[ModuleVersion] = (),
                      downgrades: Sequence[ModuleVersion] = ()) -> List[ModuleVersion]:
    """Upgrade (everything when ``upgrades`` is empty), then apply ``downgrades``."""
    if upgrades:
        result = upgrade(target, reqs, *upgrades)
    else:
        result = upgrade_all(target, reqs)

    if downgrades:
        result = downgrade(target, _Override(target, result[1:], reqs), *downgrades)
    return result


__all__ = [
    "ReqsGraph", "ReleaseLister", "ModuleLoader", "oci_release_lister",
    "build_list", "upgrade_all", "upgrade", "downgrade", "update_build_list",
]
