"""Downloaders fetching git and OCI sources into a local directory."""

import re
import shutil
import tempfile
import urllib.parse
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from git import Repo
from git.cmd import Git as GitCommand
from git.exc import GitCommandError

from ..config import Settings
from ..errors import DownloadError, RegistryError, SourceError
from ..models.source import Git, Oci, Source, SourceKind
from ..registry.credentials import CredentialManager
from ..registry.oci_client import OciClient
from ..utils.archive import extract_archive, find_archives
from ..utils.console import _rich_info
from ..utils.fs import move_dir


@dataclass
class DownloadOptions:
    """What to download and where.

    ``artifact_path``, when set, receives a copy of the raw archive pulled from
    an OCI registry, next to the extracted tree in ``local_path``.
    """
    source: Source
    local_path: Optional[Path] = None
    settings: Settings = field(default_factory=Settings)
    credentials: Optional[CredentialManager] = None
    platform: Optional[str] = None
    artifact_path: Optional[Path] = None
    insecure_skip_tls_verify: bool = False

    def report(self, message: str) -> None:
        if not self.settings.quiet:
            _rich_info(message, symbol="download")


class Downloader(ABC):
    """Fetches a source's content into ``DownloadOptions.local_path``.

    Downloaders keep no state between calls and do not clean up partial
    writes when they fail; the caller owns the target directory.
    """

    @abstractmethod
    def download(self, opts: DownloadOptions) -> None:
        """Download ``opts.source`` into ``opts.local_path``."""
        pass

    @abstractmethod
    def latest_version(self, opts: DownloadOptions) -> str:
        """Latest tag (OCI) or commit (git) of ``opts.source``."""
        pass


def default_oci_client(oci: Oci, opts: DownloadOptions) -> OciClient:
    credentials = opts.credentials.credentials_for(oci.reg) if opts.credentials else None
    return OciClient(
        oci.reg,
        oci.repo,
        credentials=credentials,
        plain_http=opts.settings.oci_plain_http,
        insecure_skip_tls_verify=opts.insecure_skip_tls_verify or opts.settings.insecure_skip_tls_verify,
    )


class OciDownloader(Downloader):
    """Pulls packaged modules from an OCI registry and extracts them."""

    def __init__(self, client_factory: Callable[[Oci, DownloadOptions], OciClient] = default_oci_client):
        self.client_factory = client_factory

    def latest_version(self, opts: DownloadOptions) -> str:
        oci = opts.source.oci_source
        if oci is None:
            raise SourceError("oci source is nil", opts.source.to_string())
        return self.client_factory(oci, opts).latest_tag()

    def download(self, opts: DownloadOptions) -> None:
        oci = opts.source.oci_source
        if oci is None:
            raise SourceError("oci source is nil", opts.source.to_string())
        local_path = Path(opts.local_path)
        client = self.client_factory(oci, opts)

        tag = oci.tag
        if not tag:
            tag = client.latest_tag()
            opts.report(f"the latest version '{tag}' will be downloaded")

        opts.report(f"downloading '{oci.repo}:{tag}' from '{oci.reg}/{oci.repo}:{tag}'")
        try:
            client.pull(local_path, tag, platform=opts.platform)
        except RegistryError as e:
            raise DownloadError(str(e), opts.source.to_string(), str(local_path)) from e

        archives = find_archives(local_path)
        if len(archives) != 1:
            raise DownloadError(
                f"expected exactly one package archive, found {len(archives)}",
                opts.source.to_string(), str(local_path),
            )
        archive = archives[0]

        if opts.artifact_path is not None:
            Path(opts.artifact_path).mkdir(parents=True, exist_ok=True)
            shutil.copy2(archive, Path(opts.artifact_path) / archive.name)

        try:
            extract_archive(archive, local_path)
        except ValueError as e:
            raise DownloadError(str(e), opts.source.to_string(), str(local_path)) from e
        archive.unlink()


class GitDownloader(Downloader):
    """Clones git repositories at a single branch, tag or commit."""

    def __init__(self, credentials: Optional[CredentialManager] = None):
        self.credentials = credentials or CredentialManager()
        self.git_env = self._setup_git_environment()

    def _setup_git_environment(self) -> Dict[str, Any]:
        """Set up a non-interactive git environment.

        Returns:
            Dict containing environment variables for git operations
        """
        self.git_token = self.credentials.get_token_for_purpose('git')
        return {
            'GIT_TERMINAL_PROMPT': '0',
            'GIT_ASKPASS': 'echo',
            'GIT_CONFIG_NOSYSTEM': '1',
        }

    def _sanitize_git_error(self, error_message: str) -> str:
        """Remove credentials from git error messages.

        Args:
            error_message: Raw error message from git operations

        Returns:
            str: Sanitized error message
        """
        sanitized = re.sub(r'(https?://)[^@\s/]+@', r'\1***@', error_message)
        sanitized = re.sub(r'(ghp_|gho_|ghu_|ghs_|ghr_)[a-zA-Z0-9_]+', '***', sanitized)
        if self.git_token:
            sanitized = sanitized.replace(self.git_token, '***')
        return sanitized

    def _build_repo_url(self, url: str) -> str:
        """Add the git token to https URLs when one is configured."""
        parsed = urllib.parse.urlsplit(url)
        if not self.git_token or parsed.scheme != "https" or "@" in parsed.netloc:
            return url
        netloc = f"x-access-token:{self.git_token}@{parsed.netloc}"
        return urllib.parse.urlunsplit((parsed.scheme, netloc, parsed.path, parsed.query, parsed.fragment))

    def latest_version(self, opts: DownloadOptions) -> str:
        """Commit at the head of the default branch."""
        git = opts.source.git
        if git is None:
            raise SourceError("git source is nil", opts.source.to_string())
        try:
            output = GitCommand().ls_remote(self._build_repo_url(git.url), "HEAD", env=self.git_env)
        except GitCommandError as e:
            raise DownloadError(self._sanitize_git_error(str(e)), opts.source.to_string()) from e
        if not output.strip():
            raise DownloadError("remote has no HEAD", opts.source.to_string())
        return output.split()[0]

    def clone(self, git: Git, target_path: Path) -> Repo:
        """Clone ``git`` into ``target_path`` at its single reference.

        Raises:
            SourceError: Unless exactly one of branch, commit or tag is set
            GitCommandError: If git fails
        """
        ref = git.valid_reference()
        url = self._build_repo_url(git.url)
        if git.commit:
            repo = Repo.clone_from(url, target_path, env=self.git_env)
            repo.git.checkout(ref)
            return repo
        return Repo.clone_from(url, target_path, env=self.git_env, depth=1, branch=ref)

    def download(self, opts: DownloadOptions) -> None:
        git = opts.source.git
        if git is None:
            raise SourceError("git source is nil", opts.source.to_string())
        ref = git.valid_reference()
        ref_kind = "tag" if git.tag else "commit" if git.commit else "branch"
        opts.report(f"cloning '{git.url}' with {ref_kind} '{ref}'")

        local_path = Path(opts.local_path)
        try:
            self.clone(git, local_path)
        except GitCommandError as e:
            raise DownloadError(self._sanitize_git_error(str(e)), opts.source.to_string(), str(local_path)) from e

        git_dir = local_path / ".git"
        if git_dir.exists():
            shutil.rmtree(git_dir, ignore_errors=True)


class DepDownloader(Downloader):
    """Dispatches to the OCI or git downloader by source kind.

    Content is fetched into a temporary directory first and moved into
    ``local_path`` once complete, so an existing tree is only replaced by a
    finished download.
    """

    def __init__(self, oci_downloader: Optional[Downloader] = None, git_downloader: Optional[Downloader] = None):
        self.oci_downloader = oci_downloader or OciDownloader()
        self.git_downloader = git_downloader or GitDownloader()

    def _select(self, source: Source) -> Downloader:
        kind = source.kind
        if kind in (SourceKind.OCI, SourceKind.REGISTRY):
            return self.oci_downloader
        if kind == SourceKind.GIT:
            return self.git_downloader
        raise SourceError(f"cannot download source '{source}': unsupported source kind", source.to_string())

    def latest_version(self, opts: DownloadOptions) -> str:
        return self._select(opts.source).latest_version(opts)

    def download(self, opts: DownloadOptions) -> None:
        downloader = self._select(opts.source)
        if opts.local_path is None:
            raise DownloadError("no local path given", opts.source.to_string())

        with tempfile.TemporaryDirectory(prefix="modpm-download-") as tmp:
            staging = Path(tmp) / "pkg"
            staging.mkdir()
            staged = DownloadOptions(
                source=opts.source,
                local_path=staging,
                settings=opts.settings,
                credentials=opts.credentials,
                platform=opts.platform,
                artifact_path=opts.artifact_path,
                insecure_skip_tls_verify=opts.insecure_skip_tls_verify,
            )
            downloader.download(staged)
            move_dir(staging, opts.local_path)


class OfflineDownloader(Downloader):
    """Refuses every download; only cached or local packages resolve."""

    def latest_version(self, opts: DownloadOptions) -> str:
        raise DownloadError(f"cannot look up the latest version of '{opts.source}' offline",
                            opts.source.to_string())

    def download(self, opts: DownloadOptions) -> None:
        raise DownloadError(f"'{opts.source}' is not cached and cannot be downloaded offline",
                            opts.source.to_string(), str(opts.local_path) if opts.local_path else None)
