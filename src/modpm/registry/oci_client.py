"""Minimal OCI distribution client for packaged modules.

Only the calls modpm needs are implemented: listing tags, fetching a manifest
(or the platform manifests of an image index), pulling layer blobs and pushing
a single-layer artifact. Authentication follows the registry's
``WWW-Authenticate`` challenge (bearer token or basic).
"""

import hashlib
import json
import platform as host_platform
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import requests

from ..constants import (
    OCI_ARTIFACT_MEDIA_TYPE, OCI_CONFIG_MEDIA_TYPE, OCI_INDEX_MEDIA_TYPE,
    OCI_MANIFEST_MEDIA_TYPE, OCI_TITLE_ANNOTATION, TAR_EXT,
)
from ..errors import RegistryError
from ..utils.semver import latest_version
from .credentials import Credentials


_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')
_ARCH_ALIASES = {"x86_64": "amd64", "aarch64": "arm64", "armv7l": "arm"}
EMPTY_CONFIG = b"{}"


def parse_platform(spec: str) -> Dict[str, str]:
    """Parse ``os[/arch[/variant]][:os_version]`` into OCI platform fields.

    The architecture defaults to the host's.

    Raises:
        ValueError: If the platform is malformed
    """
    platform_str, _, os_version = spec.partition(":")
    parts = platform_str.split("/")
    if len(parts) > 3:
        raise ValueError(f"failed to parse platform '{spec}': expected os[/arch[/variant]]")
    machine = host_platform.machine().lower()
    parsed = {
        "os": parts[0],
        "architecture": parts[1] if len(parts) > 1 else _ARCH_ALIASES.get(machine, machine),
        "variant": parts[2] if len(parts) > 2 else "",
        "os.version": os_version,
    }
    if not parsed["os"]:
        raise ValueError("invalid platform: os cannot be empty")
    if not parsed["architecture"]:
        raise ValueError("invalid platform: architecture cannot be empty")
    return parsed


def _platform_matches(described: Dict[str, Any], wanted: Dict[str, str]) -> bool:
    return all((described.get(key) or "") == value for key, value in wanted.items())


def _is_index(manifest: Dict[str, Any]) -> bool:
    if manifest.get("mediaType") == OCI_INDEX_MEDIA_TYPE:
        return True
    return "manifests" in manifest and "layers" not in manifest


class OciClient:
    """Client for one repository in an OCI registry."""

    def __init__(self, reg: str, repo: str, credentials: Optional[Credentials] = None,
                 plain_http: bool = False, insecure_skip_tls_verify: bool = False,
                 session: Optional[requests.Session] = None, timeout: float = 60.0):
        """Initialize the registry client.

        Args:
            reg: Registry host, e.g. ``ghcr.io``
            repo: Repository path inside the registry
            credentials: Credentials for the registry host, if any
            plain_http: Talk plain HTTP instead of HTTPS
            insecure_skip_tls_verify: Skip TLS certificate verification
            session: Session to reuse
            timeout: Per-request timeout in seconds
        """
        self.reg = reg
        self.repo = repo
        self.credentials = credentials
        self.scheme = "http" if plain_http else "https"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.verify = not insecure_skip_tls_verify
        self._token: Optional[str] = None

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.reg}/v2/{self.repo}"

    @property
    def reference(self) -> str:
        return f"{self.reg}/{self.repo}"

    def _authorize(self, challenge: str) -> bool:
        """Answer a ``WWW-Authenticate`` challenge; False if there is nothing to try."""
        scheme, _, params_str = challenge.partition(" ")
        params = dict(_CHALLENGE_PARAM.findall(params_str))
        auth = (self.credentials.username, self.credentials.password) if self.credentials else None

        if scheme.lower() == "basic":
            if auth is None:
                return False
            self.session.auth = auth
            return True

        if scheme.lower() != "bearer" or "realm" not in params:
            return False
        query = {k: v for k, v in params.items() if k in ("service", "scope")}
        try:
            response = self.session.get(params["realm"], params=query, auth=auth, timeout=self.timeout)
        except requests.RequestException as e:
            raise RegistryError(f"failed to get a token for '{self.reference}': {e}", url=params["realm"]) from e
        if response.status_code != 200:
            raise RegistryError(
                f"failed to get a token for '{self.reference}': HTTP {response.status_code}",
                status_code=response.status_code, url=params["realm"],
            )
        body = response.json()
        self._token = body.get("token") or body.get("access_token")
        return bool(self._token)

    def _request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None,
                 ok_status=(200,), **kwargs) -> requests.Response:
        headers = dict(headers or {})
        for attempt in range(2):
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            try:
                response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
            except requests.RequestException as e:
                raise RegistryError(f"{method} {url} failed: {e}", url=url) from e

            if response.status_code == 401 and attempt == 0:
                challenge = response.headers.get("WWW-Authenticate", "")
                if challenge and self._authorize(challenge):
                    continue
            break

        if response.status_code not in ok_status:
            raise RegistryError(
                f"{method} {url} returned HTTP {response.status_code}",
                status_code=response.status_code, url=url,
            )
        return response

    def list_tags(self) -> List[str]:
        """List every tag of the repository, following pagination links."""
        tags: List[str] = []
        url = f"{self.base_url}/tags/list"
        while url:
            response = self._request("GET", url)
            tags.extend(response.json().get("tags") or [])
            next_link = response.links.get("next", {}).get("url")
            if next_link and next_link.startswith("/"):
                next_link = f"{self.scheme}://{self.reg}{next_link}"
            url = next_link
        return tags

    def latest_tag(self) -> str:
        """Greatest version among the repository's tags.

        Raises:
            RegistryError: If the repository has no version tags
        """
        tags = self.list_tags()
        try:
            return latest_version(tags)
        except ValueError:
            raise RegistryError(f"no version tags found in '{self.reference}'")

    def fetch_manifest(self, reference: str) -> Dict[str, Any]:
        """Get the manifest or image index at ``reference`` (a tag or digest)."""
        response = self._request(
            "GET", f"{self.base_url}/manifests/{reference}",
            headers={"Accept": f"{OCI_MANIFEST_MEDIA_TYPE}, {OCI_INDEX_MEDIA_TYPE}"},
        )
        return response.json()

    def image_manifests(self, tag: str, platform: Optional[str] = None) -> List[Dict[str, Any]]:
        """Image manifests to pull for ``tag``.

        A plain manifest is returned as is. For an image index every listed
        manifest is fetched, except those whose platform differs from
        ``platform`` when one is given.

        Raises:
            RegistryError: If ``platform`` is malformed or a manifest cannot be fetched
        """
        manifest = self.fetch_manifest(tag)
        if not _is_index(manifest):
            return [manifest]

        wanted = None
        if platform:
            try:
                wanted = parse_platform(platform)
            except ValueError as e:
                raise RegistryError(str(e))
        selected = []
        for descriptor in manifest.get("manifests") or []:
            described = descriptor.get("platform")
            if wanted is not None and described and not _platform_matches(described, wanted):
                continue
            selected.append(self.fetch_manifest(descriptor["digest"]))
        return selected

    def pull(self, local_path: Union[str, Path], tag: str, platform: Optional[str] = None) -> List[Path]:
        """Download every layer of ``tag`` into ``local_path``.

        Layers are named after their title annotation, or ``<repo>_<tag>.tar``.

        Returns:
            List[Path]: The downloaded files
        """
        local_path = Path(local_path)
        local_path.mkdir(parents=True, exist_ok=True)
        layers = [
            layer
            for manifest in self.image_manifests(tag, platform)
            for layer in manifest.get("layers") or []
        ]
        repo_name = self.repo.rsplit("/", 1)[-1]

        pulled = []
        for index, layer in enumerate(layers):
            digest = layer["digest"]
            title = (layer.get("annotations") or {}).get(OCI_TITLE_ANNOTATION)
            if not title:
                suffix = f"_{index}" if index else ""
                title = f"{repo_name}_{tag}{suffix}{TAR_EXT}"
            target = local_path / Path(title).name

            response = self._request("GET", f"{self.base_url}/blobs/{digest}", stream=True)
            hasher = hashlib.sha256()
            with open(target, "wb") as f:
                for chunk in response.iter_content(chunk_size=65536):
                    hasher.update(chunk)
                    f.write(chunk)
            actual = f"sha256:{hasher.hexdigest()}"
            if digest.startswith("sha256:") and actual != digest:
                target.unlink()
                raise RegistryError(f"digest mismatch for layer '{title}': expected {digest}, got {actual}")
            pulled.append(target)
        return pulled

    def _upload_blob(self, data: bytes) -> str:
        digest = f"sha256:{hashlib.sha256(data).hexdigest()}"
        exists = self._request("HEAD", f"{self.base_url}/blobs/{digest}", ok_status=(200, 404))
        if exists.status_code == 200:
            return digest

        start = self._request("POST", f"{self.base_url}/blobs/uploads/", ok_status=(202,))
        location = start.headers.get("Location", "")
        if location.startswith("/"):
            location = f"{self.scheme}://{self.reg}{location}"
        separator = "&" if "?" in location else "?"
        self._request(
            "PUT", f"{location}{separator}digest={digest}", data=data,
            headers={"Content-Type": "application/octet-stream"}, ok_status=(201,),
        )
        return digest

    def push(self, archive_path: Union[str, Path], tag: str,
             annotations: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Push ``archive_path`` as a single-layer artifact tagged ``tag``.

        Returns:
            dict: The pushed manifest
        """
        archive_path = Path(archive_path)
        data = archive_path.read_bytes()
        layer_digest = self._upload_blob(data)
        config_digest = self._upload_blob(EMPTY_CONFIG)

        manifest = {
            "schemaVersion": 2,
            "mediaType": OCI_MANIFEST_MEDIA_TYPE,
            "config": {"mediaType": OCI_CONFIG_MEDIA_TYPE, "digest": config_digest, "size": len(EMPTY_CONFIG)},
            "layers": [{
                "mediaType": OCI_ARTIFACT_MEDIA_TYPE,
                "digest": layer_digest,
                "size": len(data),
                "annotations": {OCI_TITLE_ANNOTATION: archive_path.name},
            }],
            "annotations": dict(annotations or {}),
        }
        self._request(
            "PUT", f"{self.base_url}/manifests/{tag}", data=json.dumps(manifest).encode("utf-8"),
            headers={"Content-Type": OCI_MANIFEST_MEDIA_TYPE}, ok_status=(201,),
        )
        return manifest
