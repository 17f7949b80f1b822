"""Registry and git credential lookup.

Credentials come from environment variables first and then from a
docker-style ``config.json`` under the modpm config directory::

    {"auths": {"ghcr.io": {"auth": "<base64 user:password>"}}}

Environment variables:
- MODPM_OCI_USERNAME / MODPM_OCI_PASSWORD: registry credentials for any host
- MODPM_GIT_TOKEN, GITHUB_TOKEN, GH_TOKEN: token used for https git clones
"""

import base64
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union


@dataclass
class Credentials:
    """Username and password (or token) for one registry host."""
    username: str
    password: str

    def to_auth(self) -> str:
        return base64.b64encode(f"{self.username}:{self.password}".encode("utf-8")).decode("ascii")


class CredentialManager:
    """Resolves registry and git credentials for a host."""

    # Define token precedence for different purposes
    TOKEN_PRECEDENCE = {
        'oci_username': ['MODPM_OCI_USERNAME'],
        'oci_password': ['MODPM_OCI_PASSWORD'],
        'git': ['MODPM_GIT_TOKEN', 'GITHUB_TOKEN', 'GH_TOKEN'],
    }

    def __init__(self, credentials_file: Optional[Union[str, Path]] = None):
        """Initialize the credential manager.

        Args:
            credentials_file: docker-style config.json, may not exist
        """
        self.credentials_file = Path(credentials_file) if credentials_file else None

    def get_token_for_purpose(self, purpose: str, env: Optional[Dict[str, str]] = None) -> Optional[str]:
        """Get the first token set for ``purpose``.

        Raises:
            ValueError: If ``purpose`` is unknown
        """
        if env is None:
            env = os.environ

        if purpose not in self.TOKEN_PRECEDENCE:
            raise ValueError(f"Unknown purpose: {purpose}")

        for token_var in self.TOKEN_PRECEDENCE[purpose]:
            token = env.get(token_var)
            if token:
                return token
        return None

    def _load_auths(self) -> Dict[str, dict]:
        if self.credentials_file is None or not self.credentials_file.exists():
            return {}
        try:
            with open(self.credentials_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {self.credentials_file}: {e}")
        auths = data.get("auths") if isinstance(data, dict) else None
        return auths if isinstance(auths, dict) else {}

    def credentials_for(self, hostname: str, env: Optional[Dict[str, str]] = None) -> Optional[Credentials]:
        """Get the credentials for a registry host, or None for anonymous access."""
        username = self.get_token_for_purpose('oci_username', env)
        password = self.get_token_for_purpose('oci_password', env)
        if username and password:
            return Credentials(username, password)

        entry = self._load_auths().get(hostname)
        if not entry:
            return None
        if entry.get("username") and entry.get("password"):
            return Credentials(entry["username"], entry["password"])
        if entry.get("auth"):
            decoded = base64.b64decode(entry["auth"]).decode("utf-8")
            user, _, secret = decoded.partition(":")
            return Credentials(user, secret)
        return None

    def store(self, hostname: str, credentials: Credentials) -> None:
        """Save credentials for ``hostname`` to the credentials file."""
        if self.credentials_file is None:
            raise ValueError("No credentials file configured")
        data = {"auths": self._load_auths()}
        data["auths"][hostname] = {"auth": credentials.to_auth()}
        self.credentials_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.credentials_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def remove(self, hostname: str) -> bool:
        """Forget the credentials of ``hostname``; returns False if there were none."""
        auths = self._load_auths()
        if hostname not in auths:
            return False
        del auths[hostname]
        with open(self.credentials_file, "w", encoding="utf-8") as f:
            json.dump({"auths": auths}, f, indent=2)
        return True
