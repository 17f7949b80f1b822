"""Configuration management for modpm.

Settings are built once by the caller and passed explicitly to the client,
resolver and visitors. Nothing in this module keeps process-wide state, so two
resolution sessions can run side by side with different settings.
"""

import os
import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional


DEFAULT_OCI_REGISTRY = "ghcr.io"
DEFAULT_OCI_REPO = "kcl-lang"
DEFAULT_HOME_DIR = "~/.modpm"

HOME_ENV = "MODPM_HOME"
REGISTRY_ENV = "MODPM_REG"
REPO_ENV = "MODPM_REPO"
PLAIN_HTTP_ENV = "OCI_REG_PLAIN_HTTP"

CONFIG_DIR_NAME = "config"
CONFIG_FILE_NAME = "modpm.json"
CREDENTIALS_FILE_NAME = "config.json"
PACKAGE_CACHE_LOCK_NAME = "package-cache"


def default_home_path(env: Optional[Dict[str, str]] = None) -> Path:
    """Get the modpm home directory from ``MODPM_HOME`` or ``~/.modpm``."""
    if env is None:
        env = os.environ
    home = env.get(HOME_ENV) or DEFAULT_HOME_DIR
    return Path(os.path.expanduser(home))


def _env_flag(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    value = value.strip().lower()
    if value in ("on", "true", "1", "yes"):
        return True
    if value in ("off", "false", "0", "no"):
        return False
    raise ValueError(f"invalid boolean value '{value}', expected 'on' or 'off'")


@dataclass
class Settings:
    """Resolved configuration for one modpm session."""
    home_path: Path = field(default_factory=default_home_path)
    default_oci_registry: str = DEFAULT_OCI_REGISTRY
    default_oci_repo: str = DEFAULT_OCI_REPO
    oci_plain_http: bool = False
    enable_mvs: bool = False
    enable_cache: bool = True
    no_sum_check: bool = False
    insecure_skip_tls_verify: bool = False
    platform: Optional[str] = None
    quiet: bool = False

    @property
    def config_dir(self) -> Path:
        return self.home_path / CONFIG_DIR_NAME

    @property
    def conf_file(self) -> Path:
        return self.config_dir / CONFIG_FILE_NAME

    @property
    def credentials_file(self) -> Path:
        return self.config_dir / CREDENTIALS_FILE_NAME

    @property
    def package_cache_lock_file(self) -> Path:
        return self.config_dir / PACKAGE_CACHE_LOCK_NAME

    @property
    def cache_path(self) -> Path:
        """Root of the global package cache."""
        return self.home_path

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy of these settings with some fields replaced."""
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "default_oci_registry": self.default_oci_registry,
            "default_oci_repo": self.default_oci_repo,
            "default_oci_plain_http": self.oci_plain_http,
        }

    @classmethod
    def load(cls, home_path: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> "Settings":
        """Build settings from the config file and environment.

        Environment variables take precedence over the config file, which is
        created with default values on first use.

        Args:
            home_path: modpm home directory, defaults to ``MODPM_HOME``
            env: Environment to read (defaults to os.environ)

        Returns:
            Settings: Loaded settings

        Raises:
            ValueError: If the config file or an environment value is invalid
        """
        if env is None:
            env = os.environ
        settings = cls(home_path=Path(home_path) if home_path else default_home_path(env))

        data = load_config_file(settings.conf_file, settings.to_dict())
        settings.default_oci_registry = data.get("default_oci_registry") or DEFAULT_OCI_REGISTRY
        settings.default_oci_repo = data.get("default_oci_repo") or DEFAULT_OCI_REPO
        settings.oci_plain_http = bool(data.get("default_oci_plain_http", False))

        if env.get(REGISTRY_ENV):
            settings.default_oci_registry = env[REGISTRY_ENV]
        if env.get(REPO_ENV):
            settings.default_oci_repo = env[REPO_ENV]
        plain_http = _env_flag(env.get(PLAIN_HTTP_ENV))
        if plain_http is not None:
            settings.oci_plain_http = plain_http

        return settings


def ensure_config_exists(conf_file: Path, defaults: Dict[str, Any]) -> None:
    """Ensure the configuration directory and file exist."""
    conf_file.parent.mkdir(parents=True, exist_ok=True)
    if not conf_file.exists():
        with open(conf_file, "w", encoding="utf-8") as f:
            json.dump(defaults, f, indent=2)


def load_config_file(conf_file: Path, defaults: Dict[str, Any]) -> Dict[str, Any]:
    """Read the JSON config file, creating it with ``defaults`` if missing.

    Returns:
        dict: Current configuration.
    """
    ensure_config_exists(conf_file, defaults)
    try:
        with open(conf_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {conf_file}: {e}")
    if not isinstance(data, dict):
        raise ValueError(f"{conf_file} must contain a JSON object")
    return data

