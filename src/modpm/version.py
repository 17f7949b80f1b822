"""Version management for modpm."""

import re
from importlib.metadata import PackageNotFoundError, version as dist_version
from pathlib import Path

# Build-time version constant (injected during packaging)
__BUILD_VERSION__ = None


def get_version() -> str:
    """
    Get the current version.

    Uses the build-time constant when set, otherwise reads pyproject.toml
    in a development checkout.

    Returns:
        str: Version string
    """
    if __BUILD_VERSION__:
        return __BUILD_VERSION__

    pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
    if pyproject_path.exists():
        content = pyproject_path.read_text(encoding="utf-8")
        match = re.search(r'^version\s*=\s*["\']([^"\']+)["\']', content, re.MULTILINE)
        if match:
            return match.group(1)

    try:
        return dist_version("modpm")
    except PackageNotFoundError:
        return "unknown"


__version__ = get_version()
